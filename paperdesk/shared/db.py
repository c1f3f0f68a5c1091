from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from paperdesk.config.settings import get_settings


def enable_sqlite_savepoints(target: Engine) -> Engine:
    """Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT-guarded inserts roll back cleanly."""

    @event.listens_for(target, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    return target


settings = get_settings()
_connect_args = {"check_same_thread": False} if settings.sqlite_url.startswith("sqlite") else {}
engine = create_engine(settings.sqlite_url, connect_args=_connect_args)
if settings.sqlite_url.startswith("sqlite"):
    enable_sqlite_savepoints(engine)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db() -> None:
    # Import ORM models before metadata create_all.
    from paperdesk.models import core, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
