from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from paperdesk.robo.engine import RoboTraderEngine, cleanup_signal_executions, get_robo_engine
from paperdesk.shared.db import SessionLocal

logger = logging.getLogger(__name__)

STARTUP_DELAY_SECONDS = 5


class RoboSchedulerService:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._running = False
        self._tick_task: Any = None
        self._cleanup_task: Any = None
        self._engine: RoboTraderEngine | None = None
        self._last_run_at: str | None = None
        self._last_status: str = "idle"
        self._last_summary: dict[str, int] = {}
        self._last_cleanup_at: str | None = None
        self._last_cleanup_deleted: int = 0

    async def start(
        self,
        engine: RoboTraderEngine | None = None,
        interval_seconds: int = 60,
        cleanup_interval_seconds: int = 6 * 60 * 60,
    ) -> None:
        if self._running:
            return
        self._running = True
        self._engine = engine or get_robo_engine()

        async def _ticker() -> None:
            await asyncio.sleep(STARTUP_DELAY_SECONDS)
            while self._running:
                try:
                    await self.run_once()
                    self._last_status = "ok"
                except Exception:
                    self._last_status = "error"
                    logger.exception("event=robo_tick_failed")
                await asyncio.sleep(max(1, int(interval_seconds)))

        async def _cleaner() -> None:
            while self._running:
                try:
                    self.run_cleanup()
                except Exception:
                    logger.exception("event=robo_cleanup_failed")
                await asyncio.sleep(max(60, int(cleanup_interval_seconds)))

        self._tick_task = asyncio.create_task(_ticker(), name="robo-scheduler")
        self._cleanup_task = asyncio.create_task(_cleaner(), name="robo-signal-cleanup")
        logger.info("event=robo_scheduler_started interval=%s cleanup_interval=%s", interval_seconds, cleanup_interval_seconds)

    async def stop(self) -> None:
        self._running = False
        for task in (self._tick_task, self._cleanup_task):
            if task is not None:
                task.cancel()
        self._tick_task = None
        self._cleanup_task = None

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        if self._engine is None:
            return {}
        db = self._session_factory()
        try:
            summary = await self._engine.run_scheduler_tick(db, now=now)
        finally:
            db.close()
        self._last_run_at = datetime.utcnow().isoformat()
        self._last_summary = summary
        logger.info("event=robo_tick summary=%s", summary)
        return summary

    def run_cleanup(self, now: datetime | None = None) -> dict[str, Any]:
        db = self._session_factory()
        try:
            result = cleanup_signal_executions(db, now=now)
        finally:
            db.close()
        self._last_cleanup_at = datetime.utcnow().isoformat()
        self._last_cleanup_deleted = int(result["deleted_count"])
        return result

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "last_run_at": self._last_run_at,
            "last_status": self._last_status,
            "last_summary": self._last_summary,
            "last_cleanup_at": self._last_cleanup_at,
            "last_cleanup_deleted": self._last_cleanup_deleted,
            "running": self._running,
        }


_service = RoboSchedulerService()


def get_robo_scheduler_service() -> RoboSchedulerService:
    return _service
