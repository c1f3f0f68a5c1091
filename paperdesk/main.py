from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paperdesk.adapters.quotes import get_quote_service
from paperdesk.api.routes import execution, paper, robo, trade_plan
from paperdesk.config.settings import get_settings
from paperdesk.robo.scheduler import get_robo_scheduler_service
from paperdesk.shared.db import init_db

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(paper.router)
app.include_router(trade_plan.router)
app.include_router(execution.router)
app.include_router(robo.router)


@app.on_event("startup")
async def on_startup() -> None:
    init_db()
    if settings.robo_scheduler_disabled:
        logger.info("event=robo_scheduler_disabled")
        return
    await get_robo_scheduler_service().start(
        interval_seconds=settings.robo_interval_seconds,
        cleanup_interval_seconds=settings.robo_cleanup_interval_seconds,
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_robo_scheduler_service().stop()
    await get_quote_service().close()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}
