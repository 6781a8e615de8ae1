"""
CollabTok — TikTok creator connect & stats sync service.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import router
from config.settings import OAUTH_FIELDS, Settings, config
from connectors.encryption import TokenCipher
from connectors.tiktok import TikTokClient
from core.sync import run_periodic_sync
from database.session import build_engine, build_session_factory, create_tables
from database.store import AccountStore

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "aiosqlite", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or config

    app = FastAPI(
        title="CollabTok",
        version="1.0.0",
        description="Connect a TikTok account and keep its profile stats in sync.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    app.include_router(router)

    engine = build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.tiktok_client = TikTokClient(settings)
    app.state.store = AccountStore(
        build_session_factory(engine),
        TokenCipher(settings.token_encryption_key),
    )
    app.state.sync_task = None

    @app.on_event("startup")
    async def on_startup():
        missing = settings.missing(*OAUTH_FIELDS)
        if missing:
            logger.warning(
                "TikTok OAuth not fully configured, missing: %s",
                ", ".join(name.upper() for name in missing),
            )

        if settings.auto_create_tables:
            logger.info("Creating database tables…")
            await create_tables(engine)

        if settings.sync_interval_seconds > 0:
            app.state.sync_task = asyncio.create_task(
                run_periodic_sync(
                    settings.sync_interval_seconds,
                    client=app.state.tiktok_client,
                    store=app.state.store,
                    settings=settings,
                )
            )

        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        task = app.state.sync_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
