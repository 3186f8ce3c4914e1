from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI

from relaybot.config import Settings, get_settings
from relaybot.core.app_state import AppState
from relaybot.infra.logging_config import setup_logging
from relaybot.routers import system, webhooks


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state = AppState(settings)
        await state.start()
        app.state.relay = state
        try:
            yield
        finally:
            await state.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(system.router)
    app.include_router(webhooks.router)
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
