"""Entry point for the VoxRepo calling agent service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api.routes import router as api_router
from calling.coordinator import CallLifecycleCoordinator
from calling.router import NotificationRouter
from config.settings import get_settings
from integrations.graph_calling import GraphCallingClient
from integrations.identity import IdentityProvider
from speech.factory import build_speech_engine

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_speech_engine(settings)
    coordinator = CallLifecycleCoordinator(
        engine,
        IdentityProvider(settings),
        GraphCallingClient(settings),
        settings=settings,
    )
    notification_router = NotificationRouter(coordinator)

    app.state.speech_engine = engine
    app.state.coordinator = coordinator
    app.state.notification_router = notification_router
    LOGGER.info("Calling agent ready (speech provider: %s)", settings.speech_provider)

    yield

    await app.state.notification_router.drain()
    await app.state.coordinator.shutdown()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="VoxRepo Calling Agent",
    description="Answers incoming calls and transcribes their audio in real time.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
