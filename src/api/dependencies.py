"""Shared FastAPI dependencies.

The coordinator, router and speech engine are built once in the application
lifespan and stored on ``app.state``; handlers reach them only through these
functions so tests can override them.
"""

from __future__ import annotations

from fastapi import Request

from calling.coordinator import CallLifecycleCoordinator
from calling.router import NotificationRouter
from speech.engine import SpeechEngine


def get_notification_router(request: Request) -> NotificationRouter:
    return request.app.state.notification_router


def get_coordinator(request: Request) -> CallLifecycleCoordinator:
    return request.app.state.coordinator


def get_speech_engine(request: Request) -> SpeechEngine:
    return request.app.state.speech_engine
