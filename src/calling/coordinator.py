"""Interprets call state-change notifications and drives answer / recognition."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import Protocol

from calling.errors import AlreadyRunningError, CallingAgentError, RecognitionCanceledError
from calling.models import CallSession, CallState, ChangeType, Notification
from config.settings import Settings, get_settings
from speech.engine import SpeechEngine
from speech.recognition import TERMINAL_STATES, RecognitionSession, RecognitionState, TranscriptEvent

LOGGER = logging.getLogger(__name__)

TranscriptSink = Callable[[TranscriptEvent], object]


class TokenSource(Protocol):
    async def get_access_token(self, tenant_id: str | None) -> str:  # pragma: no cover - protocol stub
        ...


class CallingApi(Protocol):
    def callback_uri(self) -> str:  # pragma: no cover - protocol stub
        ...

    async def answer_call(self, call_id: str, callback_uri: str, access_token: str) -> None:  # pragma: no cover
        ...

    async def subscribe_to_media(self, call_id: str, access_token: str) -> None:  # pragma: no cover
        ...


def log_transcript(event: TranscriptEvent) -> None:
    LOGGER.info("Recognized speech (call %s): %s", event.call_id, event.text)


class CallLifecycleCoordinator:
    """Owns the call table (call id -> CallSession) and the recognition table.

    One instance is created at process start and shared by request handlers.
    """

    def __init__(
        self,
        engine: SpeechEngine,
        identity: TokenSource,
        calling_api: CallingApi,
        *,
        settings: Settings | None = None,
        transcript_sink: TranscriptSink | None = None,
    ) -> None:
        self._engine = engine
        self._identity = identity
        self._calling_api = calling_api
        self._settings = settings or get_settings()
        self._transcript_sink = transcript_sink or log_transcript
        self._calls: dict[str, CallSession] = {}
        self._recognition: dict[str, RecognitionSession] = {}
        self._lock = asyncio.Lock()

    # Queries

    def call(self, call_id: str) -> CallSession | None:
        return self._calls.get(call_id)

    def active_call_ids(self) -> list[str]:
        return list(self._calls)

    def recognition_for(self, call_id: str) -> RecognitionSession | None:
        return self._recognition.get(call_id)

    def session_for_media(self, call_id: str | None) -> RecognitionSession | None:
        """Session that should receive audio found in a notification for ``call_id``.

        A notification that names a call only ever reaches that call's session.
        When no call can be resolved and exactly one session is running, that
        session is assumed.
        """

        if call_id:
            return self._recognition.get(call_id)
        running = [s for s in self._recognition.values() if s.state is RecognitionState.RUNNING]
        return running[0] if len(running) == 1 else None

    # Notification handling

    async def handle_notification(self, notification: Notification) -> None:
        change = notification.change
        state = notification.call_state
        call_id = notification.call_id

        if call_id is None or (state is None and change is not ChangeType.DELETED):
            LOGGER.debug(
                "Notification without call state: %s %s",
                notification.change_type,
                notification.resource,
            )
            return

        if change is ChangeType.CREATED and state == CallState.INCOMING.value:
            await self._handle_incoming(call_id, notification.tenant_id)
        elif change is ChangeType.UPDATED and state == CallState.ESTABLISHED.value:
            await self._handle_established(call_id, notification.tenant_id)
        elif change is ChangeType.DELETED or state == CallState.TERMINATED.value:
            LOGGER.info("Call %s ended (%s/%s)", call_id, notification.change_type, state)
            await self.stop_recognition(call_id)
        else:
            LOGGER.info("Unhandled call state: %s, changeType: %s", state, notification.change_type)

    async def _handle_incoming(self, call_id: str, tenant_id: str | None) -> None:
        async with self._lock:
            if call_id in self._calls:
                LOGGER.info("Duplicate incoming notification for call %s ignored", call_id)
                return
            self._calls[call_id] = CallSession(call_id=call_id, tenant_id=tenant_id or "")

        LOGGER.info("Incoming call detected with id: %s", call_id)
        try:
            access_token = await self._identity.get_access_token(tenant_id)
            await self._calling_api.answer_call(call_id, self._calling_api.callback_uri(), access_token)
            await self.start_recognition(call_id)
        except CallingAgentError as exc:
            LOGGER.error("Error handling incoming call %s: %s", call_id, exc.detail)
            await self.stop_recognition(call_id)
        except Exception:
            await self.stop_recognition(call_id)
            raise

    async def _handle_established(self, call_id: str, tenant_id: str | None) -> None:
        async with self._lock:
            call = self._calls.get(call_id)
            if call is None:
                LOGGER.info("Established notification for unknown call %s", call_id)
                return
            call.advance(CallState.ESTABLISHED)

        LOGGER.info("Call %s established", call_id)
        if not self._settings.subscribe_media_on_established:
            return

        try:
            access_token = await self._identity.get_access_token(tenant_id or call.tenant_id or None)
            await self._calling_api.subscribe_to_media(call_id, access_token)
        except CallingAgentError as exc:
            LOGGER.error("Media subscription failed for call %s: %s", call_id, exc.detail)

    # Recognition control

    async def start_recognition(self, call_id: str) -> RecognitionSession:
        """Start a recognition session bound to ``call_id``.

        Raises:
            AlreadyRunningError: if a live session is already bound to the call.
            ConfigError: if the speech engine is not configured.
        """

        async with self._lock:
            existing = self._recognition.get(call_id)
            if existing is not None and existing.state not in TERMINAL_STATES:
                raise AlreadyRunningError(f"Recognition for call {call_id} is already {existing.state.value}.")
            session = RecognitionSession(
                self._engine,
                call_id,
                stop_timeout=self._settings.recognition_stop_timeout_seconds,
            )
            self._recognition[call_id] = session

        await asyncio.to_thread(session.start, self._transcript_sink, partial(self._on_recognition_error, call_id))
        if session.state is RecognitionState.CANCELED:
            LOGGER.warning("Recognition for call %s was canceled while starting", call_id)
        return session

    async def stop_recognition(self, call_id: str) -> bool:
        """Stop the call's recognition session and forget the call.

        Returns whether a session was stopped.
        """

        async with self._lock:
            session = self._recognition.pop(call_id, None)
            call = self._calls.pop(call_id, None)
            if call is not None:
                call.advance(CallState.TERMINATED)

        if session is None:
            return False
        await asyncio.to_thread(session.stop)
        return True

    async def shutdown(self) -> None:
        call_ids = set(self._calls) | set(self._recognition)
        for call_id in call_ids:
            await self.stop_recognition(call_id)

    def _on_recognition_error(self, call_id: str, error: RecognitionCanceledError) -> None:
        LOGGER.error("Speech recognition error for call %s: %s", call_id, error.detail)
