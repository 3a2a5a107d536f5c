"""Continuous recognition session bound to one call.

The session wraps an engine recognizer in an explicit state machine::

    idle -> starting -> running -> stopping -> stopped
                 \\          \\
                  +----------+--> canceled

Engine events arrive on engine threads, so every state change happens under
``_lock``. Callers see a single outbound channel: finalized transcripts through
``on_recognized`` and at most one error through ``on_error``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from calling.errors import AlreadyRunningError, ConfigError, RecognitionCanceledError
from speech.engine import ContinuousRecognizer, SpeechEngine

LOGGER = logging.getLogger(__name__)


class RecognitionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({RecognitionState.STOPPED, RecognitionState.CANCELED})

_TRANSITIONS: dict[RecognitionState, frozenset[RecognitionState]] = {
    RecognitionState.IDLE: frozenset({RecognitionState.STARTING}),
    RecognitionState.STARTING: frozenset({RecognitionState.RUNNING, RecognitionState.CANCELED}),
    RecognitionState.RUNNING: frozenset({RecognitionState.STOPPING, RecognitionState.CANCELED}),
    RecognitionState.STOPPING: frozenset({RecognitionState.STOPPED}),
    RecognitionState.STOPPED: frozenset(),
    RecognitionState.CANCELED: frozenset(),
}


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool
    call_id: str | None = None


TranscriptCallback = Callable[[TranscriptEvent], object]
ErrorCallback = Callable[[RecognitionCanceledError], object]


class InvalidTransitionError(RuntimeError):
    pass


class RecognitionSession:
    """One continuous speech-to-text run fed through a push-style channel."""

    def __init__(
        self,
        engine: SpeechEngine,
        call_id: str,
        *,
        stop_timeout: float = 5.0,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.call_id = call_id
        self._engine = engine
        self._stop_timeout = stop_timeout

        self._lock = threading.Lock()
        self._state = RecognitionState.IDLE
        self._recognizer: ContinuousRecognizer | None = None
        self._released = False
        self._on_recognized: TranscriptCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._error_delivered = False
        self._start_settled = threading.Event()
        self._engine_stopped = threading.Event()
        self._bytes_written = 0

    def __repr__(self) -> str:
        return f"RecognitionSession(id={self.id!r}, call_id={self.call_id!r}, state={self._state.value})"

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def _transition(self, target: RecognitionState) -> None:
        # Caller holds _lock.
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {target.value}")
        LOGGER.debug("Recognition %s (call %s): %s -> %s", self.id, self.call_id, self._state.value, target.value)
        self._state = target

    # Caller-facing operations

    def start(self, on_recognized: TranscriptCallback, on_error: ErrorCallback | None = None) -> None:
        """Open the input channel and start recognition.

        Raises:
            AlreadyRunningError: if the session has already been started.
        """

        with self._lock:
            if self._state is not RecognitionState.IDLE:
                raise AlreadyRunningError(
                    f"Recognition for call {self.call_id} is already {self._state.value}."
                )
            self._on_recognized = on_recognized
            self._on_error = on_error
            self._transition(RecognitionState.STARTING)

        try:
            recognizer = self._engine.open_continuous(self)
            with self._lock:
                self._recognizer = recognizer
            recognizer.start()
        except ConfigError:
            self._start_settled.set()
            self._cancel("ConfigError", "speech engine is not configured", notify=False)
            raise
        except Exception as exc:
            LOGGER.exception("Error starting continuous recognition for call %s", self.call_id)
            self._start_settled.set()
            self._cancel("StartFailed", str(exc))
            return

        with self._lock:
            if self._state is RecognitionState.STARTING:
                self._transition(RecognitionState.RUNNING)
                LOGGER.info("Continuous recognition started for call %s", self.call_id)
        self._start_settled.set()

    def write(self, chunk: bytes) -> bool:
        """Append audio while running; any other state is a logged no-op."""

        if not chunk:
            LOGGER.warning("Empty chunk passed to recognition session %s", self.id)
            return False

        with self._lock:
            if self._state is not RecognitionState.RUNNING or self._recognizer is None:
                LOGGER.warning(
                    "Dropping %d audio bytes for call %s: recognition is %s",
                    len(chunk),
                    self.call_id,
                    self._state.value,
                )
                return False
            try:
                self._recognizer.write(chunk)
            except Exception:
                LOGGER.exception("Error writing audio chunk to push stream for call %s", self.call_id)
                return False
            self._bytes_written += len(chunk)
        return True

    def stop(self) -> None:
        """Signal end-of-input and wait (bounded) for the engine to shut down."""

        if self._state is RecognitionState.STARTING:
            self._start_settled.wait(self._stop_timeout)

        with self._lock:
            if self._state is not RecognitionState.RUNNING:
                LOGGER.debug("No continuous recognition to stop for call %s (%s)", self.call_id, self._state.value)
                return
            self._transition(RecognitionState.STOPPING)
            recognizer = self._recognizer

        if recognizer is not None:
            try:
                recognizer.close_input()
                recognizer.request_stop()
            except Exception:
                LOGGER.exception("Error requesting recognition stop for call %s", self.call_id)

            if not self._engine_stopped.wait(self._stop_timeout):
                LOGGER.warning(
                    "Engine did not confirm shutdown within %.1fs for call %s",
                    self._stop_timeout,
                    self.call_id,
                )

        with self._lock:
            if self._state is RecognitionState.STOPPING:
                self._transition(RecognitionState.STOPPED)
        self._release()
        LOGGER.info("Continuous recognition stopped for call %s", self.call_id)

    # Engine-facing listener

    def handle_recognizing(self, text: str) -> None:
        if text:
            LOGGER.debug("Interim recognizing (call %s): %s", self.call_id, text)

    def handle_recognized(self, text: str) -> None:
        if not text:
            self.handle_no_match()
            return
        with self._lock:
            deliver = self._state in (RecognitionState.RUNNING, RecognitionState.STOPPING)
            callback = self._on_recognized
        if not deliver or callback is None:
            LOGGER.debug("Discarding transcript for call %s in state %s", self.call_id, self._state.value)
            return

        LOGGER.info("Continuous speech recognized (call %s): %s", self.call_id, text)
        try:
            callback(TranscriptEvent(text=text, is_final=True, call_id=self.call_id))
        except Exception:
            LOGGER.exception("Transcript callback failed for call %s", self.call_id)

    def handle_no_match(self) -> None:
        LOGGER.warning("No match for audio segment (call %s)", self.call_id)

    def handle_canceled(self, reason: str, details: str) -> None:
        LOGGER.error("Continuous recognition canceled (call %s): %s - %s", self.call_id, reason, details)
        self._cancel(reason, details)

    def handle_session_stopped(self) -> None:
        LOGGER.info("Continuous recognition session stopped (call %s)", self.call_id)
        self._engine_stopped.set()
        with self._lock:
            if self._state is not RecognitionState.RUNNING:
                return
            # Engine ended the session on its own.
            self._transition(RecognitionState.STOPPING)
            self._transition(RecognitionState.STOPPED)
        self._release()

    # Teardown

    def _cancel(self, reason: str, details: str, *, notify: bool = True) -> None:
        with self._lock:
            if self._state is RecognitionState.STOPPING:
                # A cancel during stopping only confirms the shutdown.
                self._engine_stopped.set()
                return
            if self._state not in (RecognitionState.STARTING, RecognitionState.RUNNING):
                return
            self._engine_stopped.set()
            self._transition(RecognitionState.CANCELED)
            callback = None if (self._error_delivered or not notify) else self._on_error
            self._error_delivered = True

        self._release()
        if callback is None:
            return
        error = RecognitionCanceledError(f"Recognition canceled: {details or reason}", reason=reason)
        try:
            callback(error)
        except Exception:
            LOGGER.exception("Recognition error callback failed for call %s", self.call_id)

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            recognizer, self._recognizer = self._recognizer, None
        if recognizer is None:
            return
        try:
            recognizer.close()
        except Exception:
            LOGGER.exception("Error disposing recognizer for call %s", self.call_id)
