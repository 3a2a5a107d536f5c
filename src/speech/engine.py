"""Shared abstractions for speech engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

# Audio format expected on every push-style input channel.
INPUT_SAMPLE_RATE = 16000
INPUT_CHANNELS = 1
INPUT_BITS_PER_SAMPLE = 16


class RecognitionListener(Protocol):
    """Receiver for events raised by a continuous recognizer.

    Engines may invoke these from their own threads.
    """

    def handle_recognizing(self, text: str) -> None:  # pragma: no cover - protocol stub
        ...

    def handle_recognized(self, text: str) -> None:  # pragma: no cover - protocol stub
        ...

    def handle_no_match(self) -> None:  # pragma: no cover - protocol stub
        ...

    def handle_canceled(self, reason: str, details: str) -> None:  # pragma: no cover - protocol stub
        ...

    def handle_session_stopped(self) -> None:  # pragma: no cover - protocol stub
        ...


class ContinuousRecognizer(ABC):
    """One continuous recognition run fed through a push-style input channel."""

    @abstractmethod
    def start(self) -> None:
        """Start recognition; blocks until the engine confirms or raises."""

    @abstractmethod
    def write(self, chunk: bytes) -> None:
        """Append raw PCM bytes to the input channel."""

    @abstractmethod
    def close_input(self) -> None:
        """Signal end-of-input on the channel."""

    @abstractmethod
    def request_stop(self) -> None:
        """Ask the engine to stop; completion is reported via handle_session_stopped."""

    @abstractmethod
    def close(self) -> None:
        """Release engine resources. Must tolerate repeated calls."""


class SpeechEngine(ABC):
    """Interface for speech-to-text and text-to-speech providers."""

    #: MIME type of the bytes returned by synthesize().
    synthesis_mime: str = "application/octet-stream"

    @abstractmethod
    def recognize_once(self, audio: bytes) -> str:
        """Recognize a single utterance from a complete audio buffer."""

    @abstractmethod
    def open_continuous(self, listener: RecognitionListener) -> ContinuousRecognizer:
        """Create a continuous recognizer reporting to ``listener``."""

    @abstractmethod
    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize speech for the given text."""
