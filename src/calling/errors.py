"""Domain-specific exceptions for calling and recognition.

These exceptions are safe to import from API layers without triggering speech SDK imports.
"""

from __future__ import annotations


class CallingAgentError(Exception):
    status_code: int = 500
    default_detail: str = "Calling agent error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConfigError(CallingAgentError):
    status_code = 500
    default_detail = "Required configuration is missing."


class AuthError(CallingAgentError):
    status_code = 502
    default_detail = "Access token could not be acquired."


class CallControlError(CallingAgentError):
    status_code = 502
    default_detail = "Call control request failed."


class ExtractionMiss(CallingAgentError):
    """No audio payload was found after exhausting every known shape."""

    status_code = 422
    default_detail = "No media payload found in notification."


class RecognitionCanceledError(CallingAgentError):
    status_code = 503
    default_detail = "Speech recognition was canceled."

    def __init__(self, detail: str | None = None, *, reason: str | None = None) -> None:
        super().__init__(detail)
        self.reason = reason


class AlreadyRunningError(CallingAgentError):
    status_code = 409
    default_detail = "Recognition is already running."


class InvalidAudioError(CallingAgentError):
    status_code = 400
    default_detail = "Audio could not be decoded."


class TranscriptionFailedError(CallingAgentError):
    status_code = 503
    default_detail = "Transcription failed."


class SynthesisFailedError(CallingAgentError):
    status_code = 503
    default_detail = "Speech synthesis failed."
