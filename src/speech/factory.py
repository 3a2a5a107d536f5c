"""Factory returning the configured speech engine."""

from __future__ import annotations

from config.settings import Settings, get_settings
from speech.engine import SpeechEngine


def build_speech_engine(settings: Settings | None = None) -> SpeechEngine:
    """Instantiate the configured speech provider.

    Provider modules are imported lazily so the SDK of an unused provider is never loaded.
    """

    settings = settings or get_settings()
    if settings.speech_provider == "azure":
        from speech.azure_engine import AzureSpeechEngine

        return AzureSpeechEngine(settings)
    if settings.speech_provider == "whisper":
        from speech.whisper_engine import WhisperSpeechEngine

        return WhisperSpeechEngine(settings)
    raise ValueError(f"Unsupported speech provider: {settings.speech_provider}")
