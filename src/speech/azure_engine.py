"""Speech engine backed by the Azure Cognitive Services Speech SDK."""

from __future__ import annotations

import logging
import threading
from typing import Any

from calling.errors import ConfigError, SynthesisFailedError, TranscriptionFailedError
from config.settings import Settings, get_settings
from speech.audio import to_input_pcm16
from speech.engine import (
    INPUT_BITS_PER_SAMPLE,
    INPUT_CHANNELS,
    INPUT_SAMPLE_RATE,
    ContinuousRecognizer,
    RecognitionListener,
    SpeechEngine,
)
from speech.ssml import build_ssml

LOGGER = logging.getLogger(__name__)


class AzureContinuousRecognizer(ContinuousRecognizer):
    """Push-stream recognizer translating SDK events into listener calls."""

    def __init__(self, speechsdk: Any, speech_config: Any, listener: RecognitionListener) -> None:
        self._speechsdk = speechsdk
        self._listener = listener
        self._lock = threading.Lock()
        self._input_closed = False
        self._closed = False

        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=INPUT_SAMPLE_RATE,
            bits_per_sample=INPUT_BITS_PER_SAMPLE,
            channels=INPUT_CHANNELS,
        )
        self._push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=self._push_stream)
        self._recognizer = speechsdk.SpeechRecognizer(
            speech_config=speech_config,
            audio_config=audio_config,
        )

        self._recognizer.recognizing.connect(self._on_recognizing)
        self._recognizer.recognized.connect(self._on_recognized)
        self._recognizer.canceled.connect(self._on_canceled)
        self._recognizer.session_stopped.connect(self._on_session_stopped)

    def start(self) -> None:
        self._recognizer.start_continuous_recognition_async().get()

    def write(self, chunk: bytes) -> None:
        self._push_stream.write(chunk)

    def close_input(self) -> None:
        with self._lock:
            if self._input_closed:
                return
            self._input_closed = True
        self._push_stream.close()

    def request_stop(self) -> None:
        # Completion arrives through session_stopped; the future is not awaited here.
        self._recognizer.stop_continuous_recognition_async()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for signal in (
            self._recognizer.recognizing,
            self._recognizer.recognized,
            self._recognizer.canceled,
            self._recognizer.session_stopped,
        ):
            signal.disconnect_all()
        self.close_input()

    def _on_recognizing(self, evt: Any) -> None:
        self._listener.handle_recognizing(evt.result.text or "")

    def _on_recognized(self, evt: Any) -> None:
        reason = evt.result.reason
        if reason == self._speechsdk.ResultReason.RecognizedSpeech:
            self._listener.handle_recognized(evt.result.text or "")
        elif reason == self._speechsdk.ResultReason.NoMatch:
            self._listener.handle_no_match()

    def _on_canceled(self, evt: Any) -> None:
        details = evt.cancellation_details
        if details.reason == self._speechsdk.CancellationReason.EndOfStream:
            # Closing the push stream ends the session; not a failure.
            self._listener.handle_session_stopped()
            return
        self._listener.handle_canceled(str(details.reason), details.error_details or "")

    def _on_session_stopped(self, evt: Any) -> None:
        self._listener.handle_session_stopped()


class AzureSpeechEngine(SpeechEngine):
    """Wrapper around Azure Cognitive Services Speech SDK."""

    synthesis_mime = "audio/mpeg"

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._speechsdk: Any = None

    def _sdk(self) -> Any:
        if self._speechsdk is None:
            try:
                import azure.cognitiveservices.speech as speechsdk
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise ConfigError(
                    "azure-cognitiveservices-speech is required for the azure speech provider."
                ) from exc
            self._speechsdk = speechsdk
        return self._speechsdk

    def _speech_config(self, voice_name: str | None = None) -> Any:
        settings = self._settings
        if not settings.speech_service_key or not settings.speech_service_region:
            raise ConfigError("Speech service key and region must be configured.")

        speechsdk = self._sdk()
        speech_config = speechsdk.SpeechConfig(
            subscription=settings.speech_service_key,
            region=settings.speech_service_region,
        )
        speech_config.speech_recognition_language = settings.speech_language
        speech_config.speech_synthesis_voice_name = voice_name or settings.speech_voice_name
        speech_config.set_speech_synthesis_output_format(
            speechsdk.SpeechSynthesisOutputFormat.Audio16Khz32KBitRateMonoMp3
        )
        return speech_config

    def recognize_once(self, audio: bytes) -> str:
        if not audio:
            raise TranscriptionFailedError("Audio buffer must not be empty.")

        speech_config = self._speech_config()
        speechsdk = self._sdk()
        pcm = to_input_pcm16(audio)

        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=INPUT_SAMPLE_RATE,
            bits_per_sample=INPUT_BITS_PER_SAMPLE,
            channels=INPUT_CHANNELS,
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        push_stream.write(pcm.tobytes())
        push_stream.close()

        recognizer = speechsdk.SpeechRecognizer(
            speech_config=speech_config,
            audio_config=speechsdk.audio.AudioConfig(stream=push_stream),
        )
        result = recognizer.recognize_once_async().get()

        if result.reason == speechsdk.ResultReason.RecognizedSpeech:
            return result.text
        if result.reason == speechsdk.ResultReason.NoMatch:
            LOGGER.warning("No speech could be recognized")
            return ""
        if result.reason == speechsdk.ResultReason.Canceled:
            cancellation = result.cancellation_details
            LOGGER.error(
                "Speech recognition was canceled: %s - %s",
                cancellation.reason,
                cancellation.error_details,
            )
            raise TranscriptionFailedError(
                f"Speech recognition was canceled: {cancellation.error_details}"
            )
        return ""

    def open_continuous(self, listener: RecognitionListener) -> ContinuousRecognizer:
        speech_config = self._speech_config()
        return AzureContinuousRecognizer(self._sdk(), speech_config, listener)

    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        if not text or not text.strip():
            raise SynthesisFailedError("Text to synthesize must not be empty.")

        voice_name = voice or self._settings.speech_voice_name
        speech_config = self._speech_config(voice_name)
        speechsdk = self._sdk()
        synthesizer = speechsdk.SpeechSynthesizer(
            speech_config=speech_config,
            audio_config=None,  # allow retrieving audio data directly
        )
        ssml = build_ssml(text, voice_name, language=self._settings.speech_language)
        result = synthesizer.speak_ssml_async(ssml).get()

        if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
            LOGGER.info(
                "Speech synthesis completed (chars=%d, bytes=%d)",
                len(text),
                len(result.audio_data),
            )
            return result.audio_data
        if result.reason == speechsdk.ResultReason.Canceled:
            cancellation = result.cancellation_details
            raise SynthesisFailedError(f"Speech synthesis failed: {cancellation.error_details}")
        raise SynthesisFailedError(f"Speech synthesis failed with reason: {result.reason}")
