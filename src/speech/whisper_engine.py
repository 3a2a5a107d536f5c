"""Offline speech engine based on faster-whisper.

Continuous recognition segments the push stream with an energy VAD and
transcribes each utterance once it ends, so only final results are produced.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from typing import Protocol

import numpy as np
from faster_whisper import WhisperModel

from calling.errors import SynthesisFailedError, TranscriptionFailedError
from config.settings import Settings, get_settings
from speech.audio import pcm16_from_bytes, pcm16_to_float32, to_input_pcm16
from speech.engine import INPUT_SAMPLE_RATE, ContinuousRecognizer, RecognitionListener, SpeechEngine
from speech.vad import EnergyVAD, VADConfig

LOGGER = logging.getLogger(__name__)


class Transcriber(Protocol):
    def transcribe(self, pcm: np.ndarray) -> str:  # pragma: no cover - protocol stub
        ...


class WhisperTranscriber:
    """Utterance transcription using faster-whisper; the model loads on first use."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._model: WhisperModel | None = None
        self._lock = threading.Lock()
        self._language = self._settings.speech_language.split("-")[0] or None

    def _get_model(self) -> WhisperModel:
        if self._model is None:
            settings = self._settings
            self._model = WhisperModel(
                model_size_or_path=settings.whisper_model_size,
                device=settings.whisper_device,
                compute_type=settings.whisper_compute_type,
            )
        return self._model

    def transcribe(self, pcm: np.ndarray) -> str:
        # One model instance serves every session; inference calls are serialized.
        with self._lock:
            model = self._get_model()
            segments, _info = model.transcribe(
                pcm16_to_float32(pcm),
                beam_size=5,
                task="transcribe",
                language=self._language,
                condition_on_previous_text=False,
                temperature=0.0,
            )
            return merge_segment_texts(segment.text for segment in segments)


def merge_segment_texts(texts: Iterable[str]) -> str:
    """Merge segment texts into a single string."""

    return " ".join(text.strip() for text in texts if text and text.strip()).strip()


_END_OF_INPUT = None


class WhisperContinuousRecognizer(ContinuousRecognizer):
    """Single-consumer worker thread draining the push channel through the VAD."""

    def __init__(
        self,
        transcriber: Transcriber,
        listener: RecognitionListener,
        vad_config: VADConfig | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._listener = listener
        self._vad = EnergyVAD(vad_config)
        self._frame_bytes = INPUT_SAMPLE_RATE * self._vad.cfg.frame_ms // 1000 * 2
        self._queue: queue.Queue[bytes | None] = queue.Queue()
        self._pending = b""
        self._lock = threading.Lock()
        self._input_closed = False
        self._thread = threading.Thread(target=self._run, name="whisper-recognizer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def write(self, chunk: bytes) -> None:
        self._queue.put(chunk)

    def close_input(self) -> None:
        with self._lock:
            if self._input_closed:
                return
            self._input_closed = True
        self._queue.put(_END_OF_INPUT)

    def request_stop(self) -> None:
        self.close_input()

    def close(self) -> None:
        self.close_input()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        try:
            while True:
                item = self._queue.get()
                if item is _END_OF_INPUT:
                    break
                self._consume(item)

            tail = self._vad.flush()
            if tail is not None:
                self._emit(tail)
        except Exception as exc:
            LOGGER.exception("Offline recognition failed")
            self._listener.handle_canceled("Error", str(exc))
            return

        self._listener.handle_session_stopped()

    def _consume(self, chunk: bytes) -> None:
        buffer = self._pending + chunk
        whole = len(buffer) - (len(buffer) % self._frame_bytes)
        for offset in range(0, whole, self._frame_bytes):
            frame = pcm16_from_bytes(buffer[offset : offset + self._frame_bytes])
            ended, utterance = self._vad.push_frame(frame)
            if ended and utterance is not None:
                self._emit(utterance)
        self._pending = buffer[whole:]

    def _emit(self, utterance: np.ndarray) -> None:
        text = self._transcriber.transcribe(utterance)
        if text:
            self._listener.handle_recognized(text)
        else:
            self._listener.handle_no_match()


class WhisperSpeechEngine(SpeechEngine):
    """Recognition-only engine; synthesis requires the azure provider."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transcriber: Transcriber | None = None,
        vad_config: VADConfig | None = None,
    ) -> None:
        self._transcriber = transcriber or WhisperTranscriber(settings)
        self._vad_config = vad_config

    def recognize_once(self, audio: bytes) -> str:
        pcm = to_input_pcm16(audio) if audio else np.array([], dtype=np.int16)
        if pcm.size == 0:
            raise TranscriptionFailedError("Audio buffer must not be empty.")
        try:
            return self._transcriber.transcribe(pcm)
        except Exception as exc:
            LOGGER.exception("Offline transcription failed")
            raise TranscriptionFailedError(str(exc)) from exc

    def open_continuous(self, listener: RecognitionListener) -> ContinuousRecognizer:
        return WhisperContinuousRecognizer(self._transcriber, listener, self._vad_config)

    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        raise SynthesisFailedError("Speech synthesis is not supported by the whisper provider.")
