from __future__ import annotations

import io
import wave

import numpy as np
import pytest

from calling.errors import InvalidAudioError, SynthesisFailedError, TranscriptionFailedError
from speech.recognition import RecognitionSession, RecognitionState
from speech.vad import VADConfig
from speech.whisper_engine import WhisperContinuousRecognizer, WhisperSpeechEngine, merge_segment_texts

VAD = VADConfig(start_frames=2, end_frames=3, preroll_frames=2, min_utterance_frames=2, min_rms=50.0)

FRAME = 320
VOICE = (np.ones(FRAME, dtype=np.int16) * 2000).tobytes()
SILENCE = np.zeros(FRAME, dtype=np.int16).tobytes()


def _wav_bytes(pcm: np.ndarray, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.astype(np.int16).tobytes())
    return buffer.getvalue()


class FakeTranscriber:
    def __init__(self, texts: list[str] | None = None, error: Exception | None = None) -> None:
        self.texts = list(texts or ["hello there"])
        self.error = error
        self.calls: list[int] = []

    def transcribe(self, pcm: np.ndarray) -> str:
        self.calls.append(int(pcm.size))
        if self.error is not None:
            raise self.error
        return self.texts.pop(0) if self.texts else ""


class RecordingListener:
    def __init__(self) -> None:
        self.recognized: list[str] = []
        self.no_match = 0
        self.canceled: list[tuple[str, str]] = []
        self.stopped = 0

    def handle_recognizing(self, text: str) -> None:
        pass

    def handle_recognized(self, text: str) -> None:
        self.recognized.append(text)

    def handle_no_match(self) -> None:
        self.no_match += 1

    def handle_canceled(self, reason: str, details: str) -> None:
        self.canceled.append((reason, details))

    def handle_session_stopped(self) -> None:
        self.stopped += 1


def test_merge_segment_texts() -> None:
    assert merge_segment_texts([" Hallo ", "", "  ", "Welt"]) == "Hallo Welt"


def test_continuous_recognizer_transcribes_each_utterance() -> None:
    transcriber = FakeTranscriber(["first", "second"])
    listener = RecordingListener()
    recognizer = WhisperContinuousRecognizer(transcriber, listener, VAD)
    recognizer.start()

    for _ in range(2):
        for _ in range(4):
            recognizer.write(VOICE)
        for _ in range(4):
            recognizer.write(SILENCE)
    recognizer.close_input()
    recognizer.join(timeout=5)

    assert listener.recognized == ["first", "second"]
    assert listener.stopped == 1
    assert listener.canceled == []


def test_chunks_are_reframed_regardless_of_size() -> None:
    listener = RecordingListener()
    recognizer = WhisperContinuousRecognizer(FakeTranscriber(), listener, VAD)
    recognizer.start()

    stream = VOICE * 5 + SILENCE * 4
    for offset in range(0, len(stream), 333):
        recognizer.write(stream[offset : offset + 333])
    recognizer.close_input()
    recognizer.join(timeout=5)

    assert listener.recognized == ["hello there"]


def test_trailing_speech_is_flushed_on_close() -> None:
    listener = RecordingListener()
    recognizer = WhisperContinuousRecognizer(FakeTranscriber(), listener, VAD)
    recognizer.start()

    for _ in range(5):
        recognizer.write(VOICE)
    recognizer.close_input()
    recognizer.close()
    recognizer.join(timeout=5)

    assert listener.recognized == ["hello there"]
    assert listener.stopped == 1


def test_empty_transcription_is_reported_as_no_match() -> None:
    listener = RecordingListener()
    recognizer = WhisperContinuousRecognizer(FakeTranscriber([""]), listener, VAD)
    recognizer.start()

    for _ in range(5):
        recognizer.write(VOICE)
    recognizer.close_input()
    recognizer.join(timeout=5)

    assert listener.recognized == []
    assert listener.no_match == 1


def test_transcriber_failure_cancels_recognition() -> None:
    listener = RecordingListener()
    recognizer = WhisperContinuousRecognizer(FakeTranscriber(error=RuntimeError("model crashed")), listener, VAD)
    recognizer.start()

    for _ in range(5):
        recognizer.write(VOICE)
    recognizer.close_input()
    recognizer.join(timeout=5)

    assert listener.canceled == [("Error", "model crashed")]
    assert listener.stopped == 0


def test_session_over_whisper_engine_delivers_final_transcripts() -> None:
    engine = WhisperSpeechEngine(transcriber=FakeTranscriber(["good evening"]), vad_config=VAD)
    transcripts: list = []
    session = RecognitionSession(engine, "c1", stop_timeout=5)
    session.start(transcripts.append)

    for _ in range(5):
        assert session.write(VOICE) is True
    session.stop()

    assert session.state is RecognitionState.STOPPED
    assert [event.text for event in transcripts] == ["good evening"]


def test_recognize_once_accepts_wav_upload() -> None:
    transcriber = FakeTranscriber(["one shot"])
    engine = WhisperSpeechEngine(transcriber=transcriber)
    pcm = (np.ones(8000, dtype=np.int16) * 1000).astype(np.int16)

    text = engine.recognize_once(_wav_bytes(pcm, 8000))

    assert text == "one shot"
    # 8 kHz input is resampled to 16 kHz.
    assert transcriber.calls == [16000]


def test_recognize_once_rejects_empty_audio() -> None:
    engine = WhisperSpeechEngine(transcriber=FakeTranscriber())

    with pytest.raises(TranscriptionFailedError):
        engine.recognize_once(b"")


def test_recognize_once_wraps_transcriber_errors() -> None:
    engine = WhisperSpeechEngine(transcriber=FakeTranscriber(error=RuntimeError("oom")))

    with pytest.raises(TranscriptionFailedError) as excinfo:
        engine.recognize_once(VOICE)

    assert excinfo.value.detail == "oom"


def test_whisper_engine_does_not_synthesize() -> None:
    with pytest.raises(SynthesisFailedError):
        WhisperSpeechEngine(transcriber=FakeTranscriber()).synthesize("hello")


def test_recognize_once_rejects_corrupt_container() -> None:
    engine = WhisperSpeechEngine(transcriber=FakeTranscriber())

    with pytest.raises(InvalidAudioError):
        engine.recognize_once(b"RIFF....WAVE")
