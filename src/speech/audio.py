"""PCM helpers shared by the speech engines."""

from __future__ import annotations

import io
import logging

import numpy as np
import soundfile as sf

from calling.errors import InvalidAudioError
from speech.engine import INPUT_SAMPLE_RATE

LOGGER = logging.getLogger(__name__)

_CONTAINER_MAGIC = (b"RIFF", b"fLaC", b"OggS")


def pcm16_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate:
        return pcm
    if pcm.size == 0:
        return pcm.astype(np.int16)

    x_old = np.arange(pcm.size, dtype=np.float32)
    x_new = np.linspace(0, pcm.size - 1, int(pcm.size * dst_rate / src_rate), dtype=np.float32)

    y_old = pcm.astype(np.float32)
    y_new = np.interp(x_new, x_old, y_old)

    return np.clip(y_new, -32768, 32767).astype(np.int16)


def pcm16_from_bytes(raw: bytes) -> np.ndarray:
    """Interpret raw little-endian 16-bit mono PCM; a trailing odd byte is dropped."""

    usable = len(raw) - (len(raw) % 2)
    return np.frombuffer(raw[:usable], dtype="<i2").astype(np.int16)


def is_container(audio: bytes) -> bool:
    return audio[:4] in _CONTAINER_MAGIC


def to_input_pcm16(audio: bytes) -> np.ndarray:
    """Normalize an upload (WAV/FLAC/OGG or raw PCM) to 16 kHz mono PCM16."""

    if not is_container(audio):
        return pcm16_from_bytes(audio)

    try:
        with sf.SoundFile(io.BytesIO(audio), mode="r") as audio_file:
            samples = audio_file.read(dtype="int16")
            src_rate = int(audio_file.samplerate)
    except sf.LibsndfileError as exc:
        raise InvalidAudioError(f"Audio could not be decoded: {exc}") from exc

    if isinstance(samples, np.ndarray) and samples.ndim > 1:
        samples = np.mean(samples, axis=1).astype(np.int16)  # convert to mono

    if src_rate != INPUT_SAMPLE_RATE:
        LOGGER.debug("Resampling upload from %d Hz to %d Hz", src_rate, INPUT_SAMPLE_RATE)
    return pcm16_resample(np.asarray(samples, dtype=np.int16), src_rate, INPUT_SAMPLE_RATE)


def pcm16_to_float32(pcm: np.ndarray) -> np.ndarray:
    return (pcm.astype(np.float32) / 32768.0).astype(np.float32)
