from __future__ import annotations

import numpy as np

from speech.vad import EnergyVAD, VADConfig


def _cfg() -> VADConfig:
    return VADConfig(
        start_frames=2,
        end_frames=3,
        preroll_frames=2,
        min_utterance_frames=2,
        min_rms=50.0,
        threshold_mult=2.0,
        noise_alpha=0.2,
    )


SILENCE = np.zeros(320, dtype=np.int16)
VOICE = (np.ones(320, dtype=np.int16) * 2000).astype(np.int16)


def test_energy_vad_detects_utterance_end() -> None:
    vad = EnergyVAD(_cfg())

    # Prime noise floor with silence.
    for _ in range(5):
        assert vad.push_frame(SILENCE) == (False, None)

    assert vad.push_frame(VOICE) == (False, None)
    assert vad.push_frame(VOICE) == (False, None)
    assert vad.in_speech is True

    for _ in range(2):
        assert vad.push_frame(SILENCE) == (False, None)

    ended, utt = vad.push_frame(SILENCE)
    assert ended is True
    assert utt is not None
    assert utt.dtype == np.int16
    assert utt.size > 0
    assert vad.in_speech is False


def test_flush_returns_utterance_in_progress() -> None:
    vad = EnergyVAD(_cfg())
    for _ in range(4):
        vad.push_frame(VOICE)

    utt = vad.flush()

    assert utt is not None
    assert utt.size >= 4 * VOICE.size
    assert vad.flush() is None


def test_flush_drops_too_short_utterance() -> None:
    cfg = _cfg()
    cfg.min_utterance_frames = 50
    vad = EnergyVAD(cfg)
    for _ in range(3):
        vad.push_frame(VOICE)

    assert vad.flush() is None


def test_threshold_never_drops_below_min_rms() -> None:
    vad = EnergyVAD(_cfg())
    for _ in range(10):
        vad.push_frame(SILENCE)

    assert vad.threshold() == 50.0
