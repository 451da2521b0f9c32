"""
Tests: Lip sync (core/lip_sync.py)
"""

import numpy as np
import pytest

from core.lip_sync import MAX_MOUTH_OPEN, LipSync


def loud_chunk(value=8000, n=1024):
    return np.full(n, value, dtype=np.int16)


@pytest.fixture
def lip_sync(avatar):
    # Clock fixed at 0 so the sine wobble is zero
    return LipSync(avatar.set_mouth_open, clock=lambda: 0.0)


def test_silence_keeps_mouth_closed(lip_sync, avatar):
    assert lip_sync.process_chunk(np.zeros(1024, dtype=np.int16)) == 0.0
    assert lip_sync.is_speaking is False
    assert avatar.mouth == [0.0]


def test_smoothing_moves_fraction_of_gap(lip_sync):
    lip_sync.process_chunk(loud_chunk(8000))
    volume = 8000 / 32767.0
    assert lip_sync.smoothed_volume == pytest.approx(volume * 0.15)


def test_loud_audio_opens_mouth_within_bounds(lip_sync):
    for _ in range(30):
        mouth = lip_sync.process_chunk(loud_chunk(20000))
    assert lip_sync.is_speaking is True
    assert 0.1 <= mouth <= MAX_MOUTH_OPEN


def test_quiet_speech_gets_minimum_opening(lip_sync):
    # smoothed volume just over the gate: 0.006 * 6.75 < 0.1
    for _ in range(60):
        mouth = lip_sync.process_chunk(loud_chunk(200))
    assert lip_sync.is_speaking is True
    assert mouth == pytest.approx(0.1)


def test_reset_closes_mouth(lip_sync, avatar):
    lip_sync.process_chunk(loud_chunk(20000))
    lip_sync.reset()
    assert lip_sync.mouth_open == 0.0
    assert lip_sync.smoothed_volume == 0.0
    assert avatar.mouth[-1] == 0.0


def test_empty_chunk(lip_sync):
    assert lip_sync.process_chunk(np.zeros(0, dtype=np.int16)) == 0.0
