"""
Tests: Wake word handler (pipeline/wake_word_handler.py)

A scripted model replaces openWakeWord; no audio devices are opened.
"""

import threading

import numpy as np
import pytest

from conftest import FakeMic
from pipeline.wake_word_handler import (
    CHUNK_SAMPLES,
    WakeWordHandler,
    load_openwakeword_model,
    resolve_wake_word_key,
)


class FakeModel:
    def __init__(self, scores=None, key="hey_jarvis_v0.1"):
        self.models = {key: object()}
        self.key = key
        self._scores = list(scores or [])
        self.chunks = []
        self.resets = 0

    def predict(self, chunk):
        self.chunks.append(chunk)
        score = self._scores.pop(0) if self._scores else 0.0
        return {self.key: score}

    def reset(self):
        self.resets += 1


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class SlowMic(FakeMic):
    """Serves its frames, then idles like a quiet microphone."""

    def get_frame(self, timeout=0.1):
        if self._frames:
            return self._frames.popleft()
        threading.Event().wait(0.01)
        return None


def make_handler(model, mic=None, **kwargs):
    loads = []

    def loader(name, noise_suppression):
        loads.append((name, noise_suppression))
        return model, resolve_wake_word_key(model, name)

    handler = WakeWordHandler(mic or FakeMic(), "hey_jarvis", model_loader=loader, **kwargs)
    handler.loads = loads
    return handler


def chunk(n=CHUNK_SAMPLES):
    return np.zeros(n, dtype=np.int16)


# =============================================================================
# Model keys / loading
# =============================================================================

class Keys:
    def __init__(self, *keys):
        self.models = {k: None for k in keys}


@pytest.mark.parametrize("keys,requested,expected", [
    (("alexa_v0.1.0",), "alexa", "alexa_v0.1.0"),
    (("hey_jarvis", "alexa"), "alexa", "alexa"),
    (("my_word.v2",), "my_word", "my_word.v2"),
    (("other",), "alexa", "other"),
    ((), "alexa", "alexa"),
])
def test_resolve_wake_word_key(keys, requested, expected):
    assert resolve_wake_word_key(Keys(*keys), requested) == expected


def test_missing_custom_model(tmp_path):
    pytest.importorskip("openwakeword")
    with pytest.raises(FileNotFoundError):
        load_openwakeword_model(str(tmp_path / "missing.onnx"))


@pytest.mark.parametrize("threshold", [0.0, 1.0, 1.5])
def test_threshold_validated(threshold):
    with pytest.raises(ValueError):
        WakeWordHandler(FakeMic(), threshold=threshold)


def test_load_resolves_key():
    handler = make_handler(FakeModel())
    handler.load()
    assert handler.wake_word_key == "hey_jarvis_v0.1"
    assert handler.loads == [("hey_jarvis", True)]


# =============================================================================
# Detection
# =============================================================================

def test_no_model_no_detection():
    handler = make_handler(FakeModel([0.9]))
    assert handler.process_frame(chunk()) is None


def test_frames_buffered_into_chunks():
    model = FakeModel([0.1, 0.9])
    handler = make_handler(model)
    handler.load()

    assert handler.process_frame(chunk(640)) is None
    assert model.chunks == []
    assert handler.process_frame(chunk(640)) is None
    assert len(model.chunks) == 1

    assert handler.process_frame(chunk()) == pytest.approx(0.9)
    assert handler.detections == 1
    assert model.resets == 1


def test_float_frames_converted():
    model = FakeModel()
    handler = make_handler(model)
    handler.load()
    handler.process_frame(np.full(CHUNK_SAMPLES, 0.5, dtype=np.float32))
    assert model.chunks[0].dtype == np.int16
    assert model.chunks[0][0] == int(0.5 * 32767)


def test_score_must_exceed_threshold():
    handler = make_handler(FakeModel([0.5]), threshold=0.5)
    handler.load()
    assert handler.process_frame(chunk()) is None


def test_cooldown_after_detection():
    clock = Clock()
    handler = make_handler(FakeModel([0.9, 0.9, 0.9]), clock=clock, cooldown_sec=2.0)
    handler.load()

    assert handler.process_frame(chunk()) is not None
    clock.now = 1.0
    assert handler.process_frame(chunk()) is None
    clock.now = 2.5
    assert handler.process_frame(chunk()) is not None
    assert handler.detections == 2


# =============================================================================
# Pause / resume / swap
# =============================================================================

def test_starts_paused_and_resume_opens_mic():
    mic = FakeMic()
    model = FakeModel()
    handler = make_handler(model, mic)
    handler.load()
    assert handler.is_paused

    handler.resume()
    handler.resume()
    assert not handler.is_paused
    assert mic.starts == 1
    assert model.resets == 1

    handler.pause()
    handler.pause()
    assert handler.is_paused
    assert mic.stops == 1


def test_resume_failure_stays_paused():
    handler = make_handler(FakeModel(), FakeMic(fail_on_start=OSError("device busy")))
    handler.load()
    with pytest.raises(OSError):
        handler.resume()
    assert handler.is_paused


def test_swap_model_leaves_handler_paused():
    mic = FakeMic()
    handler = make_handler(FakeModel(), mic)
    handler.load()
    handler.resume()

    new_model = FakeModel(key="alexa_v0.1")
    handler._load = lambda name, ns: (new_model, resolve_wake_word_key(new_model, name))
    handler.swap_model("alexa")

    assert handler.is_paused
    assert handler.model_name == "alexa"
    assert handler.wake_word_key == "alexa_v0.1"


# =============================================================================
# Listener thread
# =============================================================================

def test_listener_reports_detection():
    fired = threading.Event()
    mic = SlowMic([chunk(), chunk()])
    handler = make_handler(FakeModel([0.2, 0.95]), mic)

    handler.start(on_wake=fired.set)
    handler.resume()
    try:
        assert fired.wait(2.0)
    finally:
        handler.stop()

    assert handler.detections == 1
    assert handler.is_paused
    assert mic.stops == 1


def test_paused_listener_ignores_audio():
    fired = threading.Event()
    handler = make_handler(FakeModel([0.95]), SlowMic([chunk()]))
    handler.start(on_wake=fired.set)
    try:
        assert not fired.wait(0.2)
    finally:
        handler.stop()
