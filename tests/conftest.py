"""
Shared test fixtures
====================

ManualLoop stands in for the ControlLoop: posted callables run only when a
test calls run_pending(), and timers fire only when the virtual clock is
advanced. Worker submissions run synchronously, but their callbacks are
still queued, just like the real loop.

Run with:
    python -m pytest tests -v
"""

import sys
import threading
from collections import deque
from concurrent.futures import Future
from pathlib import Path

# Ensure the project root is on path when running tests
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from utils.scheduling import TimerHandle


# =============================================================================
# Control loop
# =============================================================================

class ManualLoop:
    """Deterministic stand-in for utils.scheduling.ControlLoop."""

    def __init__(self):
        self.now = 0.0
        self._queue = deque()
        self._lock = threading.Lock()
        self._timers = []
        self.running = False
        self.started = 0
        self.stopped = 0

    def start(self):
        self.running = True
        self.started += 1

    def stop(self, timeout=2.0):
        self.running = False
        self.stopped += 1

    @property
    def is_running(self):
        return self.running

    def in_loop_thread(self):
        return True

    def post(self, fn, *args):
        with self._lock:
            self._queue.append((fn, args))

    def call_later(self, delay_sec, fn, *args):
        handle = TimerHandle(fn, args)
        with self._lock:
            self._timers.append((self.now + delay_sec, handle))
        return handle

    def submit(self, fn, *args, callback=None):
        future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        if callback is not None:
            self.post(callback, future)
        return future

    def run_pending(self, limit=1000):
        """Run queued callables (including ones they queue). Returns how many ran."""
        ran = 0
        while ran < limit:
            with self._lock:
                if not self._queue:
                    break
                fn, args = self._queue.popleft()
            fn(*args)
            ran += 1
        return ran

    def advance(self, seconds):
        """Move the virtual clock, fire due timers, then drain the queue."""
        self.now += seconds
        with self._lock:
            due = [t for t in self._timers if t[0] <= self.now]
            self._timers = [t for t in self._timers if t[0] > self.now]
        for _, handle in sorted(due, key=lambda t: t[0]):
            self.post(handle._run)
        self.run_pending()

    @property
    def pending_timers(self):
        with self._lock:
            return [h for _, h in self._timers if not h.cancelled]


# =============================================================================
# Audio devices
# =============================================================================

class FakeMic:
    """Serves a fixed list of float32 frames, then reports the source as stopped."""

    def __init__(self, frames=None, fail_on_start=None):
        self._frames = deque(frames or [])
        self._fail_on_start = fail_on_start
        self.is_running = False
        self.starts = 0
        self.stops = 0

    def start(self):
        if self._fail_on_start is not None:
            raise self._fail_on_start
        self.starts += 1
        self.is_running = True

    def stop(self):
        self.stops += 1
        self.is_running = False

    def get_frame(self, timeout=0.1):
        if self._frames:
            return self._frames.popleft()
        self.is_running = False
        return None


class BlockingMic(FakeMic):
    """Never delivers a frame; recording ends only when told to stop."""

    def get_frame(self, timeout=0.1):
        threading.Event().wait(min(timeout, 0.01))
        return None


class FakeSpeaker:
    def __init__(self, fail_on_write=None, write_delay=0.0):
        self.opened_with = None
        self.chunks = []
        self.closed = 0
        self._fail_on_write = fail_on_write
        self._write_delay = write_delay

    def open(self, sample_rate):
        self.opened_with = sample_rate

    def write(self, chunk):
        if self._fail_on_write is not None:
            raise self._fail_on_write
        if self._write_delay:
            threading.Event().wait(self._write_delay)
        self.chunks.append(chunk)

    def close(self):
        self.closed += 1


class FakeAvatar:
    def __init__(self):
        self.expressions = []
        self.motions = []
        self.mouth = []

    def set_expression(self, name):
        self.expressions.append(name)

    def start_motion(self, index):
        self.motions.append(index)

    def set_mouth_open(self, value):
        self.mouth.append(value)


# =============================================================================
# Signals
# =============================================================================

def tone(amplitude=0.3, ms=20, sample_rate=16000, freq=220.0):
    """A sine frame, loud enough to count as speech at the default threshold."""
    t = np.arange(int(sample_rate * ms / 1000)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(ms=20, sample_rate=16000):
    return np.zeros(int(sample_rate * ms / 1000), dtype=np.float32)


@pytest.fixture
def loop():
    return ManualLoop()


@pytest.fixture
def avatar():
    return FakeAvatar()
