"""
Avatar Voice Agent - Audio Input Module
=======================================

Captures audio from the microphone in fixed-size frames.

Features:
- sounddevice callback stream
- Thread-safe frame queue (oldest frame dropped when full)
- Frame alignment for consistent output size
- Optional microphone gain
"""

from dataclasses import dataclass
from typing import Iterator, List, Dict, Optional
import logging
import queue
import threading

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class AudioInputConfig:
    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 20
    device: Optional[int] = None
    mic_gain: float = 1.0          # Microphone boost (1.0 = none)
    queue_max_size: int = 200      # Max frames to buffer


class AudioInput:
    """
    Captures audio from microphone in fixed-size frames.

    Usage:
        config = AudioInputConfig(sample_rate=16000, frame_ms=20)
        mic = AudioInput(config)
        mic.start()

        for frame in mic.frames():
            # frame: np.ndarray float32, shape (320,) for 20ms at 16kHz
            process(frame)

        mic.stop()
    """

    def __init__(self, config: Optional[AudioInputConfig] = None):
        self.config = config or AudioInputConfig()
        self.frame_samples = int(self.config.sample_rate * self.config.frame_ms / 1000)

        self._running = False
        self._stream = None
        self._queue: queue.Queue = queue.Queue(maxsize=self.config.queue_max_size)

        # Buffer for frame alignment (device may deliver variable chunk sizes)
        self._buffer = np.zeros(0, dtype=np.float32)
        self._buffer_lock = threading.Lock()

        self._overflow_count = 0

    def _audio_callback(self, indata, frames, time_info, status):
        """Callback function for sounddevice stream."""
        if status and status.input_overflow:
            self._overflow_count += 1

        audio = indata.copy().flatten().astype(np.float32)
        if self.config.mic_gain != 1.0:
            audio = (audio * self.config.mic_gain).clip(-1.0, 1.0)

        with self._buffer_lock:
            self._buffer = np.concatenate([self._buffer, audio])

            while len(self._buffer) >= self.frame_samples:
                frame = self._buffer[:self.frame_samples].copy()
                self._buffer = self._buffer[self.frame_samples:]

                try:
                    self._queue.put_nowait(frame)
                except queue.Full:
                    # Drop oldest frame to make room
                    try:
                        self._queue.get_nowait()
                        self._queue.put_nowait(frame)
                    except queue.Empty:
                        pass

    def start(self) -> None:
        """Start capturing audio from microphone."""
        if self._running:
            return

        import sounddevice as sd

        self._overflow_count = 0
        with self._buffer_lock:
            self._buffer = np.zeros(0, dtype=np.float32)
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

        self._stream = sd.InputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype='float32',
            blocksize=self.frame_samples,
            callback=self._audio_callback,
            device=self.config.device,
            latency='low',
        )
        self._stream.start()
        self._running = True
        logger.debug("mic_started device=%s rate=%d", self.config.device, self.config.sample_rate)

    def stop(self) -> None:
        """Stop capturing audio and release the device."""
        if not self._running:
            return

        self._running = False

        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

        if self._overflow_count > 0:
            logger.warning("mic_overflows count=%d", self._overflow_count)
        logger.debug("mic_stopped")

    @property
    def is_running(self) -> bool:
        """True while the device stream is open."""
        return self._running

    def get_frame(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        """
        Get next audio frame from queue.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            np.ndarray of shape (frame_samples,) dtype float32, or None if timeout
        """
        if not self._running:
            return None

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def frames(self) -> Iterator[np.ndarray]:
        """
        Generator that yields frames continuously until stopped.

        Yields:
            np.ndarray of shape (frame_samples,) dtype float32
        """
        while self._running:
            frame = self.get_frame(timeout=0.1)
            if frame is not None:
                yield frame

    @staticmethod
    def list_devices() -> List[Dict]:
        """List available input devices."""
        import sounddevice as sd

        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device['max_input_channels'] > 0:
                devices.append({
                    'index': i,
                    'name': device['name'],
                    'sample_rate': int(device['default_samplerate']),
                })
        return devices
