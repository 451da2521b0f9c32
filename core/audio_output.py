"""
Avatar Voice Agent - Audio Output Module
========================================

Writes synthesized speech to the speakers chunk by chunk.

Features:
- Blocking chunk writes on a sounddevice OutputStream
  (the caller decides between chunks whether to continue)
- Volume control
- Device released on close, safe to call twice

Dependencies:
- sounddevice (uses PortAudio)
"""

from dataclasses import dataclass
from typing import List, Optional
import logging
import threading

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class AudioOutputConfig:
    """Configuration for audio output."""
    device: Optional[int] = None    # None = default device
    volume: float = 1.0             # 0.0 to 1.0
    latency: str = "low"            # "low", "high"


class AudioOutput:
    """
    Speaker sink used by the playback worker.

    Usage:
        output = AudioOutput(AudioOutputConfig(volume=0.8))
        output.open(sample_rate=24000)
        for chunk in chunks:
            output.write(chunk)   # int16, blocks until queued to the device
        output.close()
    """

    def __init__(self, config: Optional[AudioOutputConfig] = None):
        self.config = config or AudioOutputConfig()
        self._stream = None
        self._lock = threading.Lock()

    def open(self, sample_rate: int) -> None:
        """
        Open the output stream.

        Args:
            sample_rate: Sample rate of the clip about to be played
        """
        import sounddevice as sd

        with self._lock:
            if self._stream is not None:
                raise RuntimeError("Output stream already open")
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="int16",
                device=self.config.device,
                latency=self.config.latency,
            )
            self._stream.start()
        logger.debug("speaker_opened rate=%d", sample_rate)

    def write(self, chunk: np.ndarray) -> None:
        """
        Write one chunk of int16 samples (blocking).

        Args:
            chunk: int16 mono samples
        """
        if self.config.volume != 1.0:
            scaled = chunk.astype(np.float32) * self.config.volume
            chunk = np.clip(scaled, -32768, 32767).astype(np.int16)

        with self._lock:
            stream = self._stream
        if stream is None:
            raise RuntimeError("Output stream is not open")
        stream.write(np.ascontiguousarray(chunk.reshape(-1, 1)))

    def close(self) -> None:
        """Stop and release the output stream."""
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.debug("speaker_closed")

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._stream is not None

    def set_volume(self, volume: float) -> None:
        """
        Set playback volume.

        Args:
            volume: Volume level (0.0 to 1.0)
        """
        self.config.volume = max(0.0, min(1.0, volume))

    @staticmethod
    def list_devices() -> List[dict]:
        """
        List available audio output devices.

        Returns:
            List of device info dictionaries
        """
        import sounddevice as sd

        output_devices = []
        for i, device in enumerate(sd.query_devices()):
            if device['max_output_channels'] > 0:
                output_devices.append({
                    'id': i,
                    'name': device['name'],
                    'channels': device['max_output_channels'],
                    'sample_rate': device['default_samplerate'],
                })
        return output_devices
