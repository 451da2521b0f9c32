"""
Avatar Voice Agent - Lip Sync Module
====================================

Turns playback chunks into a mouth-open parameter for the avatar.

Pipeline per chunk:
1. RMS of the int16 chunk, normalized to 0-1 (/ 32767)
2. Exponential smoothing (factor 0.15)
3. Threshold gate: below 0.005 the mouth is closed
4. Scale by 6.75, clamp to [0.1, 0.95], add a small sine wobble
"""

import math
import threading
import time
from typing import Callable, Optional

import numpy as np

SMOOTHING_FACTOR = 0.15     # Fraction of the gap closed per chunk
VOLUME_MULTIPLIER = 6.75    # Exaggerates mouth movement
VOLUME_THRESHOLD = 0.005    # Minimum smoothed volume that counts as speaking
MAX_MOUTH_OPEN = 0.95
MIN_MOUTH_OPEN = 0.1        # Base opening while speaking (avoids a mumbling look)
VARIATION_AMPLITUDE = 0.05


class LipSync:
    """
    Volume extractor feeding the avatar mouth.

    Called from the playback thread for every chunk written to the device.

    Usage:
        lip_sync = LipSync(avatar.set_mouth_open)
        for chunk in chunks:
            lip_sync.process_chunk(chunk)
        lip_sync.reset()
    """

    def __init__(
        self,
        on_mouth_open: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._on_mouth_open = on_mouth_open
        self._clock = clock
        self._lock = threading.Lock()
        self._current_volume = 0.0
        self._smoothed_volume = 0.0
        self._is_speaking = False
        self._mouth_open = 0.0

    def process_chunk(self, chunk: np.ndarray) -> float:
        """
        Update the mouth value from one chunk of int16 samples.

        Returns:
            The mouth-open value pushed to the avatar
        """
        if len(chunk) == 0:
            volume = 0.0
        else:
            samples = chunk.astype(np.float64)
            volume = float(np.sqrt(np.mean(samples ** 2))) / 32767.0

        with self._lock:
            self._current_volume = volume
            self._smoothed_volume += (volume - self._smoothed_volume) * SMOOTHING_FACTOR
            self._is_speaking = self._smoothed_volume > VOLUME_THRESHOLD

            if self._is_speaking:
                mouth = max(self._smoothed_volume * VOLUME_MULTIPLIER, MIN_MOUTH_OPEN)
                mouth = min(mouth, MAX_MOUTH_OPEN)
                mouth += math.sin(self._clock() * 10.0) * VARIATION_AMPLITUDE
                mouth = max(0.0, min(mouth, MAX_MOUTH_OPEN))
            else:
                mouth = 0.0
            self._mouth_open = mouth

        if self._on_mouth_open is not None:
            self._on_mouth_open(mouth)
        return mouth

    def reset(self) -> None:
        """Close the mouth and forget the smoothed volume."""
        with self._lock:
            self._current_volume = 0.0
            self._smoothed_volume = 0.0
            self._is_speaking = False
            self._mouth_open = 0.0
        if self._on_mouth_open is not None:
            self._on_mouth_open(0.0)

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._is_speaking

    @property
    def smoothed_volume(self) -> float:
        with self._lock:
            return self._smoothed_volume

    @property
    def mouth_open(self) -> float:
        with self._lock:
            return self._mouth_open
