"""
Avatar Voice Agent - Voice Activity Detection Module
====================================================

Decides when the user has finished talking.

Energy-based detection on int16-scale RMS:
1. Frame RMS below silence_threshold = silence, otherwise speech
2. Silence is timed in audio time (sum of frame durations)
3. Speech has ended once silence lasts min_silence_duration_ms
   AFTER speech was observed (leading silence never ends a turn)

A recording is "meaningful" when speech was observed and the average
RMS over the whole recording exceeds half the silence threshold; this
filters out single clicks and bumps that cross the threshold once.

Typical thresholds (int16 units):
- 150-250: quiet room, soft voice
- 300: default
- 500+: noisy environment
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np


@dataclass(frozen=True)
class VADConfig:
    """Configuration for one recording session (immutable)."""
    silence_threshold: int = 300          # int16 RMS below this = silence
    min_silence_duration_ms: int = 2000   # Silence after speech that ends the turn
    sample_rate: int = 16000


class EnergyVAD:
    """
    Voice Activity Detection by frame energy and silence duration.

    Usage:
        vad = EnergyVAD(VADConfig(silence_threshold=300, min_silence_duration_ms=2000))

        for frame in audio_frames:
            if vad.is_speech_ended(frame):
                break

        if vad.has_detected_meaningful_audio():
            process(recording)
    """

    def __init__(self, config: Optional[VADConfig] = None):
        self.config = config or VADConfig()

        if self.config.silence_threshold <= 0:
            raise ValueError(f"silence_threshold must be positive, got {self.config.silence_threshold}")
        if self.config.min_silence_duration_ms <= 0:
            raise ValueError(
                f"min_silence_duration_ms must be positive, got {self.config.min_silence_duration_ms}"
            )

        self.reset()

    def is_speech_ended(self, frame: np.ndarray) -> bool:
        """
        Feed one frame and report whether the speech segment has ended.

        Args:
            frame: float32 [-1, 1] or int16 samples

        Returns:
            True once speech was observed and silence has lasted
            at least min_silence_duration_ms
        """
        rms = self.compute_rms(frame)
        frame_ms = 1000.0 * len(frame) / self.config.sample_rate

        self._frames_processed += 1
        self._rms_total += rms
        self._last_rms = rms

        if rms < self.config.silence_threshold:
            self._silence_ms += frame_ms
        else:
            self._speech_detected = True
            self._speech_frames += 1
            self._silence_ms = 0.0

        return self._speech_detected and self._silence_ms >= self.config.min_silence_duration_ms

    def is_speech(self, frame: np.ndarray) -> bool:
        """Raw per-frame decision (no state update)."""
        return self.compute_rms(frame) >= self.config.silence_threshold

    @property
    def has_detected_speech(self) -> bool:
        """True once any frame crossed the silence threshold."""
        return self._speech_detected

    def has_detected_meaningful_audio(self) -> bool:
        """
        True when speech was observed and average energy is plausible.

        Returns:
            speech observed AND average RMS > 0.5 * silence_threshold
        """
        if not self._speech_detected or self._frames_processed == 0:
            return False
        average = self._rms_total / self._frames_processed
        return average > 0.5 * self.config.silence_threshold

    def reset(self) -> None:
        """Reset all detection state."""
        self._speech_detected = False
        self._silence_ms = 0.0
        self._frames_processed = 0
        self._speech_frames = 0
        self._rms_total = 0.0
        self._last_rms = 0.0

    def get_stats(self) -> Dict:
        """
        Get VAD statistics.

        Returns:
            Dict with processing statistics
        """
        total = self._frames_processed
        return {
            "frames_processed": total,
            "speech_frames": self._speech_frames,
            "speech_ratio": self._speech_frames / total if total > 0 else 0,
            "average_rms": self._rms_total / total if total > 0 else 0.0,
            "last_rms": self._last_rms,
            "silence_ms": self._silence_ms,
        }

    @staticmethod
    def compute_rms(frame: np.ndarray) -> float:
        """
        Compute RMS energy of a frame in int16 units.

        Args:
            frame: float32 [-1, 1] or int16 samples

        Returns:
            RMS value (0.0 to ~32767.0)
        """
        if len(frame) == 0:
            return 0.0
        samples = frame.astype(np.float64)
        if np.issubdtype(frame.dtype, np.floating):
            samples = samples * 32767.0
        return float(np.sqrt(np.mean(samples ** 2)))
