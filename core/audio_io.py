"""
Avatar Voice Agent - Audio I/O Coordinator
==========================================

Owns the microphone and the speaker for one conversation session.

Recording:
- Captures frames from the mic on a worker thread
- Feeds every frame through EnergyVAD
- Stops on VAD silence-after-speech OR on a hard timeout,
  whichever happens first (the other one is cancelled)
- Produces a 16 kHz mono 16-bit WAV clip

Playback:
- Decodes a WAV clip and writes it in fixed-size chunks
- Checks a cooperative interrupt flag before every chunk
- Forwards every written chunk to lip sync

At most one of {recording, playback} is active at any instant.
Starting a second one raises AudioBusyError instead of queueing.

Results are posted to the control loop, never returned from a worker thread.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
import logging
import threading
import time

import numpy as np

from core.lip_sync import LipSync
from core.vad import EnergyVAD, VADConfig
from utils.audio_utils import (
    apply_fade,
    decode_wav,
    encode_wav,
    float_to_int16,
    iter_chunks,
)

logger = logging.getLogger(__name__)


class AudioBusyError(RuntimeError):
    """Raised when recording or playback is requested while one is active."""


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class RecordingComplete:
    clip: bytes                 # WAV, 44-byte header
    duration_ms: float
    stopped_by: str             # "vad", "timeout", "stop" or "source"
    path: Optional[str] = None  # Set when recordings_dir is configured


@dataclass(frozen=True)
class NoMeaningfulAudio:
    stopped_by: str


@dataclass(frozen=True)
class RecordingFailed:
    error: str


RecordingResult = Union[RecordingComplete, NoMeaningfulAudio, RecordingFailed]


@dataclass(frozen=True)
class PlaybackCompleted:
    pass


@dataclass(frozen=True)
class PlaybackInterrupted:
    pass


@dataclass(frozen=True)
class PlaybackFailed:
    error: str


PlaybackResult = Union[PlaybackCompleted, PlaybackInterrupted, PlaybackFailed]


@dataclass
class AudioIOConfig:
    sample_rate: int = 16000
    playback_chunk_frames: int = 1024
    fade_ms: int = 5
    recordings_dir: str = ""


class _RecordingSession:
    """State for one recording; the timer and worker both reference it."""

    def __init__(self, vad_config: VADConfig, on_result: Callable[[RecordingResult], None]):
        self.vad_config = vad_config
        self.on_result = on_result
        self.stop_event = threading.Event()
        self.stop_reason = "vad"
        self.timer = None
        self.thread: Optional[threading.Thread] = None


class AudioIOCoordinator:
    """
    Coordinates recording and playback for the orchestrator.

    Usage:
        audio = AudioIOCoordinator(mic, speaker, loop, lip_sync=LipSync(avatar.set_mouth_open))

        audio.start_recording(VADConfig(300, 2000), timeout_sec=10.0, on_result=handle_recording)
        ...
        audio.start_playback(wav_bytes, on_result=handle_playback)
        audio.interrupt_playback()   # takes effect before the next chunk
    """

    def __init__(
        self,
        mic,
        speaker,
        loop,
        lip_sync: Optional[LipSync] = None,
        config: Optional[AudioIOConfig] = None,
    ):
        self.config = config or AudioIOConfig()
        self._mic = mic
        self._speaker = speaker
        self._loop = loop
        self._lip_sync = lip_sync

        self._lock = threading.Lock()
        self._recording: Optional[_RecordingSession] = None
        self._playing = False
        self._playback_thread: Optional[threading.Thread] = None
        self._interrupt = threading.Event()

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._recording is not None

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._playing

    def _check_idle(self) -> None:
        """Raise AudioBusyError if anything is active (caller holds the lock)."""
        if self._recording is not None:
            raise AudioBusyError("Already recording")
        if self._playing:
            raise AudioBusyError("Already playing audio")

    # =========================================================================
    # Recording
    # =========================================================================

    def start_recording(
        self,
        vad_config: VADConfig,
        timeout_sec: float,
        on_result: Callable[[RecordingResult], None],
    ) -> None:
        """
        Start a VAD-gated recording.

        Args:
            vad_config: Thresholds for this session (initial or follow-up)
            timeout_sec: Hard limit; when reached without speech the
                result is NoMeaningfulAudio
            on_result: Called on the control loop with the RecordingResult

        Raises:
            AudioBusyError: if recording or playback is already active
        """
        session = _RecordingSession(vad_config, on_result)
        with self._lock:
            self._check_idle()
            self._recording = session

        try:
            self._mic.start()
        except Exception as e:
            logger.error("mic_start_failed %s", e)
            self._finish_recording(session, RecordingFailed(f"Failed to open microphone: {e}"))
            return

        session.timer = self._loop.call_later(timeout_sec, self._on_recording_timeout, session)
        session.thread = threading.Thread(
            target=self._record_worker,
            args=(session,),
            name="recording",
            daemon=True,
        )
        session.thread.start()
        logger.info(
            "recording_started threshold=%d silence_ms=%d timeout=%.1fs",
            vad_config.silence_threshold, vad_config.min_silence_duration_ms, timeout_sec,
        )

    def stop_recording(self) -> None:
        """Request the current recording to stop (same outcome rules as a timeout)."""
        with self._lock:
            session = self._recording
        if session is not None:
            session.stop_reason = "stop"
            session.stop_event.set()

    def _on_recording_timeout(self, session: _RecordingSession) -> None:
        """Timer callback on the control loop."""
        with self._lock:
            current = self._recording is session
        if current and not session.stop_event.is_set():
            logger.info("recording_timeout")
            session.stop_reason = "timeout"
            session.stop_event.set()

    def _record_worker(self, session: _RecordingSession) -> None:
        vad = EnergyVAD(session.vad_config)
        chunks = []
        samples = 0
        stopped_by = None
        error = None

        try:
            while not session.stop_event.is_set():
                frame = self._mic.get_frame(timeout=0.05)
                if frame is None:
                    if not self._mic.is_running:
                        stopped_by = "source"
                        break
                    continue

                chunks.append(float_to_int16(frame))
                samples += len(frame)
                if vad.is_speech_ended(frame):
                    stopped_by = "vad"
                    break
        except Exception as e:
            error = str(e)
        finally:
            self._mic.stop()

        # Natural stop wins: the pending timeout must not fire afterwards
        if session.timer is not None:
            session.timer.cancel()
        if stopped_by is None:
            stopped_by = session.stop_reason

        if error is not None:
            logger.error("recording_failed %s", error)
            self._finish_recording(session, RecordingFailed(f"Recording error: {error}"))
            return

        duration_ms = 1000.0 * samples / session.vad_config.sample_rate
        stats = vad.get_stats()
        logger.info(
            "recording_stopped by=%s duration_ms=%.0f speech_frames=%d avg_rms=%.1f",
            stopped_by, duration_ms, stats["speech_frames"], stats["average_rms"],
        )

        if not vad.has_detected_meaningful_audio():
            self._finish_recording(session, NoMeaningfulAudio(stopped_by))
            return

        pcm = np.concatenate(chunks).astype("<i2").tobytes()
        clip = encode_wav(pcm, session.vad_config.sample_rate)
        path = self._save_clip(clip)
        self._finish_recording(session, RecordingComplete(clip, duration_ms, stopped_by, path))

    def _save_clip(self, clip: bytes) -> Optional[str]:
        """Persist the clip when recordings_dir is configured."""
        if not self.config.recordings_dir:
            return None
        directory = Path(self.config.recordings_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"recording_{int(time.time() * 1000)}.wav"
        path.write_bytes(clip)
        return str(path)

    def _finish_recording(self, session: _RecordingSession, result: RecordingResult) -> None:
        with self._lock:
            if self._recording is session:
                self._recording = None
        self._loop.post(session.on_result, result)

    # =========================================================================
    # Playback
    # =========================================================================

    def start_playback(self, clip: bytes, on_result: Callable[[PlaybackResult], None]) -> None:
        """
        Play a WAV clip in chunks.

        Args:
            clip: WAV bytes from the speech synthesizer
            on_result: Called on the control loop with the PlaybackResult

        Raises:
            AudioBusyError: if recording or playback is already active
        """
        with self._lock:
            self._check_idle()
            self._playing = True
            self._interrupt.clear()

        self._playback_thread = threading.Thread(
            target=self._playback_worker,
            args=(clip, on_result),
            name="playback",
            daemon=True,
        )
        self._playback_thread.start()

    def interrupt_playback(self) -> bool:
        """
        Ask the playback worker to stop before its next chunk.

        Returns:
            True if playback was active
        """
        with self._lock:
            playing = self._playing
        if playing:
            self._interrupt.set()
        return playing

    def _playback_worker(self, clip: bytes, on_result: Callable[[PlaybackResult], None]) -> None:
        result: PlaybackResult = PlaybackCompleted()
        chunks_written = 0
        try:
            samples, sample_rate = decode_wav(clip)
            fade = int(self.config.fade_ms * sample_rate / 1000)
            samples = apply_fade(samples, fade, fade)

            self._speaker.open(sample_rate)
            for chunk in iter_chunks(samples, self.config.playback_chunk_frames):
                if self._interrupt.is_set():
                    result = PlaybackInterrupted()
                    break
                self._speaker.write(chunk)
                chunks_written += 1
                if self._lip_sync is not None:
                    self._lip_sync.process_chunk(chunk)
        except Exception as e:
            logger.error("playback_failed %s", e)
            result = PlaybackFailed(f"Playback error: {e}")
        finally:
            self._speaker.close()
            if self._lip_sync is not None:
                self._lip_sync.reset()

        logger.info("playback_finished result=%s chunks=%d", type(result).__name__, chunks_written)
        with self._lock:
            self._playing = False
        self._loop.post(on_result, result)

    # =========================================================================
    # Shutdown
    # =========================================================================

    def join(self, timeout: float = 2.0) -> None:
        """Wait for worker threads to finish."""
        with self._lock:
            session = self._recording
        if session is not None and session.thread is not None:
            session.thread.join(timeout=timeout)
        if self._playback_thread is not None:
            self._playback_thread.join(timeout=timeout)

    def stop(self) -> None:
        """Interrupt playback, stop recording and wait for the workers."""
        self.interrupt_playback()
        self.stop_recording()
        self.join()
