"""
Wake Word Handler
=================

Listens for the wake word on its own microphone stream and reports
detections through a callback.

Features:
- openWakeWord model, built-in name or custom .onnx/.tflite path
- 80ms (1280 sample) prediction chunks
- Model reset + cooldown after every detection
- pause() releases the microphone so the recorder can own it
- swap_model() loads another model (handler stays paused)
"""

from pathlib import Path
from typing import Callable, Optional, Tuple
import logging
import threading
import time
import warnings

import numpy as np

from utils.audio_utils import float_to_int16

logger = logging.getLogger(__name__)

CHUNK_SAMPLES = 1280    # 80ms at 16kHz, what openWakeWord expects
CUSTOM_MODEL_SUFFIXES = (".onnx", ".tflite")


def resolve_wake_word_key(model, requested: str) -> str:
    """Resolve actual model key from loaded models (e.g. 'alexa' -> 'alexa_v0.1.0')."""
    keys = list(model.models.keys())
    if not keys:
        return requested
    if requested in keys:
        return requested
    # Match by prefix (e.g. alexa -> alexa_v0.1.0)
    for k in keys:
        if k.startswith(requested + "_") or k.startswith(requested + "."):
            return k
    return keys[0]


def load_openwakeword_model(name_or_path: str, noise_suppression: bool = True) -> Tuple[object, str]:
    """
    Load an openWakeWord model.

    Args:
        name_or_path: Built-in model name ("hey_jarvis") or path to a custom model

    Returns:
        (model, score key)

    Raises:
        FileNotFoundError: if a custom model path does not exist
    """
    from openwakeword.model import Model as WakeWordModel

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")

        if name_or_path.endswith(CUSTOM_MODEL_SUFFIXES):
            path = Path(name_or_path)
            if not path.is_absolute():
                path = Path(__file__).parent.parent / path
            if not path.exists():
                raise FileNotFoundError(f"Wake word model not found: {path}")
            model = WakeWordModel(
                wakeword_models=[str(path)],
                inference_framework="tflite" if path.suffix == ".tflite" else "onnx",
                enable_speex_noise_suppression=noise_suppression,
            )
            return model, resolve_wake_word_key(model, path.stem)

        model = WakeWordModel(
            wakeword_models=[name_or_path],
            enable_speex_noise_suppression=noise_suppression,
        )
        return model, resolve_wake_word_key(model, name_or_path)


class WakeWordHandler:
    """
    Threaded wake word listener.

    Usage:
        handler = WakeWordHandler(AudioInput(AudioInputConfig(frame_ms=80)), "hey_jarvis")
        handler.start(on_wake=orchestrator.on_wake_detected)
        handler.pause()     # recorder takes the mic
        handler.resume()
        handler.stop()
    """

    def __init__(
        self,
        mic,
        model_name: str = "hey_jarvis",
        threshold: float = 0.5,
        cooldown_sec: float = 2.0,
        noise_suppression: bool = True,
        model_loader: Callable[[str, bool], Tuple[object, str]] = load_openwakeword_model,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0.0 < threshold < 1.0:
            raise ValueError("threshold must be between 0 and 1")
        self._mic = mic
        self.model_name = model_name
        self.threshold = threshold
        self.cooldown_sec = cooldown_sec
        self.noise_suppression = noise_suppression
        self._load = model_loader
        self._clock = clock

        self._model = None
        self._key = ""
        self._model_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._on_wake: Optional[Callable[[], None]] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._paused = True
        self._cooldown_until = 0.0
        self._buffer = np.zeros(0, dtype=np.int16)
        self.detections = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self) -> None:
        """Load the configured model (done by start() if needed)."""
        model, key = self._load(self.model_name, self.noise_suppression)
        with self._model_lock:
            self._model, self._key = model, key
        logger.info("wake_word_loaded model=%s key=%s threshold=%.2f", self.model_name, key, self.threshold)

    def start(self, on_wake: Callable[[], None]) -> None:
        """Start the listener thread (paused until resume())."""
        if self._thread is not None:
            return
        if self._model is None:
            self.load()
        self._on_wake = on_wake
        self._stop.clear()
        self._thread = threading.Thread(target=self._listen, name="wake-word", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop listening and release the microphone."""
        self._stop.set()
        self.pause()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    @property
    def is_paused(self) -> bool:
        with self._state_lock:
            return self._paused

    @property
    def wake_word_key(self) -> str:
        return self._key

    def pause(self) -> None:
        """Stop reacting to audio and close the mic (idempotent)."""
        with self._state_lock:
            if self._paused:
                return
            self._paused = True
        self._mic.stop()
        logger.debug("wake_word_paused")

    def resume(self) -> None:
        """Reopen the mic with a fresh model state (idempotent)."""
        with self._state_lock:
            if not self._paused or self._stop.is_set():
                return
            self._paused = False
        with self._model_lock:
            self._buffer = np.zeros(0, dtype=np.int16)
            if self._model is not None:
                self._model.reset()
        try:
            self._mic.start()
        except Exception as e:
            with self._state_lock:
                self._paused = True
            logger.error("wake_word_mic_failed %s", e)
            raise
        logger.debug("wake_word_resumed")

    def swap_model(self, name_or_path: str) -> None:
        """
        Load another wake word model. The handler is left paused.

        Raises:
            FileNotFoundError: if a custom model path does not exist
        """
        self.pause()
        model, key = self._load(name_or_path, self.noise_suppression)
        with self._model_lock:
            self._model, self._key = model, key
            self._buffer = np.zeros(0, dtype=np.int16)
        self.model_name = name_or_path
        logger.info("wake_word_swapped model=%s key=%s", name_or_path, key)

    # =========================================================================
    # Detection
    # =========================================================================

    def process_frame(self, frame: np.ndarray) -> Optional[float]:
        """
        Feed one frame; returns the score when the wake word fired.

        Frames are buffered into 80ms chunks for the model.
        """
        samples = float_to_int16(frame) if frame.dtype != np.int16 else frame
        fired = None

        with self._model_lock:
            if self._model is None:
                return None
            self._buffer = np.concatenate([self._buffer, samples])
            while len(self._buffer) >= CHUNK_SAMPLES:
                chunk, self._buffer = self._buffer[:CHUNK_SAMPLES], self._buffer[CHUNK_SAMPLES:]
                scores = self._model.predict(chunk)
                score = float(scores.get(self._key, 0.0))

                if score > self.threshold and self._clock() >= self._cooldown_until:
                    self._model.reset()
                    self._buffer = np.zeros(0, dtype=np.int16)
                    self._cooldown_until = self._clock() + self.cooldown_sec
                    fired = score
                    break

        if fired is not None:
            self.detections += 1
            logger.info("wake_word_detected key=%s score=%.2f", self._key, fired)
        return fired

    def _listen(self) -> None:
        while not self._stop.is_set():
            if self.is_paused:
                self._stop.wait(0.05)
                continue

            frame = self._mic.get_frame(timeout=0.1)
            if frame is None or self.is_paused:
                continue

            if self.process_frame(frame) is not None and self._on_wake is not None:
                try:
                    self._on_wake()
                except Exception:
                    logger.exception("wake_word_callback_failed")
