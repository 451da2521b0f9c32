"""
Avatar Voice Agent - Audio Utilities
====================================

Common audio processing functions used across modules.

Clip format used everywhere in the agent:
- RIFF/WAVE, 44-byte header
- mono, 16 kHz, 16-bit signed little-endian PCM
"""

import io
import wave
from typing import Tuple

import numpy as np
from scipy.io import wavfile

CLIP_SAMPLE_RATE = 16000
CLIP_CHANNELS = 1
CLIP_SAMPLE_WIDTH = 2  # bytes
WAV_HEADER_BYTES = 44


def compute_rms(audio: np.ndarray) -> float:
    """
    Compute RMS (Root Mean Square) energy of audio.

    Args:
        audio: Audio samples (any dtype)

    Returns:
        RMS value (float) in the units of the input samples
    """
    if audio.size == 0:
        return 0.0

    audio = audio.astype(np.float64)
    return float(np.sqrt(np.mean(audio ** 2)))


def float_to_int16(audio: np.ndarray) -> np.ndarray:
    """
    Convert float32 [-1, 1] audio to int16 [-32768, 32767].

    Args:
        audio: Float32 audio array

    Returns:
        Int16 audio array
    """
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767).astype(np.int16)


def int16_to_float(audio: np.ndarray) -> np.ndarray:
    """
    Convert int16 [-32768, 32767] audio to float32 [-1, 1].

    Args:
        audio: Int16 audio array

    Returns:
        Float32 audio array
    """
    return audio.astype(np.float32) / 32768.0


def float_to_pcm_bytes(audio: np.ndarray) -> bytes:
    """
    Convert float32 audio to PCM bytes (little-endian int16).

    Args:
        audio: Float32 audio array

    Returns:
        PCM bytes
    """
    int16_audio = float_to_int16(audio)
    return int16_audio.astype("<i2").tobytes()


def pcm_bytes_to_float(pcm: bytes) -> np.ndarray:
    """
    Convert PCM bytes to float32 audio.

    Args:
        pcm: PCM bytes (little-endian int16)

    Returns:
        Float32 audio array
    """
    int16_audio = np.frombuffer(pcm, dtype="<i2")
    return int16_to_float(int16_audio)


def encode_wav(pcm: bytes, sample_rate: int = CLIP_SAMPLE_RATE) -> bytes:
    """
    Wrap raw 16-bit mono PCM in a standard 44-byte WAV header.

    Args:
        pcm: Little-endian int16 PCM bytes
        sample_rate: Sample rate in Hz

    Returns:
        Complete WAV file contents
    """
    buf = io.BytesIO()
    with wave.open(buf, "wb") as f:
        f.setnchannels(CLIP_CHANNELS)
        f.setsampwidth(CLIP_SAMPLE_WIDTH)
        f.setframerate(sample_rate)
        f.writeframes(pcm)
    return buf.getvalue()


def decode_wav(data: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode WAV bytes to mono int16 samples.

    Float and 32-bit files (some TTS servers return these) are converted
    to int16; multi-channel audio is downmixed.

    Args:
        data: WAV file contents

    Returns:
        Tuple of (int16 samples, sample_rate)
    """
    sample_rate, audio = wavfile.read(io.BytesIO(data))

    if audio.ndim > 1:
        # Downmix without leaving the source sample format
        audio = audio.mean(axis=1).astype(audio.dtype)

    if audio.dtype == np.int16:
        pass
    elif np.issubdtype(audio.dtype, np.floating):
        audio = float_to_int16(audio.astype(np.float32))
    elif audio.dtype == np.int32:
        audio = (audio >> 16).astype(np.int16)
    elif audio.dtype == np.uint8:
        audio = ((audio.astype(np.int16) - 128) << 8).astype(np.int16)
    else:
        audio = np.clip(audio, -32768, 32767).astype(np.int16)

    return audio, int(sample_rate)


def apply_fade(
    audio: np.ndarray,
    fade_in_samples: int = 0,
    fade_out_samples: int = 0
) -> np.ndarray:
    """
    Apply fade-in and/or fade-out to audio.

    Args:
        audio: Audio array
        fade_in_samples: Number of samples for fade-in
        fade_out_samples: Number of samples for fade-out

    Returns:
        Audio with fades applied (same dtype as input)
    """
    if len(audio) < fade_in_samples + fade_out_samples:
        return audio  # Too short to fade

    faded = audio.astype(np.float32)

    if fade_in_samples > 0:
        faded[:fade_in_samples] *= np.linspace(0, 1, fade_in_samples, dtype=np.float32)

    if fade_out_samples > 0:
        faded[-fade_out_samples:] *= np.linspace(1, 0, fade_out_samples, dtype=np.float32)

    return faded.astype(audio.dtype)


def split_frames(
    audio: np.ndarray,
    frame_size: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split audio into fixed-size frames.

    Args:
        audio: Audio array
        frame_size: Samples per frame

    Returns:
        Tuple of (frames, remainder)
        frames: 2D array of shape (num_frames, frame_size)
        remainder: 1D array of leftover samples
    """
    num_frames = len(audio) // frame_size
    if num_frames == 0:
        return np.zeros((0, frame_size), dtype=audio.dtype), audio

    complete = audio[:num_frames * frame_size]
    frames = complete.reshape(num_frames, frame_size)
    remainder = audio[num_frames * frame_size:]

    return frames, remainder


def iter_chunks(audio: np.ndarray, chunk_size: int):
    """
    Yield consecutive chunks of at most chunk_size samples.

    Unlike split_frames, the final partial chunk is yielded too.
    """
    frames, remainder = split_frames(audio, chunk_size)
    for frame in frames:
        yield frame
    if len(remainder):
        yield remainder
