"""
Avatar Voice Agent - Speech-to-Text Module
==========================================

Transcribes recorded clips with an OpenAI-compatible transcription service
(faster-whisper-server, whisper.cpp server, OpenAI, ...).

Features:
- Multipart upload of the WAV clip to /v1/audio/transcriptions
- JSON {"text": ...} or plain-text responses
- Failures returned as TranscriptionError, never raised
- Latency statistics

Dependencies:
- requests
"""

from dataclasses import dataclass
from typing import Dict, Optional, Union
import logging
import time

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transcript:
    text: str


@dataclass(frozen=True)
class TranscriptionError:
    message: str


TranscriptionResult = Union[Transcript, TranscriptionError]


@dataclass
class STTConfig:
    """Configuration for Speech-to-Text."""
    base_url: str = "http://localhost:8000"
    model: str = "whisper-1"
    language: str = ""              # Empty = let the service detect
    api_key: str = ""
    timeout_sec: float = 30.0


class SpeechToText:
    """
    Speech-to-Text over HTTP.

    Usage:
        stt = SpeechToText(STTConfig(base_url="http://localhost:8000"))
        result = stt.transcribe(wav_bytes)
        if isinstance(result, Transcript):
            print(result.text)
    """

    def __init__(self, config: Optional[STTConfig] = None):
        self.config = config or STTConfig()

        # Statistics
        self._stats = {
            "transcriptions": 0,
            "errors": 0,
            "total_processing_seconds": 0.0,
        }

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1/audio/transcriptions"

    def transcribe(self, clip: bytes) -> TranscriptionResult:
        """
        Transcribe a WAV clip.

        Args:
            clip: WAV bytes (mono, 16 kHz, 16-bit)

        Returns:
            Transcript (possibly blank) or TranscriptionError
        """
        if not clip:
            return TranscriptionError("Empty audio clip")

        files = {"file": ("speech.wav", clip, "audio/wav")}
        data = {"model": self.config.model, "response_format": "json"}
        if self.config.language:
            data["language"] = self.config.language
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        start_time = time.time()
        try:
            response = requests.post(
                self.url,
                files=files,
                data=data,
                headers=headers,
                timeout=self.config.timeout_sec,
            )
        except requests.RequestException as e:
            self._stats["errors"] += 1
            logger.warning("stt_network_error %s", e)
            return TranscriptionError(f"Network error: {e}")

        process_time = time.time() - start_time
        self._stats["total_processing_seconds"] += process_time

        if not 200 <= response.status_code < 300:
            self._stats["errors"] += 1
            logger.warning("stt_api_error status=%d", response.status_code)
            return TranscriptionError(f"API error: {response.status_code} {(response.text or '')[:200]}".strip())

        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                text = response.json().get("text", "")
            except (ValueError, AttributeError) as e:
                self._stats["errors"] += 1
                return TranscriptionError(f"Invalid response: {e}")
        else:
            text = response.text

        text = (text or "").strip()
        self._stats["transcriptions"] += 1
        logger.info("stt_transcribed chars=%d latency_ms=%.0f", len(text), process_time * 1000)
        return Transcript(text)

    def get_stats(self) -> Dict:
        """
        Get transcription statistics.

        Returns:
            Dict with request counts and average latency
        """
        count = self._stats["transcriptions"]
        return {
            **self._stats,
            "average_latency_ms": (self._stats["total_processing_seconds"] / count * 1000) if count else 0.0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._stats = {
            "transcriptions": 0,
            "errors": 0,
            "total_processing_seconds": 0.0,
        }
