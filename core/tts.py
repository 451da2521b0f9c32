"""
Avatar Voice Agent - Text-to-Speech Module
==========================================

Synthesizes replies with an OpenAI-compatible speech service
(Kokoro-FastAPI, openedai-speech, OpenAI, ...).

Features:
- POST /v1/audio/speech with response_format "wav"
- Text normalization before synthesis (abbreviations, symbols, numbers)
- Character expressions rewritten so they are pronounceable
  (hmph -> humf, tch -> chuh, ...)
- Failures returned as SynthesisError, never raised

Dependencies:
- requests
"""

from dataclasses import dataclass
from typing import Optional, Union
import logging
import re
import time

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeechClip:
    audio: bytes        # WAV bytes
    text: str = ""      # Text actually sent to the service


@dataclass(frozen=True)
class SynthesisError:
    message: str


SynthesisResult = Union[SpeechClip, SynthesisError]


@dataclass
class TTSConfig:
    """Configuration for TTS synthesis."""
    base_url: str = "http://localhost:8880"
    model: str = "tts-1"
    voice: str = "alloy"
    speed: float = 1.0              # <1 slower, >1 faster
    api_key: str = ""
    timeout_sec: float = 30.0


class TextNormalizer:
    """
    Normalize text for better TTS output.

    Handles abbreviations, numbers, symbols and non-phonetic expressions.
    """

    # Common abbreviations
    ABBREVIATIONS = {
        "Dr.": "Doctor",
        "Mr.": "Mister",
        "Mrs.": "Missus",
        "Ms.": "Miss",
        "Prof.": "Professor",
        "vs.": "versus",
        "etc.": "et cetera",
        "e.g.": "for example",
        "i.e.": "that is",
        "approx.": "approximately",
    }

    SYMBOLS = {
        "&": " and ",
        "%": " percent",
        "@": " at ",
        "€": " euros ",
        "£": " pounds ",
        "+": " plus ",
        "=": " equals ",
        "°C": " degrees Celsius",
        "°F": " degrees Fahrenheit",
        "°": " degrees",
    }

    # Expressions a voice would otherwise spell out letter by letter
    EXPRESSIONS = {
        "tch": "chuh",
        "Tch": "Chuh",
        "TCH": "CHUH",
        "pfft": "pift",
        "Pfft": "Pift",
        "PFFT": "PIFT",
        "tsundere": "tsoon-deh-reh",
        "Tsundere": "Tsoon-deh-reh",
        "TSUNDERE": "TSOON-DEH-REH",
    }

    HMPH_PATTERN = re.compile(r"\b[Hh]m+ph?\b", re.IGNORECASE)

    # Markdown that some models emit despite instructions
    MARKDOWN_PATTERN = re.compile(r"[*_`#]+")

    # Number words
    ONES = ["", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine"]
    TEENS = ["ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen",
             "sixteen", "seventeen", "eighteen", "nineteen"]
    TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]

    @classmethod
    def normalize(cls, text: str) -> str:
        """
        Normalize text for TTS.

        Args:
            text: Raw reply text

        Returns:
            Text suitable for the speech service
        """
        if not text or not text.strip():
            return ""

        text = cls.MARKDOWN_PATTERN.sub("", text)
        text = cls.convert_expressions(text)

        for abbr, full in cls.ABBREVIATIONS.items():
            text = text.replace(abbr, full)

        for symbol, spoken in cls.SYMBOLS.items():
            text = text.replace(symbol, spoken)

        # Dollar amounts read as "<n> dollars"
        text = re.sub(r"\$(\d+)", r"\1 dollars", text)

        # Convert simple numbers (up to 999)
        text = re.sub(r"\b(\d{1,3})\b", lambda m: cls._number_to_words(int(m.group(1))), text)

        # Clean up multiple spaces
        text = re.sub(r"\s+", " ", text)

        text = text.replace('"', "")
        text = text.replace("’", "'")  # Normalize apostrophes

        return text.strip()

    @classmethod
    def convert_expressions(cls, text: str) -> str:
        """Rewrite hmph variants and other expressions phonetically."""
        text = cls.HMPH_PATTERN.sub(lambda m: cls._hmph_replacement(m.group()), text)
        for written, spoken in cls.EXPRESSIONS.items():
            text = re.sub(rf"\b{written}\b", spoken, text)
        return text

    @staticmethod
    def _hmph_replacement(word: str) -> str:
        """humf / hmmf / hmmmf by the number of m's, keeping the capitalization."""
        m_count = word.lower().count("m")
        if m_count <= 1:
            replacement = "humf"
        elif m_count == 2:
            replacement = "hmmf"
        else:
            replacement = "hmmmf"

        if word.isupper():
            return replacement.upper()
        if word[0].isupper():
            return replacement.capitalize()
        return replacement

    @classmethod
    def _number_to_words(cls, n: int) -> str:
        """Convert number (0-999) to words."""
        if n == 0:
            return "zero"
        if n < 10:
            return cls.ONES[n]
        if n < 20:
            return cls.TEENS[n - 10]
        if n < 100:
            tens, ones = divmod(n, 10)
            return cls.TENS[tens] + (" " + cls.ONES[ones] if ones else "")
        if n < 1000:
            hundreds, remainder = divmod(n, 100)
            result = cls.ONES[hundreds] + " hundred"
            if remainder:
                result += " " + cls._number_to_words(remainder)
            return result
        return str(n)


class TextToSpeech:
    """
    Text-to-Speech over HTTP.

    Usage:
        tts = TextToSpeech(TTSConfig(voice="nova"))
        result = tts.synthesize("Hello! How are you?")
        if isinstance(result, SpeechClip):
            audio.start_playback(result.audio, on_result=...)
    """

    def __init__(self, config: Optional[TTSConfig] = None):
        self.config = config or TTSConfig()
        self._normalizer = TextNormalizer()

        # Statistics
        self._stats = {
            "syntheses": 0,
            "errors": 0,
            "total_chars": 0,
            "total_time": 0.0,
        }

    @property
    def url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1/audio/speech"

    def synthesize(self, text: str, normalize: bool = True) -> SynthesisResult:
        """
        Convert text to a WAV clip.

        Args:
            text: Text to speak
            normalize: Whether to normalize text first (default: True)

        Returns:
            SpeechClip or SynthesisError
        """
        if normalize:
            text = self._normalizer.normalize(text)
        if not text.strip():
            return SynthesisError("Nothing to synthesize")

        payload = {
            "model": self.config.model,
            "input": text,
            "voice": self.config.voice,
            "response_format": "wav",
            "speed": self.config.speed,
        }
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        start_time = time.time()
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.config.timeout_sec)
        except requests.RequestException as e:
            self._stats["errors"] += 1
            logger.warning("tts_network_error %s", e)
            return SynthesisError(f"Network error: {e}")

        if not 200 <= response.status_code < 300:
            self._stats["errors"] += 1
            logger.warning("tts_api_error status=%d", response.status_code)
            return SynthesisError(f"API error: {response.status_code}")

        audio = response.content
        if not audio:
            self._stats["errors"] += 1
            return SynthesisError("Empty audio from speech service")

        self._stats["syntheses"] += 1
        self._stats["total_chars"] += len(text)
        self._stats["total_time"] += time.time() - start_time
        logger.info("tts_synthesized chars=%d bytes=%d", len(text), len(audio))
        return SpeechClip(audio, text)

    def get_stats(self) -> dict:
        """Get synthesis statistics."""
        total_time = self._stats["total_time"]
        total_chars = self._stats["total_chars"]

        return {
            **self._stats,
            "chars_per_second": total_chars / total_time if total_time > 0 else 0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._stats = {
            "syntheses": 0,
            "errors": 0,
            "total_chars": 0,
            "total_time": 0.0,
        }
