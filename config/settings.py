"""
Avatar Voice Agent - Configuration Module

Configuration loading from a .env file and environment variables.
Unset or malformed values fall back to the AgentConfig defaults.
"""

import os
from dataclasses import fields
from pathlib import Path
from typing import Optional

from pipeline.config import AgentConfig

_DEFAULTS = {f.name: f.default for f in fields(AgentConfig)}


def _load_env(path: str = ".env") -> None:
    """Simple .env file loader. Variables already set in the environment win."""
    env_path = Path(path)
    if not env_path.exists():
        return

    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


def _env_str(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key, str(default)).lower().strip()
    return value in ("true", "1", "yes", "on")


def _env_device(key: str) -> Optional[int]:
    value = _env_str(key, "").strip()
    return int(value) if value.isdigit() else None


def load_config(env_path: str = ".env") -> AgentConfig:
    """Load the agent configuration from environment variables."""
    _load_env(env_path)
    d = _DEFAULTS

    return AgentConfig(
        # Audio
        sample_rate=_env_int("AUDIO_SAMPLE_RATE", d["sample_rate"]),
        frame_ms=_env_int("AUDIO_FRAME_MS", d["frame_ms"]),
        input_device=_env_device("AUDIO_INPUT_DEVICE"),
        output_device=_env_device("AUDIO_OUTPUT_DEVICE"),
        mic_gain=_env_float("MIC_GAIN", d["mic_gain"]),
        playback_chunk_frames=_env_int("PLAYBACK_CHUNK_FRAMES", d["playback_chunk_frames"]),
        volume=_env_float("AUDIO_VOLUME", d["volume"]),
        recordings_dir=_env_str("RECORDINGS_DIR", d["recordings_dir"]),

        # Listening
        vad_silence_threshold=_env_int("VAD_SILENCE_THRESHOLD", d["vad_silence_threshold"]),
        vad_min_silence_ms=_env_int("VAD_MIN_SILENCE_MS", d["vad_min_silence_ms"]),
        vad_followup_threshold=_env_int("VAD_FOLLOWUP_THRESHOLD", d["vad_followup_threshold"]),
        vad_followup_duration_ms=_env_int("VAD_FOLLOWUP_DURATION_MS", d["vad_followup_duration_ms"]),
        initial_listen_timeout_sec=_env_float("LISTEN_TIMEOUT_SEC", d["initial_listen_timeout_sec"]),
        followup_listen_timeout_sec=_env_float("FOLLOWUP_TIMEOUT_SEC", d["followup_listen_timeout_sec"]),

        # Dialogue
        llm_backend=_env_str("LLM_BACKEND", d["llm_backend"]).lower(),
        llm_base_url=_env_str("LLM_BASE_URL", d["llm_base_url"]),
        llm_model=_env_str("LLM_MODEL", d["llm_model"]),
        llm_api_key=_env_str("LLM_API_KEY", d["llm_api_key"]),
        llm_timeout_sec=_env_float("LLM_TIMEOUT_SEC", d["llm_timeout_sec"]),
        personality=_env_str("PERSONALITY", d["personality"]),

        # Tools
        enable_tools=_env_bool("TOOLS_ENABLED", d["enable_tools"]),
        max_tool_calls=_env_int("MAX_TOOL_CALLS", d["max_tool_calls"]),
        home_assistant_url=_env_str("HOME_ASSISTANT_URL", d["home_assistant_url"]),
        home_assistant_token=_env_str("HOME_ASSISTANT_TOKEN", d["home_assistant_token"]),
        searxng_url=_env_str("SEARXNG_URL", d["searxng_url"]),

        # Speech services
        stt_base_url=_env_str("STT_BASE_URL", d["stt_base_url"]),
        stt_model=_env_str("STT_MODEL", d["stt_model"]),
        stt_language=_env_str("STT_LANGUAGE", d["stt_language"]),
        stt_api_key=_env_str("STT_API_KEY", d["stt_api_key"]),
        tts_base_url=_env_str("TTS_BASE_URL", d["tts_base_url"]),
        tts_model=_env_str("TTS_MODEL", d["tts_model"]),
        tts_voice=_env_str("TTS_VOICE", d["tts_voice"]),
        tts_speed=_env_float("TTS_SPEED", d["tts_speed"]),
        tts_api_key=_env_str("TTS_API_KEY", d["tts_api_key"]),
        speech_timeout_sec=_env_float("SPEECH_TIMEOUT_SEC", d["speech_timeout_sec"]),

        # Memory
        memory_enabled=_env_bool("MEMORY_ENABLED", d["memory_enabled"]),
        memory_base_url=_env_str("MEMORY_BASE_URL", d["memory_base_url"]),
        memory_embedding_model=_env_str("MEMORY_EMBEDDING_MODEL", d["memory_embedding_model"]),
        memory_top_k=_env_int("MEMORY_TOP_K", d["memory_top_k"]),
        memory_max_tokens=_env_int("MEMORY_MAX_TOKENS", d["memory_max_tokens"]),
        memory_init_timeout_sec=_env_float("MEMORY_INIT_TIMEOUT_SEC", d["memory_init_timeout_sec"]),

        # Wake word
        enable_wake_word=_env_bool("WAKE_WORD_ENABLED", d["enable_wake_word"]),
        wake_word_model=_env_str("WAKE_WORD_MODEL", d["wake_word_model"]),
        wake_word_threshold=_env_float("WAKE_WORD_THRESHOLD", d["wake_word_threshold"]),
        wake_word_cooldown_sec=_env_float("WAKE_WORD_COOLDOWN_SEC", d["wake_word_cooldown_sec"]),

        debug=_env_bool("DEBUG", d["debug"]),
    )


# Example usage:
if __name__ == "__main__":
    config = load_config()
    print("Configuration loaded:")
    print(f"  Audio: {config.sample_rate}Hz, {config.frame_ms}ms frames")
    print(f"  Dialogue: {config.llm_backend} {config.llm_model} @ {config.llm_base_url}")
    print(f"  Memory: {config.memory_enabled}")
    print(f"  Wake word: {config.wake_word_model if config.enable_wake_word else 'disabled'}")
