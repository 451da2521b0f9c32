"""
Tests: Configuration loading (config/settings.py, pipeline/config.py)
"""

import os

import pytest

from config.settings import load_config
from pipeline.config import AgentConfig, get_wake_phrase

PREFIXES = ("AUDIO_", "VAD_", "LISTEN_", "FOLLOWUP_", "LLM_", "STT_", "TTS_", "MEMORY_",
            "WAKE_WORD_", "TOOLS_", "HOME_ASSISTANT_", "SEARXNG_", "SPEECH_", "MIC_",
            "PLAYBACK_", "RECORDINGS_", "MAX_TOOL_", "PERSONALITY", "DEBUG")


@pytest.fixture
def environ(monkeypatch):
    """A private copy of the environment without any agent settings."""
    env = {k: v for k, v in os.environ.items() if not k.startswith(PREFIXES)}
    monkeypatch.setattr(os, "environ", env)
    return env


def test_defaults_without_env_file(environ, tmp_path):
    config = load_config(str(tmp_path / "missing.env"))
    assert config == AgentConfig()


def test_env_file(environ, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "\n"
        "LLM_BACKEND=OpenAI\n"
        "LLM_MODEL='gpt-4o-mini'\n"
        'TTS_VOICE="nova"\n'
        "MAX_TOOL_CALLS=5\n"
        "MEMORY_ENABLED=yes\n"
        "AUDIO_INPUT_DEVICE=2\n"
        "WAKE_WORD_THRESHOLD=0.7\n"
        "not a setting\n",
        encoding="utf-8",
    )
    config = load_config(str(env_file))

    assert config.llm_backend == "openai"
    assert config.llm_model == "gpt-4o-mini"
    assert config.tts_voice == "nova"
    assert config.max_tool_calls == 5
    assert config.memory_enabled is True
    assert config.input_device == 2
    assert config.output_device is None
    assert config.wake_word_threshold == pytest.approx(0.7)


def test_environment_wins_over_file(environ, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("LLM_MODEL=from-file\n", encoding="utf-8")
    environ["LLM_MODEL"] = "from-env"
    assert load_config(str(env_file)).llm_model == "from-env"


def test_malformed_values_fall_back(environ, tmp_path):
    environ.update({
        "MAX_TOOL_CALLS": "three",
        "TTS_SPEED": "fast",
        "AUDIO_OUTPUT_DEVICE": "speakers",
        "TOOLS_ENABLED": "nope",
    })
    config = load_config(str(tmp_path / "missing.env"))
    assert config.max_tool_calls == 3
    assert config.tts_speed == 1.0
    assert config.output_device is None
    assert config.enable_tools is False


def test_vad_profiles():
    config = AgentConfig(vad_silence_threshold=400, vad_followup_threshold=250,
                         vad_followup_duration_ms=1500)
    assert config.initial_vad.silence_threshold == 400
    assert config.initial_vad.min_silence_duration_ms == 2000
    assert config.followup_vad.silence_threshold == 250
    assert config.followup_vad.min_silence_duration_ms == 1500
    assert config.followup_cooldown_sec == pytest.approx(1.5)
    assert config.frame_samples == 320


@pytest.mark.parametrize("name,phrase", [
    ("hey_jarvis", "Hey Jarvis"),
    ("alexa", "Alexa"),
    ("ok_computer", "Ok Computer"),
])
def test_wake_phrase(name, phrase):
    assert get_wake_phrase(name) == phrase
