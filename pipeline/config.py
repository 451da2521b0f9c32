"""
Avatar Voice Agent Configuration
================================

Centralized configuration for all conversation components.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from core.vad import VADConfig


class ConversationState(Enum):
    """Conversation states. Only the orchestrator changes the current one."""
    IDLE = auto()
    LISTENING = auto()
    PROCESSING = auto()
    SPEAKING = auto()


# State display strings
STATE_DISPLAY = {
    ConversationState.IDLE: "🔇 Idle (waiting for wake word)",
    ConversationState.LISTENING: "🎤 Listening",
    ConversationState.PROCESSING: "🧠 Processing",
    ConversationState.SPEAKING: "🔊 Speaking",
}


@dataclass
class AgentConfig:
    """Configuration for the avatar voice agent."""

    # =========================================================================
    # Audio Settings
    # =========================================================================
    sample_rate: int = 16000
    frame_ms: int = 20
    input_device: Optional[int] = None   # None = system default
    output_device: Optional[int] = None
    mic_gain: float = 1.0
    playback_chunk_frames: int = 1024    # Frames written per playback chunk
    volume: float = 1.0
    recordings_dir: str = ""             # Persist captured clips here when set

    # =========================================================================
    # Listening (VAD) Settings
    # =========================================================================
    vad_silence_threshold: int = 300           # int16 RMS below this = silence
    vad_min_silence_ms: int = 2000             # Silence after speech that ends a turn
    vad_followup_threshold: int = 300
    vad_followup_duration_ms: int = 2000       # Also the wake-resume cooldown after follow-up
    initial_listen_timeout_sec: float = 10.0
    followup_listen_timeout_sec: float = 2.0

    # =========================================================================
    # Dialogue Settings
    # =========================================================================
    llm_backend: str = "ollama"                # "ollama" or "openai"
    llm_base_url: str = "http://localhost:11434"
    llm_model: str = "llama3.1"
    llm_api_key: str = ""
    llm_timeout_sec: float = 60.0
    personality: str = (
        "You are a cheerful, curious companion who lives on the user's screen. "
        "Keep replies short and conversational (1-3 sentences)."
    )

    # =========================================================================
    # Tool Settings
    # =========================================================================
    enable_tools: bool = True
    max_tool_calls: int = 3
    home_assistant_url: str = ""
    home_assistant_token: str = ""
    searxng_url: str = ""

    # =========================================================================
    # Speech Services
    # =========================================================================
    stt_base_url: str = "http://localhost:8000"
    stt_model: str = "whisper-1"
    stt_language: str = ""
    stt_api_key: str = ""
    tts_base_url: str = "http://localhost:8880"
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    tts_speed: float = 1.0
    tts_api_key: str = ""
    speech_timeout_sec: float = 30.0

    # =========================================================================
    # Memory Settings
    # =========================================================================
    memory_enabled: bool = False
    memory_base_url: str = "http://localhost:11434"
    memory_embedding_model: str = "nomic-embed-text"
    memory_top_k: int = 5
    memory_max_tokens: int = 800
    memory_init_timeout_sec: float = 5.0

    # =========================================================================
    # Wake Word Settings
    # =========================================================================
    enable_wake_word: bool = True
    wake_word_model: str = "hey_jarvis"    # Built-in name or path to .onnx
    wake_word_threshold: float = 0.5
    wake_word_cooldown_sec: float = 2.0

    # =========================================================================
    # Debug Settings
    # =========================================================================
    debug: bool = False

    # =========================================================================
    # Computed Properties
    # =========================================================================
    @property
    def initial_vad(self) -> VADConfig:
        """VAD thresholds for listening right after the wake word."""
        return VADConfig(
            silence_threshold=self.vad_silence_threshold,
            min_silence_duration_ms=self.vad_min_silence_ms,
            sample_rate=self.sample_rate,
        )

    @property
    def followup_vad(self) -> VADConfig:
        """VAD thresholds for the follow-up window after a reply."""
        return VADConfig(
            silence_threshold=self.vad_followup_threshold,
            min_silence_duration_ms=self.vad_followup_duration_ms,
            sample_rate=self.sample_rate,
        )

    @property
    def followup_cooldown_sec(self) -> float:
        """Delay before the wake word resumes after an empty follow-up."""
        return self.vad_followup_duration_ms / 1000.0

    @property
    def frame_samples(self) -> int:
        """Samples per capture frame."""
        return int(self.sample_rate * self.frame_ms / 1000)


# Wake word display names
WAKE_PHRASE_MAP = {
    "hey_jarvis": "Hey Jarvis",
    "hey_mycroft": "Hey Mycroft",
    "alexa": "Alexa",
}


def get_wake_phrase(model_name: str) -> str:
    """Get display phrase for wake word model."""
    return WAKE_PHRASE_MAP.get(model_name, model_name.replace('_', ' ').title())
