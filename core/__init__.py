# Avatar Voice Agent - Core Package
from .audio_input import AudioInput
from .audio_output import AudioOutput
from .audio_io import AudioIOCoordinator, AudioBusyError
from .avatar import AvatarController
from .dialogue import DialogueClient, ConversationHistory, Turn, ToolCall
from .emotion import Emotion, EmotionDetector
from .lip_sync import LipSync
from .memory import MemoryStore, MemoryContextFormatter, VectorMemoryStore
from .stt import SpeechToText
from .tools import ToolExecutor, ToolRegistry
from .tts import TextToSpeech, TextNormalizer
from .vad import EnergyVAD, VADConfig

__all__ = [
    "AudioInput",
    "AudioOutput",
    "AudioIOCoordinator",
    "AudioBusyError",
    "AvatarController",
    "DialogueClient",
    "ConversationHistory",
    "Turn",
    "ToolCall",
    "Emotion",
    "EmotionDetector",
    "LipSync",
    "MemoryStore",
    "MemoryContextFormatter",
    "VectorMemoryStore",
    "SpeechToText",
    "ToolExecutor",
    "ToolRegistry",
    "TextToSpeech",
    "TextNormalizer",
    "EnergyVAD",
    "VADConfig",
]
