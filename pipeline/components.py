"""
Component Manager
=================

Builds every avatar voice agent component from one AgentConfig and wires
them into a ConversationOrchestrator.
Separates component setup from the conversation logic.
"""

from typing import Optional
import logging

from pipeline.config import AgentConfig, get_wake_phrase

logger = logging.getLogger(__name__)

WAKE_WORD_FRAME_MS = 80     # openWakeWord prediction chunk


class ComponentManager:
    """
    Manages all agent components.

    Components:
    - loop: control loop (single thread for all decisions) + worker pool
    - recorder_input / audio_output / lip_sync / audio: recording and playback
    - stt / tts / dialogue: remote speech and chat services
    - registry / prompts / tool_loop: bounded tool calling
    - memory_store / memory: long-term memory context (optional)
    - emotion: avatar expression and motion sync
    - wake_word: wake word listener on its own mic stream (optional)
    """

    def __init__(self, config: AgentConfig, avatar=None):
        from core.avatar import AvatarController

        self.config = config
        self.avatar = avatar or AvatarController()
        self._components_initialized = False

        self.loop = None
        self.recorder_input = None
        self.audio_output = None
        self.lip_sync = None
        self.audio = None
        self.stt = None
        self.tts = None
        self.dialogue = None
        self.registry = None
        self.prompts = None
        self.tool_loop = None
        self.memory_store = None
        self.memory = None
        self.emotion = None
        self.wake_word = None

    def initialize_all(self) -> None:
        """Initialize all components."""
        if self._components_initialized:
            return

        print("=" * 60)
        print(" Initializing Avatar Voice Agent")
        print("=" * 60)

        self._init_loop()
        self._init_audio()
        self._init_stt()
        self._init_tts()
        self._init_dialogue()
        self._init_tools()
        self._init_memory()
        self._init_emotion()
        self._init_wake_word()

        self._components_initialized = True

        print("\n" + "=" * 60)
        print(" Avatar Voice Agent Ready!")
        print("=" * 60)

    def _init_loop(self) -> None:
        print("\n[1/8] Control Loop...")
        from utils.scheduling import ControlLoop
        self.loop = ControlLoop()

    def _init_audio(self) -> None:
        """Initialize recording and playback."""
        print("[2/8] Audio I/O...")
        from core.audio_input import AudioInput, AudioInputConfig
        from core.audio_io import AudioIOConfig, AudioIOCoordinator
        from core.audio_output import AudioOutput, AudioOutputConfig
        from core.lip_sync import LipSync

        self.recorder_input = AudioInput(AudioInputConfig(
            sample_rate=self.config.sample_rate,
            frame_ms=self.config.frame_ms,
            device=self.config.input_device,
            mic_gain=self.config.mic_gain,
        ))
        self.audio_output = AudioOutput(AudioOutputConfig(
            device=self.config.output_device,
            volume=self.config.volume,
        ))
        self.lip_sync = LipSync(self.avatar.set_mouth_open)
        self.audio = AudioIOCoordinator(
            self.recorder_input,
            self.audio_output,
            self.loop,
            lip_sync=self.lip_sync,
            config=AudioIOConfig(
                sample_rate=self.config.sample_rate,
                playback_chunk_frames=self.config.playback_chunk_frames,
                recordings_dir=self.config.recordings_dir,
            ),
        )
        print(f"      {self.config.sample_rate}Hz, {self.config.frame_ms}ms frames")

    def _init_stt(self) -> None:
        print(f"[3/8] Speech-to-Text ({self.config.stt_model})...")
        from core.stt import SpeechToText, STTConfig
        self.stt = SpeechToText(STTConfig(
            base_url=self.config.stt_base_url,
            model=self.config.stt_model,
            language=self.config.stt_language,
            api_key=self.config.stt_api_key,
            timeout_sec=self.config.speech_timeout_sec,
        ))

    def _init_tts(self) -> None:
        print(f"[4/8] Text-to-Speech ({self.config.tts_voice})...")
        from core.tts import TextToSpeech, TTSConfig
        self.tts = TextToSpeech(TTSConfig(
            base_url=self.config.tts_base_url,
            model=self.config.tts_model,
            voice=self.config.tts_voice,
            speed=self.config.tts_speed,
            api_key=self.config.tts_api_key,
            timeout_sec=self.config.speech_timeout_sec,
        ))

    def _init_dialogue(self) -> None:
        print(f"[5/8] Dialogue ({self.config.llm_backend}: {self.config.llm_model})...")
        from core.dialogue import DialogueClient, DialogueConfig
        self.dialogue = DialogueClient(DialogueConfig(
            backend=self.config.llm_backend,
            base_url=self.config.llm_base_url,
            model=self.config.llm_model,
            api_key=self.config.llm_api_key,
            timeout_sec=self.config.llm_timeout_sec,
        ))

    def _init_tools(self) -> None:
        print("[6/8] Tools...")
        from core.tools import HomeAssistantTool, ToolRegistry, WebSearchTool
        from pipeline.prompts import SystemPromptBuilder
        from pipeline.tool_loop import ToolCallLoop

        self.registry = ToolRegistry()
        if self.config.enable_tools:
            if self.config.home_assistant_url and self.config.home_assistant_token:
                self.registry.register(HomeAssistantTool(
                    self.config.home_assistant_url,
                    self.config.home_assistant_token,
                ))
            if self.config.searxng_url:
                self.registry.register(WebSearchTool(self.config.searxng_url))

        if len(self.registry):
            print(f"      Available: {self.registry.names()}")
        else:
            print("      (none configured)")

        self.prompts = SystemPromptBuilder(self.config.personality)
        self.tool_loop = ToolCallLoop(
            self.loop,
            self.dialogue,
            self.registry,
            self.prompts,
            max_tool_calls=self.config.max_tool_calls,
            enable_tools=self.config.enable_tools,
        )

    def _init_memory(self) -> None:
        print("[7/8] Memory...")
        from core.memory import MemoryContextFormatter, VectorMemoryConfig, VectorMemoryStore
        from pipeline.memory_injector import MemoryContextInjector

        if self.config.memory_enabled:
            self.memory_store = VectorMemoryStore(VectorMemoryConfig(
                base_url=self.config.memory_base_url,
                model=self.config.memory_embedding_model,
            ))
            self.memory_store.start()
            print(f"      Embeddings: {self.config.memory_embedding_model}")
        else:
            print("      (disabled)")

        self.memory = MemoryContextInjector(
            self.loop,
            self.memory_store,
            MemoryContextFormatter(self.config.memory_max_tokens),
            top_k=self.config.memory_top_k,
            init_timeout_sec=self.config.memory_init_timeout_sec,
        )

    def _init_emotion(self) -> None:
        print("[8/8] Emotion Sync...")
        from pipeline.emotion_sync import EmotionSync
        self.emotion = EmotionSync(self.avatar)

    def _init_wake_word(self) -> None:
        """Initialize wake word detection on a separate 80ms mic stream."""
        print("[+] Wake Word Detection (OpenWakeWord)...")

        if not self.config.enable_wake_word:
            print("      (disabled)")
            return

        from core.audio_input import AudioInput, AudioInputConfig
        from pipeline.wake_word_handler import WakeWordHandler

        wake_input = AudioInput(AudioInputConfig(
            sample_rate=self.config.sample_rate,
            frame_ms=WAKE_WORD_FRAME_MS,
            device=self.config.input_device,
            mic_gain=self.config.mic_gain,
        ))
        self.wake_word = WakeWordHandler(
            wake_input,
            model_name=self.config.wake_word_model,
            threshold=self.config.wake_word_threshold,
            cooldown_sec=self.config.wake_word_cooldown_sec,
        )
        self.wake_word.load()

        print(f"      Phrase: {get_wake_phrase(self.config.wake_word_model)}")
        print(f"      Using: {self.wake_word.wake_word_key}")
        print(f"      Threshold: {self.config.wake_word_threshold}")

    def build_orchestrator(self, listener=None):
        """Wire the initialized components into an orchestrator."""
        from pipeline.orchestrator import ConversationOrchestrator

        self.initialize_all()
        return ConversationOrchestrator(
            self.config,
            self.loop,
            self.audio,
            self.stt,
            self.tts,
            self.tool_loop,
            memory=self.memory,
            emotion=self.emotion,
            wake_word=self.wake_word,
            listener=listener,
        )

    def stop(self) -> None:
        """Stop all components."""
        if self.wake_word:
            self.wake_word.stop()
        if self.audio:
            self.audio.stop()
        if self.loop:
            self.loop.stop()
