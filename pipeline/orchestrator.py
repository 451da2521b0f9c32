"""
Avatar Voice Agent - Conversation Orchestrator
==============================================

The listen / process / speak state machine.

    IDLE ──wake──> LISTENING ──clip──> PROCESSING ──reply──> SPEAKING
     ^                 │                    │                   │
     └── no speech ────┘<──── error ────────┘     done / tap ───┴──> LISTENING (follow-up)
                                                  double tap ──────> IDLE

Rules:
- Wake word is paused outside IDLE and resumed when IDLE is re-entered
  (after a follow-up window with no speech, only after a cooldown)
- Every real transition fires on_state_changed(old, new) exactly once
- Any unrecoverable error: stop activity, on_error(message), IDLE, wake resumed

All methods run on the control loop. Public entry points post onto it, and
background results come back as loop callbacks. Results that belong to an
abandoned turn or speech are dropped by generation checks.
"""

from typing import Optional
import logging
import sys
import time

from core.audio_io import (
    AudioBusyError,
    NoMeaningfulAudio,
    PlaybackCompleted,
    PlaybackFailed,
    PlaybackInterrupted,
    RecordingComplete,
    RecordingFailed,
)
from core.dialogue import ConversationHistory, Turn
from core.stt import Transcript, TranscriptionError
from core.tts import SpeechClip, SynthesisError
from pipeline.config import AgentConfig, ConversationState, STATE_DISPLAY, get_wake_phrase
from pipeline.tool_loop import (
    DialogueFailed,
    InvalidParameters,
    NoToolCalls,
    RepeatedToolCall,
    ToolCallFailed,
    ToolCallLimitExceeded,
    ToolCallSucceeded,
    UnknownTool,
)

logger = logging.getLogger(__name__)

LIMIT_EXCEEDED_REPLY = "I found some information, but let me provide you with what I have so far."
REPEATED_CALL_REPLY = "I've already looked into that. Let me give you what I found."
UNKNOWN_TOOL_REPLY = "I'm sorry, I don't know how to use that tool: {name}"
INVALID_PARAMETERS_REPLY = "I'm sorry, there was an issue with the tool parameters: {error}"

UPDATE_INTERVAL_SEC = 1.0

_INTERRUPT_TO_LISTENING = "listening"
_INTERRUPT_TO_IDLE = "idle"


class ConversationListener:
    """UI hooks. Subclass and override what you need; all run on the control loop."""

    def on_state_changed(self, old: ConversationState, new: ConversationState) -> None:
        pass

    def on_transcription(self, text: str) -> None:
        pass

    def on_response(self, text: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


class ConversationOrchestrator:
    """
    Drives one conversation session.

    Usage:
        orchestrator = components.build_orchestrator(listener=MyUI())
        orchestrator.start()
        ...
        orchestrator.interrupt_to_listening()   # single tap while speaking
        orchestrator.interrupt_to_idle()        # double tap while speaking
        orchestrator.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        loop,
        audio,
        stt,
        tts,
        tool_loop,
        history: Optional[ConversationHistory] = None,
        memory=None,
        emotion=None,
        wake_word=None,
        listener: Optional[ConversationListener] = None,
    ):
        self.config = config
        self._loop = loop
        self._audio = audio
        self._stt = stt
        self._tts = tts
        self._tool_loop = tool_loop
        self._history = history if history is not None else ConversationHistory()
        self._memory = memory
        self._emotion = emotion
        self._wake_word = wake_word
        self.listener = listener or ConversationListener()

        self._state = ConversationState.IDLE
        self._running = False

        # Generations: results carrying an older id are stale
        self._turn_id = 0
        self._speech_id = 0

        self._followup = False
        self._pending_interrupt: Optional[str] = None
        self._cycle = None
        self._user_text = ""
        self._wake_resume_handle = None
        self._update_handle = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the loop, the wake word listener and the update tick; enter IDLE."""
        if self._running:
            return
        self._running = True
        self._loop.start()
        if self._wake_word is not None:
            self._wake_word.start(self.on_wake_detected)
        self._loop.post(self._on_started)

    def _on_started(self) -> None:
        logger.info("orchestrator_started")
        self._resume_wake()
        self._update_handle = self._loop.call_later(UPDATE_INTERVAL_SEC, self._tick)

    def stop(self) -> None:
        """Stop wake word, recording and playback, then the loop."""
        if not self._running:
            return
        self._running = False
        for handle in (self._wake_resume_handle, self._update_handle):
            if handle is not None:
                handle.cancel()
        if self._cycle is not None:
            self._cycle.cancel()
        if self._wake_word is not None:
            self._wake_word.stop()
        self._audio.stop()
        self._loop.stop()
        logger.info("orchestrator_stopped")

    # =========================================================================
    # Public entry points (any thread)
    # =========================================================================

    def on_wake_detected(self) -> None:
        self._loop.post(self._handle_wake)

    def interrupt_to_listening(self) -> None:
        """Single tap: cut the reply short and listen for a follow-up."""
        self._loop.post(self._handle_interrupt, _INTERRUPT_TO_LISTENING)

    def interrupt_to_idle(self) -> None:
        """Double tap: cut the reply short and go back to waiting for the wake word."""
        self._loop.post(self._handle_interrupt, _INTERRUPT_TO_IDLE)

    def clear_conversation(self) -> None:
        self._loop.post(self._handle_clear)

    # =========================================================================
    # State
    # =========================================================================

    def _set_state(self, new: ConversationState) -> bool:
        old = self._state
        if new is old:
            return False
        self._state = new

        if new is not ConversationState.IDLE:
            self._cancel_wake_resume()
            if self._wake_word is not None:
                self._wake_word.pause()

        logger.info("state_changed %s -> %s", old.name, new.name)
        if self._emotion is not None:
            self._emotion.on_state_changed(old, new)
        self.listener.on_state_changed(old, new)
        return True

    def _go_idle(self, resume_delay_sec: float = 0.0) -> None:
        self._set_state(ConversationState.IDLE)
        self._cancel_wake_resume()
        if resume_delay_sec > 0:
            self._wake_resume_handle = self._loop.call_later(resume_delay_sec, self._resume_wake_if_idle)
        else:
            self._resume_wake()

    def _cancel_wake_resume(self) -> None:
        if self._wake_resume_handle is not None:
            self._wake_resume_handle.cancel()
            self._wake_resume_handle = None

    def _resume_wake_if_idle(self) -> None:
        self._wake_resume_handle = None
        if self._state is ConversationState.IDLE:
            self._resume_wake()

    def _resume_wake(self) -> None:
        if self._wake_word is None or not self._running:
            return
        try:
            self._wake_word.resume()
        except Exception as e:
            logger.error("wake_word_resume_failed %s", e)
            self.listener.on_error(f"Wake word error: {e}")

    def _no_speech(self) -> None:
        """Nothing to answer: IDLE, wake resumed (after the cooldown if this was a follow-up)."""
        delay = self.config.followup_cooldown_sec if self._followup else 0.0
        self._go_idle(delay)

    def _fail(self, message: str) -> None:
        """Universal recovery for unrecoverable errors."""
        logger.error("conversation_error %s state=%s", message, self._state.name)
        self._turn_id += 1
        self._speech_id += 1
        self._pending_interrupt = None
        if self._cycle is not None:
            self._cycle.cancel()
            self._cycle = None
        self._audio.stop_recording()
        self._audio.interrupt_playback()

        self.listener.on_error(message)
        self._go_idle()

    def _is_current(self, turn_id: int, state: ConversationState) -> bool:
        return turn_id == self._turn_id and self._state is state

    # =========================================================================
    # Listening
    # =========================================================================

    def _handle_wake(self) -> None:
        if self._state is not ConversationState.IDLE:
            logger.debug("wake_ignored state=%s", self._state.name)
            return
        self._start_listening(followup=False)

    def _start_listening(self, followup: bool) -> None:
        self._followup = followup
        self._turn_id += 1
        turn_id = self._turn_id
        self._set_state(ConversationState.LISTENING)

        if followup:
            vad, timeout = self.config.followup_vad, self.config.followup_listen_timeout_sec
        else:
            vad, timeout = self.config.initial_vad, self.config.initial_listen_timeout_sec

        try:
            self._audio.start_recording(vad, timeout, lambda result: self._on_recording(turn_id, result))
        except AudioBusyError as e:
            self._fail(f"Audio busy: {e}")

    def _on_recording(self, turn_id: int, result) -> None:
        if not self._is_current(turn_id, ConversationState.LISTENING):
            return

        if isinstance(result, RecordingComplete):
            self._set_state(ConversationState.PROCESSING)
            self._loop.submit(
                self._stt.transcribe,
                result.clip,
                callback=lambda future: self._on_transcribed(turn_id, future),
            )
        elif isinstance(result, NoMeaningfulAudio):
            logger.info("no_meaningful_audio followup=%s stopped_by=%s", self._followup, result.stopped_by)
            self._no_speech()
        elif isinstance(result, RecordingFailed):
            self._fail(result.error)
        else:
            self._fail(f"Unexpected recording result: {result!r}")

    # =========================================================================
    # Processing
    # =========================================================================

    def _on_transcribed(self, turn_id: int, future) -> None:
        if not self._is_current(turn_id, ConversationState.PROCESSING):
            return
        try:
            result = future.result()
        except Exception as e:
            self._fail(f"Transcription error: {e}")
            return

        if isinstance(result, TranscriptionError):
            self._fail(f"Transcription failed: {result.message}")
            return
        if not isinstance(result, Transcript):
            self._fail(f"Unexpected transcription result: {result!r}")
            return

        text = result.text.strip()
        if not text:
            logger.info("blank_transcript")
            self._no_speech()
            return

        self._user_text = text
        self.listener.on_transcription(text)
        if self._emotion is not None:
            self._emotion.analyze_user_text(text)

        # Memory runs only for a genuine user turn and completes before the first dialogue call
        if self._memory is not None and self._memory.enabled:
            self._memory.inject(text, lambda context: self._on_memory_context(turn_id, text, context))
        else:
            self._begin_dialogue(turn_id, text, None)

    def _on_memory_context(self, turn_id: int, text: str, context: Optional[Turn]) -> None:
        if not self._is_current(turn_id, ConversationState.PROCESSING):
            return
        self._begin_dialogue(turn_id, text, context)

    def _begin_dialogue(self, turn_id: int, text: str, context: Optional[Turn]) -> None:
        if context is not None:
            self._history.append(context)
        self._history.append(Turn("user", text))
        self._cycle = self._tool_loop.run(
            self._history,
            on_complete=lambda outcome: self._on_outcome(turn_id, outcome),
            on_event=self._on_tool_event,
        )

    def _on_tool_event(self, event) -> None:
        if isinstance(event, ToolCallSucceeded):
            logger.info("tool_succeeded %s chars=%d", event.name, len(event.result))
        else:
            logger.debug("tool_event %s", type(event).__name__)

    def _on_outcome(self, turn_id: int, outcome) -> None:
        if not self._is_current(turn_id, ConversationState.PROCESSING):
            return
        self._cycle = None

        if isinstance(outcome, NoToolCalls):
            reply = outcome.text
            if self._memory is not None and self._memory.enabled:
                self._memory.record_exchange(self._user_text, reply)
        elif isinstance(outcome, ToolCallLimitExceeded):
            reply = LIMIT_EXCEEDED_REPLY
        elif isinstance(outcome, RepeatedToolCall):
            reply = REPEATED_CALL_REPLY
        elif isinstance(outcome, UnknownTool):
            reply = UNKNOWN_TOOL_REPLY.format(name=outcome.name)
        elif isinstance(outcome, InvalidParameters):
            reply = INVALID_PARAMETERS_REPLY.format(error=outcome.error)
        elif isinstance(outcome, ToolCallFailed):
            self._fail(outcome.error)
            return
        elif isinstance(outcome, DialogueFailed):
            self._fail(outcome.message)
            return
        else:
            self._fail(f"Unexpected dialogue outcome: {outcome!r}")
            return

        if not isinstance(outcome, NoToolCalls):
            self._history.append(Turn("assistant", reply))
        self._speak(reply)

    # =========================================================================
    # Speaking
    # =========================================================================

    def _speak(self, reply: str) -> None:
        self.listener.on_response(reply)
        if self._emotion is not None:
            self._emotion.prepare_reply(reply)

        self._speech_id += 1
        speech_id = self._speech_id
        self._pending_interrupt = None
        self._set_state(ConversationState.SPEAKING)
        self._loop.submit(
            self._tts.synthesize,
            reply,
            callback=lambda future: self._on_synthesized(speech_id, future),
        )

    def _on_synthesized(self, speech_id: int, future) -> None:
        if speech_id != self._speech_id or self._state is not ConversationState.SPEAKING:
            return
        try:
            result = future.result()
        except Exception as e:
            self._fail(f"Speech synthesis error: {e}")
            return

        if isinstance(result, SynthesisError):
            self._fail(f"Speech synthesis failed: {result.message}")
            return
        if not isinstance(result, SpeechClip):
            self._fail(f"Unexpected synthesis result: {result!r}")
            return

        try:
            self._audio.start_playback(result.audio, lambda r: self._on_playback(speech_id, r))
        except AudioBusyError as e:
            self._fail(f"Audio busy: {e}")

    def _on_playback(self, speech_id: int, result) -> None:
        if speech_id != self._speech_id or self._state is not ConversationState.SPEAKING:
            return
        action, self._pending_interrupt = self._pending_interrupt, None

        if isinstance(result, PlaybackCompleted):
            self._start_listening(followup=True)
        elif isinstance(result, PlaybackInterrupted):
            if action == _INTERRUPT_TO_IDLE:
                self._go_idle()
            else:
                self._start_listening(followup=True)
        elif isinstance(result, PlaybackFailed):
            self._fail(result.error)
        else:
            self._fail(f"Unexpected playback result: {result!r}")

    def _handle_interrupt(self, action: str) -> None:
        if self._state is not ConversationState.SPEAKING:
            logger.debug("interrupt_ignored state=%s", self._state.name)
            return

        self._pending_interrupt = action
        if self._audio.interrupt_playback():
            # Acted on when playback reports PlaybackInterrupted
            return

        # Still synthesizing: the clip that arrives later is stale
        logger.info("interrupt_before_playback action=%s", action)
        self._speech_id += 1
        self._pending_interrupt = None
        if action == _INTERRUPT_TO_IDLE:
            self._go_idle()
        else:
            self._start_listening(followup=True)

    # =========================================================================
    # Misc
    # =========================================================================

    def _handle_clear(self) -> None:
        self._history.clear()
        logger.info("conversation_cleared")

    def _tick(self) -> None:
        if not self._running:
            return
        if self._emotion is not None:
            self._emotion.update()
        self._update_handle = self._loop.call_later(UPDATE_INTERVAL_SEC, self._tick)


# =============================================================================
# Command line
# =============================================================================

class ConsoleListener(ConversationListener):
    """Prints the conversation to the terminal."""

    def on_state_changed(self, old, new):
        print(f"\n[{STATE_DISPLAY[new]}]")

    def on_transcription(self, text):
        print(f"👤 You: {text}")

    def on_response(self, text):
        print(f"🤖 Assistant: {text}")

    def on_error(self, message):
        print(f"❌ Error: {message}")


def main():
    """Run the avatar voice agent from the terminal."""
    from config.settings import load_config
    from pipeline.components import ComponentManager

    config = load_config()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print()
    print("🎙️  Avatar Voice Agent")
    print("=" * 40)
    print()

    try:
        components = ComponentManager(config)
        components.initialize_all()
    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}")
        sys.exit(1)

    orchestrator = components.build_orchestrator(listener=ConsoleListener())
    orchestrator.start()

    if config.enable_wake_word:
        print(f"\nSay '{get_wake_phrase(config.wake_word_model)}' or press Enter to talk.")
    else:
        print("\nPress Enter to talk.")
    print("While speaking: Enter = interrupt and listen, x = stop, c = clear history, q = quit\n")

    try:
        while True:
            command = input().strip().lower()
            if command in ("q", "quit", "exit"):
                break
            if command == "x":
                orchestrator.interrupt_to_idle()
            elif command == "c":
                orchestrator.clear_conversation()
            elif orchestrator.state is ConversationState.SPEAKING:
                orchestrator.interrupt_to_listening()
            else:
                orchestrator.on_wake_detected()
    except (KeyboardInterrupt, EOFError):
        pass
    finally:
        orchestrator.stop()
        time.sleep(0.1)

    print("\n👋 Goodbye!")


if __name__ == "__main__":
    main()
