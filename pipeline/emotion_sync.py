"""
Avatar Voice Agent - Emotion Sync
=================================

Keeps the avatar's face and body in step with the conversation.

- Reply emotion is detected before synthesis and committed when speaking starts
- User emotion is applied right away (rate limited)
- Non-neutral emotions decay back to neutral
- While idle and neutral, expressions and motions cycle slowly

Driven by orchestrator state changes and a periodic update() tick,
both on the control loop.
"""

from typing import Callable, Optional
import logging
import random
import time

from core.emotion import (
    EMOTION_DURATION_SEC,
    EXPRESSIONS,
    IDLE_EXPRESSION_INTERVAL_SEC,
    IDLE_EXPRESSIONS,
    IDLE_MOTION_INTERVAL_SEC,
    IDLE_MOTION_POOL,
    IDLE_MOTIONS,
    MIN_EMOTION_INTERVAL_SEC,
    MOTIONS,
    Emotion,
    EmotionDetector,
)
from pipeline.config import ConversationState

logger = logging.getLogger(__name__)


class EmotionSync:
    """
    Usage:
        sync = EmotionSync(avatar)
        sync.prepare_reply("That's wonderful news!")     # before synthesis
        sync.on_state_changed(PROCESSING, SPEAKING)     # commits it
        sync.update()                                   # every second
    """

    def __init__(
        self,
        avatar,
        detector: Optional[EmotionDetector] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.avatar = avatar
        self.detector = detector or EmotionDetector()
        self._rng = rng or random.Random()
        self._clock = clock

        now = clock()
        self.current_emotion = Emotion.NEUTRAL
        self.pending_emotion: Optional[Emotion] = None
        self.speaking = False
        self._state = ConversationState.IDLE
        self._last_change = now - MIN_EMOTION_INTERVAL_SEC
        self._last_idle_expression_time = now
        self._last_idle_motion_time = now
        self._last_idle_expression: Optional[Emotion] = None
        self._last_idle_motion: Optional[int] = None

    # =========================================================================
    # Inputs
    # =========================================================================

    def prepare_reply(self, text: str) -> Optional[Emotion]:
        """Detect the reply's emotion and hold it until speaking starts."""
        emotion = self.detector.detect(text)
        self.pending_emotion = None if emotion is Emotion.NEUTRAL else emotion
        return self.pending_emotion

    def analyze_user_text(self, text: str, now: Optional[float] = None) -> bool:
        """
        Apply the user's emotion immediately.

        Returns:
            True if the avatar changed
        """
        emotion = self.detector.detect(text)
        if emotion is Emotion.NEUTRAL:
            return False
        return self._apply(emotion, self._now(now), respect_interval=True)

    def on_state_changed(
        self,
        old: ConversationState,
        new: ConversationState,
        now: Optional[float] = None,
    ) -> None:
        now = self._now(now)
        self._state = new

        if new is ConversationState.SPEAKING:
            self.speaking = True
            if self.pending_emotion is not None:
                self._apply(self.pending_emotion, now, respect_interval=False)
                self.pending_emotion = None
        elif old is ConversationState.SPEAKING:
            self.speaking = False
            self.pending_emotion = None
            self.avatar.start_motion(self._rng.choice(IDLE_MOTIONS[self.current_emotion]))

        if new is ConversationState.IDLE:
            self._last_idle_expression_time = now
            self._last_idle_motion_time = now

    # =========================================================================
    # Tick
    # =========================================================================

    def update(self, now: Optional[float] = None) -> None:
        now = self._now(now)

        if (self.current_emotion is not Emotion.NEUTRAL and not self.speaking
                and now - self._last_change >= EMOTION_DURATION_SEC):
            logger.debug("emotion_decayed %s", self.current_emotion.value)
            self._set(Emotion.NEUTRAL, now, motion=None)

        if self._state is not ConversationState.IDLE or self.current_emotion is not Emotion.NEUTRAL:
            return

        if now - self._last_idle_expression_time >= IDLE_EXPRESSION_INTERVAL_SEC:
            choices = [e for e in IDLE_EXPRESSIONS if e is not self._last_idle_expression] or IDLE_EXPRESSIONS
            expression = self._rng.choice(choices)
            self.avatar.set_expression(EXPRESSIONS[expression])
            self._last_idle_expression = expression
            self._last_idle_expression_time = now

        if now - self._last_idle_motion_time >= IDLE_MOTION_INTERVAL_SEC:
            choices = [m for m in IDLE_MOTION_POOL if m != self._last_idle_motion] or IDLE_MOTION_POOL
            motion = self._rng.choice(choices)
            self.avatar.start_motion(motion)
            self._last_idle_motion = motion
            self._last_idle_motion_time = now

    # =========================================================================
    # Internal
    # =========================================================================

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def _apply(self, emotion: Emotion, now: float, respect_interval: bool) -> bool:
        if respect_interval:
            if now - self._last_change < MIN_EMOTION_INTERVAL_SEC:
                return False
            if emotion is self.current_emotion and now - self._last_change < EMOTION_DURATION_SEC / 2:
                return False
        self._set(emotion, now, motion=self._rng.choice(MOTIONS[emotion]))
        return True

    def _set(self, emotion: Emotion, now: float, motion: Optional[int]) -> None:
        self.current_emotion = emotion
        self._last_change = now
        self.avatar.set_expression(EXPRESSIONS[emotion])
        if motion is not None:
            self.avatar.start_motion(motion)
        logger.info("emotion_set %s", emotion.value)
