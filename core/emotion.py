"""
Avatar Voice Agent - Emotion Detection
======================================

Keyword/pattern emotion scoring for replies and user utterances, plus the
avatar expression and motion tables for each emotion.

Scoring:
1. Each matching pattern scores 1.0
2. Context weighting: hypothetical x0.3, negated x0.2, direct "i feel" x1.5
3. Sentiment pass: supportive replies lean NEUTRAL, hedged ones EMBARRASSED
4. Highest score wins; nothing matched = NEUTRAL
"""

from enum import Enum
from typing import Dict, List
import logging
import re

logger = logging.getLogger(__name__)


class Emotion(Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    VERY_HAPPY = "very_happy"
    SAD = "sad"
    ANGRY = "angry"
    SURPRISED = "surprised"
    EMBARRASSED = "embarrassed"
    SUSPICIOUS = "suspicious"
    CONFUSED = "confused"


# =============================================================================
# Timing
# =============================================================================
EMOTION_DURATION_SEC = 5.0          # Non-neutral emotion decays after this
MIN_EMOTION_INTERVAL_SEC = 1.0      # Minimum gap between emotion changes
IDLE_EXPRESSION_INTERVAL_SEC = 25.0
IDLE_MOTION_INTERVAL_SEC = 15.0


# =============================================================================
# Avatar mappings
# =============================================================================
EXPRESSIONS: Dict[Emotion, str] = {
    Emotion.NEUTRAL: "F01",
    Emotion.HAPPY: "F01",
    Emotion.VERY_HAPPY: "F05",
    Emotion.SAD: "F04",
    Emotion.ANGRY: "F03",
    Emotion.SURPRISED: "F06",
    Emotion.EMBARRASSED: "F07",
    Emotion.SUSPICIOUS: "F08",
    Emotion.CONFUSED: "F06",
}

MOTIONS: Dict[Emotion, List[int]] = {
    Emotion.NEUTRAL: [1, 2, 7, 13],
    Emotion.HAPPY: [18, 23, 21],
    Emotion.VERY_HAPPY: [23, 21, 18],
    Emotion.SAD: [15, 19, 24],
    Emotion.ANGRY: [22, 3, 8, 12],
    Emotion.SURPRISED: [10, 11, 14],
    Emotion.EMBARRASSED: [22, 5, 11],
    Emotion.SUSPICIOUS: [22, 16, 20, 26],
    Emotion.CONFUSED: [17, 6, 9, 20, 26],
}

# Calmer subset played after speaking ends
IDLE_MOTIONS: Dict[Emotion, List[int]] = {
    Emotion.NEUTRAL: [1, 2, 7],
    Emotion.HAPPY: [18, 23],
    Emotion.VERY_HAPPY: [21, 18],
    Emotion.SAD: [19, 24],
    Emotion.ANGRY: [22, 3],
    Emotion.SURPRISED: [11, 14],
    Emotion.EMBARRASSED: [22, 5],
    Emotion.SUSPICIOUS: [22, 16],
    Emotion.CONFUSED: [6, 9],
}

# Cycled while idle and neutral
IDLE_EXPRESSIONS: List[Emotion] = [Emotion.NEUTRAL, Emotion.VERY_HAPPY]
IDLE_MOTION_POOL: List[int] = [1, 2, 7, 13, 18, 20, 21, 23]


# =============================================================================
# Patterns
# =============================================================================
def _compile(*patterns: str) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


EMOTION_PATTERNS: Dict[Emotion, List[re.Pattern]] = {
    Emotion.HAPPY: _compile(
        r"\b(happy|joy|glad|pleased|good|great|awesome|wonderful|nice|love|like)\b",
        r"\b(haha|hehe|lol|laugh|laughing)\b",
        r"\b(thank you|thanks|appreciate|grateful)\b",
    ),
    Emotion.VERY_HAPPY: _compile(
        r"\b(amazing|fantastic|incredible|excellent|perfect|brilliant|outstanding)\b",
        r"\b(excited|thrilled|ecstatic|overjoyed|delighted)\b",
        r"\b(wonderful|marvelous|spectacular|phenomenal)\b",
    ),
    Emotion.SAD: _compile(
        r"\b(sad|unhappy|depressed|down|blue|upset|disappointed|hurt)\b",
        r"\b(cry|crying|tears|sob|weep)\b",
        r"\b(sorry|apologize|regret|mistake)\b",
        r"\b(sadness|feeling.*sad|wave.*sadness|melancholy|sorrow)\b",
        r"\b(heaviness.*heart|heavy.*heart|gentle.*heaviness)\b",
    ),
    Emotion.ANGRY: _compile(
        r"\b(angry|mad|furious|annoyed|irritated|frustrated|pissed)\b",
        r"\b(hate|stupid|dumb|idiot|ridiculous|terrible|awful)\b",
        r"\b(outrageous|unacceptable|disgusting)\b",
        r"\b(trying to provoke|provoke me|made.*angry|feel.*angry)\b",
    ),
    Emotion.SURPRISED: _compile(
        r"\b(wow|whoa|amazing|incredible|unbelievable|shocking)\b",
        r"\b(surprised|shocked|stunned|astonished|bewildered)\b",
        r"\b(really|seriously)\?|\bno way\b|\bwhat\?!",
        r"\b(caught.*off.*guard|off.*guard|unexpected)\b",
    ),
    Emotion.EMBARRASSED: _compile(
        r"\b(embarrassed|shy|bashful|awkward|flustered|blushing)\b",
        r"\b(oops|whoops|my bad|nervous)\b",
        r"\b(uncomfortable|self-conscious)\b",
        r"\b(cheeks.*warm|made.*shy|bit.*shy)\b",
    ),
    Emotion.SUSPICIOUS: _compile(
        r"\b(suspicious|doubt|questionable|fishy|weird|strange)\b",
        r"\bsure about that\?|\bare you certain\?",
        r"\b(skeptical|doubtful|uncertain)\b",
    ),
    Emotion.CONFUSED: _compile(
        r"\b(confused|puzzled|perplexed|bewildered|baffled|mystified)\b",
        r"\b(don't understand|can't figure|makes no sense|what do you mean)\b",
        r"\bhuh\?|\b(unclear|mixed up)\b",
        r"\b(not sure what|don't get it|doesn't make sense|hard to follow)\b",
        r"\b(confusing|tricky.*understand)\b",
    ),
}

HYPOTHETICAL_PHRASES = ("might feel", "suppose i", "if i", "even if", "don't really")
NEGATED_PHRASES = ("don't get", "don't experience", "can't feel", "not really")
DIRECT_PHRASES = ("i feel", "i am", "i'm")
SUPPORTIVE_PHRASES = ("it's okay", "i'm here", "listen and understand")
HEDGING_PHRASES = ("don't really", "suppose", "even if")

SUPPORTIVE_WORDS = ("okay", "here", "listen", "understand", "support", "help", "care")
NEGATIVE_WORDS = ("don't", "can't", "won't", "not", "never")
STRONG_EMOTION_PHRASES = ("feel really", "makes me feel", "i feel", "feeling", "makes me")


class EmotionDetector:
    """
    Pattern-based emotion detector.

    Usage:
        detector = EmotionDetector()
        emotion = detector.detect("Wow, that's amazing!")   # Emotion.VERY_HAPPY or SURPRISED
    """

    def detect(self, text: str) -> Emotion:
        """Best-scoring emotion for text (NEUTRAL when nothing matches)."""
        scores = self.score(text)

        best, best_score = Emotion.NEUTRAL, 0.0
        for emotion in Emotion:
            value = scores.get(emotion, 0.0)
            if value > best_score:
                best, best_score = emotion, value
        logger.debug("emotion_detected %s scores=%s", best.value,
                     {e.value: round(s, 2) for e, s in scores.items()})
        return best

    def score(self, text: str) -> Dict[Emotion, float]:
        """Weighted scores for every emotion with at least one match."""
        if not text:
            return {}
        lower = text.lower()

        scores: Dict[Emotion, float] = {}
        for emotion, patterns in EMOTION_PATTERNS.items():
            total = 0.0
            for pattern in patterns:
                if pattern.search(lower):
                    total += self._weight(lower, emotion, 1.0)
            if total > 0:
                scores[emotion] = total

        return self._apply_sentiment(lower, scores)

    @staticmethod
    def _weight(text: str, emotion: Emotion, score: float) -> float:
        if any(p in text for p in HYPOTHETICAL_PHRASES):
            score *= 0.3
        if any(p in text for p in NEGATED_PHRASES):
            score *= 0.2
        if any(p in text for p in DIRECT_PHRASES):
            score *= 1.5

        if emotion is Emotion.SURPRISED and any(p in text for p in SUPPORTIVE_PHRASES):
            score *= 0.1
        elif emotion is Emotion.EMBARRASSED and any(p in text for p in HEDGING_PHRASES):
            score *= 1.3
        return score

    @staticmethod
    def _apply_sentiment(text: str, scores: Dict[Emotion, float]) -> Dict[Emotion, float]:
        supportive = sum(1 for w in SUPPORTIVE_WORDS if w in text)
        negative = sum(1 for w in NEGATIVE_WORDS if w in text)
        strong = any(p in text for p in STRONG_EMOTION_PHRASES)

        if supportive >= 3 and not strong:
            for emotion in list(scores):
                if emotion not in (Emotion.NEUTRAL, Emotion.HAPPY):
                    scores[emotion] *= 0.5
            scores[Emotion.NEUTRAL] = scores.get(Emotion.NEUTRAL, 0.0) + 2.0

        if negative >= 2 and supportive >= 2 and not strong:
            scores[Emotion.EMBARRASSED] = scores.get(Emotion.EMBARRASSED, 0.0) + 1.5

        return scores
