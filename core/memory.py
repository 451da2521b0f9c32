"""
Avatar Voice Agent - Long-Term Memory
=====================================

Memories from previous conversations, retrieved by similarity and formatted
into a context block the dialogue can read.

Components:
- MemorySnippet: one retrieved memory (read-only)
- MemoryStore: interface the memory injector talks to
- VectorMemoryStore: in-process cosine-similarity store with embeddings
  from an Ollama-compatible /api/embeddings endpoint
- MemoryContextFormatter: header, prioritized snippets, footer, all under
  a token budget (about 4 characters per token)
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import logging
import math
import re
import threading
import time
import uuid

import numpy as np
import requests

logger = logging.getLogger(__name__)


class MemoryKind(Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    EMOTION = "emotion"
    EVENT = "event"
    RELATIONSHIP = "relationship"
    OTHER = "other"


class RelationshipKind(Enum):
    SIMILAR = "similar"
    CONTRADICTS = "contradicts"
    BUILDS_ON = "builds on"
    RELATED_TO = "related"
    OTHER = "connected"


@dataclass(frozen=True)
class MemorySnippet:
    id: str
    content: str
    relevance_score: float = 0.0
    relationships: Tuple[Tuple[str, RelationshipKind], ...] = ()
    importance: float = 0.5                 # 0-1
    kind: MemoryKind = MemoryKind.OTHER
    timestamp: float = field(default_factory=time.time)
    last_accessed: Optional[float] = None   # None = never accessed since creation
    access_count: int = 0
    emotional_weight: float = 0.0           # 0-1


class MemoryStore:
    """
    Interface used by the memory injector.

    Implementations must make wait_until_ready() idempotent and bounded by
    its timeout, and must return False promptly once initialization failed.
    Retrieval failures may raise; the injector logs and bypasses them.
    """

    def wait_until_ready(self, timeout: float) -> bool:
        raise NotImplementedError

    def retrieve(self, query: str, k: int = 5) -> List[MemorySnippet]:
        raise NotImplementedError

    def record_exchange(self, user_text: str, reply: str) -> None:
        """Best-effort extraction of new memories from one exchange."""

    def preview(self, memory_id: str) -> Optional[str]:
        """Short text for a related memory (None if unknown)."""
        return None


# =============================================================================
# Formatting
# =============================================================================

MEMORY_HEADER_TEMPLATE = (
    "=== RELEVANT MEMORIES FROM PREVIOUS CONVERSATIONS ===\n"
    "Context: %d memories retrieved for query relevance\n"
    "Instructions: Use this context naturally when relevant to the conversation\n\n"
)

MEMORY_ITEM_TEMPLATE = (
    "[%s] %s %s\n"
    "Content: %s\n"
    "Context: %s | Accessed: %d times\n%s\n"
)

RELATIONSHIP_TEMPLATE = "Related: %s (%s)\n"

MEMORY_FOOTER = (
    "\n=== END MEMORY CONTEXT ===\n"
    "Note: Integrate these memories naturally into your response when relevant."
)

TRUNCATION_LINE = "... (additional memories truncated for length)\n"

TYPE_TAGS = {
    MemoryKind.FACT: "[FACT]",
    MemoryKind.PREFERENCE: "[PREF]",
    MemoryKind.EMOTION: "[EMOT]",
    MemoryKind.EVENT: "[EVENT]",
    MemoryKind.RELATIONSHIP: "[REL]",
}

MAX_RELATIONSHIPS = 2
RECENCY_WINDOW_SEC = 7 * 24 * 3600


def estimate_tokens(text: str) -> int:
    """Rough token count: 1 token is about 4 characters."""
    return len(text) // 4


class MemoryContextFormatter:
    """
    Formats retrieved memories into one context block.

    Usage:
        formatter = MemoryContextFormatter(max_tokens=800)
        text = formatter.format(snippets, preview=store.preview)
    """

    def __init__(self, max_tokens: int = 800, clock: Callable[[], float] = time.time):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.max_tokens = max_tokens
        self._clock = clock

    @staticmethod
    def importance_indicator(importance: float) -> str:
        if importance >= 0.8:
            return "★★★"
        if importance >= 0.6:
            return "★★☆"
        if importance >= 0.4:
            return "★☆☆"
        return "☆☆☆"

    def format_timestamp(self, timestamp: float) -> str:
        age = self._clock() - timestamp
        if age < 24 * 3600:
            hours = int(age // 3600)
            return "Recent" if hours < 1 else f"{hours}h ago"
        if age < 7 * 24 * 3600:
            return f"{int(age // (24 * 3600))}d ago"
        return time.strftime("%b %d, %H:%M", time.localtime(timestamp))

    @staticmethod
    def context_info(snippet: MemorySnippet) -> str:
        if snippet.emotional_weight > 0.8:
            return "Emotional (Strong)"
        if snippet.emotional_weight > 0.5:
            return "Emotional"
        return "Neutral"

    def priority(self, snippet: MemorySnippet) -> float:
        """0.5 importance + 0.3 recency (7-day window) + 0.2 access frequency."""
        last = snippet.last_accessed if snippet.last_accessed is not None else snippet.timestamp
        recency = max(0.0, 1.0 - (self._clock() - last) / RECENCY_WINDOW_SEC)
        access = min(1.0, math.log(snippet.access_count + 1) / 5.0)
        return 0.5 * snippet.importance + 0.3 * recency + 0.2 * access

    def format_relationships(
        self,
        snippet: MemorySnippet,
        preview: Optional[Callable[[str], Optional[str]]] = None,
    ) -> str:
        lines = []
        for target_id, kind in snippet.relationships:
            if len(lines) >= MAX_RELATIONSHIPS:
                break
            text = preview(target_id) if preview else None
            if not text:
                text = f"Related memory #{target_id[:8]}"
            lines.append(RELATIONSHIP_TEMPLATE % (text, kind.value))
        return "".join(lines)

    def format_snippet(
        self,
        snippet: MemorySnippet,
        preview: Optional[Callable[[str], Optional[str]]] = None,
    ) -> str:
        return MEMORY_ITEM_TEMPLATE % (
            self.importance_indicator(snippet.importance),
            TYPE_TAGS.get(snippet.kind, "[INFO]"),
            self.format_timestamp(snippet.timestamp),
            snippet.content,
            self.context_info(snippet),
            snippet.access_count,
            self.format_relationships(snippet, preview),
        )

    def format(
        self,
        snippets: List[MemorySnippet],
        preview: Optional[Callable[[str], Optional[str]]] = None,
    ) -> str:
        """
        Build the context block.

        Returns:
            Formatted text, or "" when there is nothing to inject
        """
        if not snippets:
            return ""

        header = MEMORY_HEADER_TEMPLATE % len(snippets)
        parts = [header]
        used = estimate_tokens(header)
        budget = self.max_tokens - estimate_tokens(MEMORY_FOOTER)
        included = 0

        for snippet in sorted(snippets, key=self.priority, reverse=True):
            item = self.format_snippet(snippet, preview)
            cost = estimate_tokens(item)
            if used + cost > budget:
                parts.append(TRUNCATION_LINE)
                break
            parts.append(item)
            used += cost
            included += 1

        if included == 0:
            return ""

        parts.append(MEMORY_FOOTER)
        logger.debug("memory_context_formatted included=%d tokens=%d", included, used)
        return "".join(parts)


# =============================================================================
# Vector store
# =============================================================================

_PREFERENCE = re.compile(r"\b(i (really )?(like|love|prefer|hate|enjoy|dislike)|my favou?rite)\b", re.IGNORECASE)
_EMOTION = re.compile(r"\bi (feel|felt|am feeling)\b", re.IGNORECASE)
_EVENT = re.compile(r"\b(yesterday|today|tomorrow|last (week|night|month)|next (week|month))\b", re.IGNORECASE)
_RELATIONSHIP = re.compile(r"\bmy (wife|husband|partner|friend|mom|mother|dad|father|sister|brother|son|daughter|boss)\b", re.IGNORECASE)
_SELF_STATEMENT = re.compile(r"\b(i|i'm|i am|my|me)\b", re.IGNORECASE)


def classify_statement(text: str) -> MemoryKind:
    if _PREFERENCE.search(text):
        return MemoryKind.PREFERENCE
    if _EMOTION.search(text):
        return MemoryKind.EMOTION
    if _RELATIONSHIP.search(text):
        return MemoryKind.RELATIONSHIP
    if _EVENT.search(text):
        return MemoryKind.EVENT
    return MemoryKind.FACT


@dataclass
class VectorMemoryConfig:
    base_url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    timeout_sec: float = 10.0
    min_similarity: float = 0.3         # Below this a memory is not relevant
    duplicate_similarity: float = 0.95  # At or above this a new memory is a duplicate
    related_similarity: float = 0.75    # At or above this memories are linked as similar


class VectorMemoryStore(MemoryStore):
    """
    In-process memory store with cosine similarity search.

    Usage:
        store = VectorMemoryStore(VectorMemoryConfig(base_url="http://localhost:11434"))
        store.start()                          # probes the embedding endpoint
        if store.wait_until_ready(5.0):
            snippets = store.retrieve("what music do I like?", k=5)
    """

    def __init__(self, config: Optional[VectorMemoryConfig] = None):
        self.config = config or VectorMemoryConfig()
        self._ready = threading.Event()
        self._start_lock = threading.Lock()
        self._probe_thread: Optional[threading.Thread] = None
        self._probe_done = threading.Event()
        self._lock = threading.Lock()
        self._snippets: Dict[str, MemorySnippet] = {}
        self._vectors: Dict[str, np.ndarray] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> threading.Event:
        """
        Probe the embedding endpoint in the background (idempotent).

        Returns the event set when the current probe finishes. A failed probe
        clears itself so the next call starts a fresh one.
        """
        with self._start_lock:
            if self._probe_thread is None:
                self._probe_done = threading.Event()
                self._probe_thread = threading.Thread(
                    target=self._probe, args=(self._probe_done,), name="memory-init", daemon=True
                )
                self._probe_thread.start()
            return self._probe_done

    def _probe(self, done: threading.Event) -> None:
        try:
            self.embed("ping")
        except (requests.RequestException, ValueError) as e:
            logger.warning("memory_init_failed %s", e)
            with self._start_lock:
                self._probe_thread = None
            done.set()
            return
        self._ready.set()
        done.set()
        logger.info("memory_ready model=%s", self.config.model)

    def wait_until_ready(self, timeout: float) -> bool:
        """Wait for the current probe; False at once if it failed."""
        if self._ready.is_set():
            return True
        self.start().wait(timeout)
        return self._ready.is_set()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    # =========================================================================
    # Embeddings
    # =========================================================================

    def embed(self, text: str) -> np.ndarray:
        """
        Embed text via /api/embeddings.

        Raises:
            requests.RequestException: on transport or HTTP errors
            ValueError: if the response carries no embedding
        """
        response = requests.post(
            f"{self.config.base_url.rstrip('/')}/api/embeddings",
            json={"model": self.config.model, "prompt": text},
            timeout=self.config.timeout_sec,
        )
        response.raise_for_status()
        values = response.json().get("embedding")
        if not values:
            raise ValueError("No embedding in response")
        vector = np.asarray(values, dtype=np.float32)
        norm = float(np.linalg.norm(vector))
        return vector / norm if norm > 0 else vector

    def search(self, vector: np.ndarray, k: int = 5) -> List[MemorySnippet]:
        """Top-k snippets by cosine similarity (unit vectors, so a dot product)."""
        with self._lock:
            if not self._vectors:
                return []
            ids = list(self._vectors)
            matrix = np.stack([self._vectors[i] for i in ids])
            scores = matrix @ vector

            ranked = []
            for index in np.argsort(-scores)[:k]:
                score = float(scores[index])
                if score < self.config.min_similarity:
                    break
                ranked.append(replace(self._snippets[ids[index]], relevance_score=score))
        return ranked

    # =========================================================================
    # MemoryStore
    # =========================================================================

    def retrieve(self, query: str, k: int = 5) -> List[MemorySnippet]:
        results = self.search(self.embed(query), k)
        now = time.time()
        with self._lock:
            for snippet in results:
                stored = self._snippets.get(snippet.id)
                if stored is not None:
                    self._snippets[snippet.id] = replace(
                        stored, access_count=stored.access_count + 1, last_accessed=now,
                    )
        return results

    def preview(self, memory_id: str) -> Optional[str]:
        with self._lock:
            snippet = self._snippets.get(memory_id)
        if snippet is None:
            return None
        content = snippet.content
        return content if len(content) <= 60 else content[:57] + "..."

    def add(
        self,
        content: str,
        kind: MemoryKind = MemoryKind.FACT,
        importance: float = 0.5,
        emotional_weight: float = 0.0,
    ) -> MemorySnippet:
        """
        Store a memory, linking it to similar ones.

        A near-duplicate of an existing memory is not stored again; the
        existing one is returned with its access count bumped.
        """
        vector = self.embed(content)
        neighbours = self.search(vector, k=MAX_RELATIONSHIPS + 1)

        with self._lock:
            if neighbours and neighbours[0].relevance_score >= self.config.duplicate_similarity:
                existing = self._snippets[neighbours[0].id]
                updated = replace(existing, access_count=existing.access_count + 1, last_accessed=time.time())
                self._snippets[existing.id] = updated
                return updated

            relationships = tuple(
                (n.id, RelationshipKind.SIMILAR)
                for n in neighbours
                if n.relevance_score >= self.config.related_similarity
            )
            snippet = MemorySnippet(
                id=uuid.uuid4().hex,
                content=content,
                relationships=relationships,
                importance=importance,
                kind=kind,
                emotional_weight=emotional_weight,
            )
            self._snippets[snippet.id] = snippet
            self._vectors[snippet.id] = vector

        logger.info("memory_added kind=%s related=%d", kind.value, len(relationships))
        return snippet

    def record_exchange(self, user_text: str, reply: str) -> None:
        """Keep user statements about themselves (questions are skipped)."""
        text = user_text.strip()
        if len(text) < 12 or text.endswith("?") or not _SELF_STATEMENT.search(text):
            return

        kind = classify_statement(text)
        importance = 0.7 if kind in (MemoryKind.PREFERENCE, MemoryKind.RELATIONSHIP) else 0.5
        emotional_weight = 0.6 if kind is MemoryKind.EMOTION else 0.0
        self.add(text, kind, importance, emotional_weight)

    def __len__(self) -> int:
        with self._lock:
            return len(self._snippets)
