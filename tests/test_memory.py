"""
Tests: Long-term memory formatting, vector store and context injection
(core/memory.py, pipeline/memory_injector.py)
"""

import time

import numpy as np
import pytest
import requests

from core.memory import (
    MEMORY_FOOTER,
    TRUNCATION_LINE,
    MemoryContextFormatter,
    MemoryKind,
    MemorySnippet,
    MemoryStore,
    RelationshipKind,
    VectorMemoryConfig,
    VectorMemoryStore,
    classify_statement,
    estimate_tokens,
)
from pipeline.memory_injector import MemoryContextInjector

NOW = 1_700_000_000.0
HOUR = 3600.0
DAY = 24 * HOUR


def snippet(content="User likes jazz", **kwargs):
    kwargs.setdefault("id", "a1b2c3d4e5f6")
    kwargs.setdefault("timestamp", NOW - 2 * HOUR)
    return MemorySnippet(content=content, **kwargs)


@pytest.fixture
def formatter():
    return MemoryContextFormatter(max_tokens=800, clock=lambda: NOW)


# =============================================================================
# Formatter
# =============================================================================

@pytest.mark.parametrize("importance,stars", [
    (0.9, "★★★"), (0.8, "★★★"), (0.6, "★★☆"), (0.4, "★☆☆"), (0.1, "☆☆☆"),
])
def test_importance_indicator(importance, stars):
    assert MemoryContextFormatter.importance_indicator(importance) == stars


@pytest.mark.parametrize("age,label", [
    (10 * 60, "Recent"),
    (5 * HOUR, "5h ago"),
    (3 * DAY, "3d ago"),
])
def test_format_timestamp(formatter, age, label):
    assert formatter.format_timestamp(NOW - age) == label


@pytest.mark.parametrize("weight,label", [
    (0.9, "Emotional (Strong)"), (0.6, "Emotional"), (0.5, "Neutral"), (0.0, "Neutral"),
])
def test_context_info(weight, label):
    assert MemoryContextFormatter.context_info(snippet(emotional_weight=weight)) == label


def test_priority_weights(formatter):
    fresh_important = snippet(importance=1.0, timestamp=NOW)
    old_minor = snippet(importance=0.0, timestamp=NOW - 30 * DAY)
    assert formatter.priority(fresh_important) == pytest.approx(0.8)
    assert formatter.priority(old_minor) == pytest.approx(0.0)


def test_format_snippet(formatter):
    item = formatter.format_snippet(snippet(kind=MemoryKind.PREFERENCE, importance=0.7, access_count=3))
    assert item.startswith("[★★☆] [PREF] 2h ago\n")
    assert "Content: User likes jazz\n" in item
    assert "Context: Neutral | Accessed: 3 times\n" in item


def test_relationships_use_preview_and_fallback(formatter):
    s = snippet(relationships=(
        ("known-id-123", RelationshipKind.SIMILAR),
        ("unknown-id-456789", RelationshipKind.BUILDS_ON),
        ("third", RelationshipKind.CONTRADICTS),
    ))
    text = formatter.format_relationships(s, preview=lambda i: "Likes Miles Davis" if i == "known-id-123" else None)
    assert text == (
        "Related: Likes Miles Davis (similar)\n"
        "Related: Related memory #unknown- (builds on)\n"
    )


def test_format_block(formatter):
    text = formatter.format([snippet("low", importance=0.1, id="1"), snippet("high", importance=0.9, id="2")])
    assert text.startswith("=== RELEVANT MEMORIES FROM PREVIOUS CONVERSATIONS ===\nContext: 2 memories")
    assert text.endswith(MEMORY_FOOTER)
    # Higher priority first
    assert text.index("Content: high") < text.index("Content: low")


def test_format_empty(formatter):
    assert formatter.format([]) == ""


def test_format_truncates_to_budget():
    formatter = MemoryContextFormatter(max_tokens=200, clock=lambda: NOW)
    snippets = [snippet("x" * 200, id=str(i)) for i in range(5)]
    text = formatter.format(snippets)
    assert TRUNCATION_LINE in text
    assert text.count("Content: ") < 5
    assert estimate_tokens(text) <= 200 + estimate_tokens(TRUNCATION_LINE)


def test_format_nothing_fits():
    formatter = MemoryContextFormatter(max_tokens=60, clock=lambda: NOW)
    assert formatter.format([snippet("y" * 400)]) == ""


def test_formatter_rejects_bad_budget():
    with pytest.raises(ValueError):
        MemoryContextFormatter(max_tokens=0)


@pytest.mark.parametrize("text,kind", [
    ("I really love spicy food", MemoryKind.PREFERENCE),
    ("I feel tired these days", MemoryKind.EMOTION),
    ("My sister lives in Osaka", MemoryKind.RELATIONSHIP),
    ("I went hiking yesterday", MemoryKind.EVENT),
    ("I work as a nurse", MemoryKind.FACT),
])
def test_classify_statement(text, kind):
    assert classify_statement(text) is kind


# =============================================================================
# Vector store
# =============================================================================

VOCAB = ["jazz", "music", "cat", "pizza", "ping", "work"]


class FakeEmbeddings:
    """Bag-of-words embeddings over a tiny vocabulary."""

    def __init__(self):
        self.calls = []

    def __call__(self, url, json=None, timeout=None):
        self.calls.append((url, json))
        words = json["prompt"].lower()
        vector = [float(words.count(w)) for w in VOCAB] + [0.01]
        return _Response({"embedding": vector})


class _Response:
    def __init__(self, body):
        self._body = body

    def raise_for_status(self):
        pass

    def json(self):
        return self._body


@pytest.fixture
def store(monkeypatch):
    monkeypatch.setattr(requests, "post", FakeEmbeddings())
    return VectorMemoryStore(VectorMemoryConfig(base_url="http://embed/"))


def test_embed_normalizes(store):
    vector = store.embed("jazz jazz")
    assert np.linalg.norm(vector) == pytest.approx(1.0)
    assert requests.post.calls[0][0] == "http://embed/api/embeddings"
    assert requests.post.calls[0][1] == {"model": "nomic-embed-text", "prompt": "jazz jazz"}


def test_ready_after_probe(store):
    assert store.wait_until_ready(2.0) is True
    assert store.is_ready


def test_not_ready_when_service_down(monkeypatch):
    def refuse(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", refuse)
    store = VectorMemoryStore()
    assert store.wait_until_ready(0.5) is False


def test_failed_init_returns_early_and_retries(monkeypatch):
    healthy = FakeEmbeddings()
    attempts = []

    def flaky(url, **kwargs):
        attempts.append(url)
        if len(attempts) == 1:
            raise requests.ConnectionError("refused")
        return healthy(url, **kwargs)

    monkeypatch.setattr(requests, "post", flaky)
    store = VectorMemoryStore()

    started = time.monotonic()
    assert store.wait_until_ready(5.0) is False
    assert time.monotonic() - started < 2.0

    # Service is back; the next wait probes again
    assert store.wait_until_ready(2.0) is True
    assert len(attempts) == 2
    assert store.is_ready


def test_add_retrieve_and_access_count(store):
    jazz = store.add("I love jazz music", MemoryKind.PREFERENCE)
    store.add("My cat eats pizza")

    results = store.retrieve("jazz", k=5)
    assert [r.id for r in results] == [jazz.id]
    assert results[0].relevance_score > 0.3

    again = store.retrieve("jazz", k=5)
    assert again[0].access_count == 1
    assert again[0].last_accessed is not None


def test_duplicates_not_stored_twice(store):
    first = store.add("jazz music")
    second = store.add("Jazz music")
    assert len(store) == 1
    assert second.id == first.id
    assert second.access_count == 1


def test_similar_memories_linked(store):
    first = store.add("jazz music jazz")
    second = store.add("jazz music")
    assert (first.id, RelationshipKind.SIMILAR) in second.relationships
    assert store.preview(first.id) == "jazz music jazz"
    assert store.preview("missing") is None


def test_record_exchange_keeps_self_statements(store):
    store.record_exchange("I love jazz music a lot", "Nice!")
    store.record_exchange("what's the weather like?", "Sunny.")
    store.record_exchange("ok", "Sure.")
    assert len(store) == 1


# =============================================================================
# Injector
# =============================================================================

class StaticStore(MemoryStore):
    def __init__(self, snippets=None, ready=True, error=None):
        self.snippets = snippets or []
        self.ready = ready
        self.error = error
        self.queries = []
        self.exchanges = []

    def wait_until_ready(self, timeout):
        return self.ready

    def retrieve(self, query, k=5):
        self.queries.append((query, k))
        if self.error is not None:
            raise self.error
        return self.snippets[:k]

    def record_exchange(self, user_text, reply):
        if self.error is not None:
            raise self.error
        self.exchanges.append((user_text, reply))


def inject(loop, injector, text):
    results = []
    injector.inject(text, results.append)
    loop.run_pending()
    return results


def test_injector_builds_tool_turn(loop):
    store = StaticStore([snippet("User likes jazz")])
    injector = MemoryContextInjector(loop, store, MemoryContextFormatter(clock=lambda: NOW),
                                     top_k=3, clock=lambda: 12.5)
    [turn] = inject(loop, injector, "what music do I like?")

    assert turn.role == "tool"
    assert turn.name == "memory_context"
    assert turn.tool_call_id == "memory_context_12500"
    assert "Content: User likes jazz" in turn.content
    assert store.queries == [("what music do I like?", 3)]


def test_injector_disabled(loop):
    injector = MemoryContextInjector(loop, None)
    assert injector.enabled is False
    assert inject(loop, injector, "hello") == [None]


def test_injector_blank_message(loop):
    store = StaticStore([snippet()])
    assert inject(loop, MemoryContextInjector(loop, store), "   ") == [None]
    assert store.queries == []


def test_injector_not_ready(loop):
    store = StaticStore([snippet()], ready=False)
    assert inject(loop, MemoryContextInjector(loop, store), "hello") == [None]
    assert store.queries == []


def test_injector_no_results(loop):
    assert inject(loop, MemoryContextInjector(loop, StaticStore([])), "hello") == [None]


def test_injector_retrieval_error(loop):
    store = StaticStore(error=RuntimeError("index corrupt"))
    assert inject(loop, MemoryContextInjector(loop, store), "hello") == [None]


def test_record_exchange(loop):
    store = StaticStore()
    injector = MemoryContextInjector(loop, store)
    injector.record_exchange("I like tea", "Noted!")
    loop.run_pending()
    assert store.exchanges == [("I like tea", "Noted!")]


def test_record_exchange_failure_is_logged(loop, caplog):
    injector = MemoryContextInjector(loop, StaticStore(error=RuntimeError("disk full")))
    injector.record_exchange("I like tea", "Noted!")
    loop.run_pending()
    assert "memory_extraction_failed" in caplog.text
