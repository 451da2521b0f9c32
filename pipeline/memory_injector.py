"""
Avatar Voice Agent - Memory Context Injector
============================================

Looks up long-term memories for a new user message and turns them into one
tool-role history turn placed before the user turn.

Only genuine user turns go through here; tool continuations never do.
Any failure (store not ready, retrieval error, nothing found) resolves to
"no context" and the dialogue proceeds unchanged.
"""

from typing import Callable, Optional
import logging
import time

from core.dialogue import Turn
from core.memory import MemoryContextFormatter, MemoryStore

logger = logging.getLogger(__name__)


class MemoryContextInjector:
    """
    Usage:
        injector = MemoryContextInjector(loop, store, MemoryContextFormatter(800))

        def on_context(turn):
            if turn is not None:
                history.append(turn)
            history.append(Turn("user", text))
            start_dialogue()

        injector.inject(text, on_context)
    """

    def __init__(
        self,
        loop,
        store: Optional[MemoryStore],
        formatter: Optional[MemoryContextFormatter] = None,
        top_k: int = 5,
        init_timeout_sec: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self._loop = loop
        self.store = store
        self.formatter = formatter or MemoryContextFormatter()
        self.top_k = top_k
        self.init_timeout_sec = init_timeout_sec
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.store is not None

    def inject(self, message: str, on_done: Callable[[Optional[Turn]], None]) -> None:
        """
        Retrieve context for message on a worker; on_done(turn or None) runs on the loop.

        on_done is always called exactly once.
        """
        if not self.enabled or not message.strip():
            self._loop.post(on_done, None)
            return
        self._loop.submit(
            self._build_context,
            message,
            callback=lambda future: self._on_context(future, on_done),
        )

    def _build_context(self, message: str) -> str:
        if not self.store.wait_until_ready(self.init_timeout_sec):
            logger.warning("memory_not_ready timeout=%.1fs", self.init_timeout_sec)
            return ""
        snippets = self.store.retrieve(message, self.top_k)
        if not snippets:
            return ""
        return self.formatter.format(snippets, preview=self.store.preview)

    def _on_context(self, future, on_done: Callable[[Optional[Turn]], None]) -> None:
        try:
            text = future.result()
        except Exception as e:
            logger.warning("memory_retrieval_failed %s", e)
            text = ""

        turn = None
        if text:
            turn = Turn(
                "tool",
                text,
                tool_call_id=f"memory_context_{int(self._clock() * 1000)}",
                name="memory_context",
            )
            logger.info("memory_context_injected chars=%d", len(text))
        on_done(turn)

    # =========================================================================
    # Extraction
    # =========================================================================

    def record_exchange(self, user_text: str, reply: str) -> None:
        """Best-effort memory extraction on a worker; failures are only logged."""
        if not self.enabled:
            return
        self._loop.submit(self.store.record_exchange, user_text, reply, callback=self._on_recorded)

    @staticmethod
    def _on_recorded(future) -> None:
        try:
            future.result()
        except Exception as e:
            logger.warning("memory_extraction_failed %s", e)
