"""
Avatar Voice Agent - Tool Call Loop
===================================

Runs one user turn against the dialogue service, executing the tools it
asks for and feeding the results back until it answers in plain text.

Flow per turn:
1. Fresh budget (call count + signatures already seen this turn)
2. Dialogue request with the history, system prompt and tool schema
3. Tool calls: append the assistant turn, then per call in order
   - same signature seen this turn   -> RepeatedToolCall (abort)
   - count reached max_tool_calls    -> ToolCallLimitExceeded (abort)
   - unknown tool / bad parameters / executor raised
       single call -> abort with UnknownTool / InvalidParameters / ToolCallFailed
       batch       -> "Error: ..." tool result, continue with the next call
   - confirmation required           -> ask the confirmation handler
   - success                          -> tool turn + ToolCallSucceeded
4. Continue the dialogue (no new user turn, follow-up prompt added)

Everything here runs on the control loop; dialogue requests and tool
executions run on its workers.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
import logging
import threading

from core.dialogue import (
    ConversationHistory,
    DialogueError,
    PlainText,
    ToolCall,
    ToolCalls,
    Turn,
)
from core.tools import ToolExecutor, ToolRegistry
from pipeline.prompts import SystemPromptBuilder

logger = logging.getLogger(__name__)


# =============================================================================
# Data
# =============================================================================

@dataclass
class ToolCallCycleBudget:
    """Per-turn guard state. Never shared between turns."""
    tool_call_count: int = 0
    seen_calls: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    name: str
    result_text: str


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class NoToolCalls:
    text: str


@dataclass(frozen=True)
class ToolCallSucceeded:
    id: str
    name: str
    result: str
    clean_text: str = ""


@dataclass(frozen=True)
class ToolCallFailed:
    name: str
    error: str


@dataclass(frozen=True)
class MultipleToolCallsComplete:
    results: Tuple[ToolResult, ...]
    clean_text: str = ""


@dataclass(frozen=True)
class ToolCallLimitExceeded:
    partial_results: Tuple[ToolResult, ...]


@dataclass(frozen=True)
class RepeatedToolCall:
    name: str


@dataclass(frozen=True)
class UnknownTool:
    name: str


@dataclass(frozen=True)
class InvalidParameters:
    name: str
    error: str


@dataclass(frozen=True)
class ConfirmationRequired:
    name: str
    message: str
    confirm: Callable[[], None]
    cancel: Callable[[], None]


@dataclass(frozen=True)
class DialogueFailed:
    message: str


ToolLoopOutcome = Union[
    NoToolCalls,
    ToolCallFailed,
    ToolCallLimitExceeded,
    RepeatedToolCall,
    UnknownTool,
    InvalidParameters,
    DialogueFailed,
]

CANCELLED_BY_USER = "Cancelled by user"
NOT_EXECUTED = "Not executed"


def auto_confirm(event: ConfirmationRequired) -> None:
    """Default confirmation handler: every tool is allowed."""
    event.confirm()


# =============================================================================
# Loop
# =============================================================================

class _Batch:
    """Calls from one dialogue response, processed in order."""

    def __init__(self, calls: Tuple[ToolCall, ...], clean_text: str):
        self.calls = calls
        self.clean_text = clean_text
        self.index = 0
        self.results: List[ToolResult] = []

    @property
    def single(self) -> bool:
        return len(self.calls) == 1

    @property
    def current(self) -> ToolCall:
        return self.calls[self.index]


class ToolCallCycle:
    """One running turn. cancel() makes every later result a no-op."""

    def __init__(
        self,
        history: ConversationHistory,
        on_complete: Callable[[ToolLoopOutcome], None],
        on_event: Optional[Callable[[Any], None]],
    ):
        self.history = history
        self.on_complete = on_complete
        self.on_event = on_event
        self.budget = ToolCallCycleBudget()
        self.results: List[ToolResult] = []
        self.requests = 0
        self.done = False
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.done or self.cancelled)


class ToolCallLoop:
    """
    Bounded tool-calling conversation for one user turn.

    Usage:
        tool_loop = ToolCallLoop(loop, dialogue, registry, prompts, max_tool_calls=3)
        history.append(Turn("user", text))
        tool_loop.run(history, on_complete=handle_outcome)
    """

    def __init__(
        self,
        loop,
        client,
        registry: ToolRegistry,
        prompts: SystemPromptBuilder,
        max_tool_calls: int = 3,
        enable_tools: bool = True,
        confirmation_handler: Callable[[ConfirmationRequired], None] = auto_confirm,
    ):
        if max_tool_calls < 1:
            raise ValueError("max_tool_calls must be at least 1")
        self._loop = loop
        self._client = client
        self.registry = registry
        self.prompts = prompts
        self.max_tool_calls = max_tool_calls
        self.enable_tools = enable_tools
        self.confirmation_handler = confirmation_handler

    @property
    def _tools_on(self) -> bool:
        return self.enable_tools and len(self.registry) > 0

    # =========================================================================
    # Entry
    # =========================================================================

    def run(
        self,
        history: ConversationHistory,
        on_complete: Callable[[ToolLoopOutcome], None],
        on_event: Optional[Callable[[Any], None]] = None,
    ) -> ToolCallCycle:
        """
        Start the turn. The user turn must already be in history.

        Returns:
            The running cycle (cancel() abandons it)
        """
        cycle = ToolCallCycle(history, on_complete, on_event)
        self._request(cycle, self.prompts.build(include_tools=self._tools_on))
        return cycle

    # =========================================================================
    # Dialogue
    # =========================================================================

    def _request(self, cycle: ToolCallCycle, system_instructions: str) -> None:
        cycle.requests += 1
        schema = self.registry.schema() if self._tools_on else None
        logger.debug("tool_loop_request n=%d tool_calls=%d", cycle.requests, cycle.budget.tool_call_count)
        self._loop.submit(
            self._client.send,
            cycle.history.turns,
            system_instructions,
            schema,
            callback=lambda future: self._on_dialogue(cycle, future),
        )

    def _on_dialogue(self, cycle: ToolCallCycle, future) -> None:
        if not cycle.active:
            return
        try:
            result = future.result()
        except Exception as e:
            logger.exception("dialogue_worker_failed")
            self._finish(cycle, DialogueFailed(f"Dialogue error: {e}"))
            return

        if isinstance(result, DialogueError):
            self._finish(cycle, DialogueFailed(result.message))
        elif isinstance(result, PlainText):
            cycle.history.append(Turn("assistant", result.text))
            self._finish(cycle, NoToolCalls(result.text))
        elif isinstance(result, ToolCalls):
            cycle.history.append(Turn("assistant", result.clean_text, tool_calls=list(result.calls)))
            logger.info("tool_calls_requested %s", [c.name for c in result.calls])
            self._process(cycle, _Batch(tuple(result.calls), result.clean_text))
        else:
            self._finish(cycle, DialogueFailed(f"Unexpected dialogue result: {result!r}"))

    # =========================================================================
    # Tool processing
    # =========================================================================

    def _process(self, cycle: ToolCallCycle, batch: _Batch) -> None:
        """Handle batch.current, or continue the dialogue when the batch is done."""
        if not cycle.active:
            return
        if batch.index >= len(batch.calls):
            self._batch_done(cycle, batch)
            return

        call = batch.current
        signature = call.signature
        if signature in cycle.budget.seen_calls:
            logger.warning("tool_call_repeated %s", call.name)
            self._abort(cycle, batch, RepeatedToolCall(call.name))
            return
        if cycle.budget.tool_call_count >= self.max_tool_calls:
            logger.warning("tool_call_limit_reached %d", self.max_tool_calls)
            self._abort(cycle, batch, ToolCallLimitExceeded(tuple(cycle.results)))
            return

        cycle.budget.seen_calls.add(signature)
        # Every dispatched call counts, failed ones included
        cycle.budget.tool_call_count += 1

        executor = self.registry.get(call.name)
        if executor is None:
            if batch.single:
                self._abort(cycle, batch, UnknownTool(call.name))
            else:
                self._record(cycle, batch, call, f"Error: Unknown tool {call.name}")
                self._advance(cycle, batch)
            return

        try:
            args = call.arguments
            error = executor.validate_parameters(args)
        except ValueError as e:
            args, error = {}, str(e)
        if error:
            if batch.single:
                self._abort(cycle, batch, InvalidParameters(call.name, error))
            else:
                self._record(cycle, batch, call, f"Error: {error}")
                self._advance(cycle, batch)
            return

        if executor.requires_confirmation:
            self._confirm(cycle, batch, call, executor, args)
        else:
            self._execute(cycle, batch, call, executor, args)

    def _confirm(self, cycle, batch, call: ToolCall, executor: ToolExecutor, args: Dict[str, Any]) -> None:
        answered = threading.Event()

        def confirm():
            if not answered.is_set():
                answered.set()
                self._loop.post(self._execute, cycle, batch, call, executor, args)

        def cancel():
            if not answered.is_set():
                answered.set()
                self._loop.post(self._cancelled, cycle, batch, call)

        event = ConfirmationRequired(call.name, executor.confirmation_message(args), confirm, cancel)
        self._emit(cycle, event)
        self.confirmation_handler(event)

    def _cancelled(self, cycle: ToolCallCycle, batch: _Batch, call: ToolCall) -> None:
        if not cycle.active:
            return
        logger.info("tool_call_cancelled %s", call.name)
        self._record(cycle, batch, call, CANCELLED_BY_USER)
        self._advance(cycle, batch)

    def _execute(self, cycle, batch, call: ToolCall, executor: ToolExecutor, args: Dict[str, Any]) -> None:
        if not cycle.active:
            return
        logger.info("tool_call_executing %s", call.name)
        self._loop.submit(
            executor.execute,
            args,
            callback=lambda future: self._on_executed(cycle, batch, call, future),
        )

    def _on_executed(self, cycle: ToolCallCycle, batch: _Batch, call: ToolCall, future) -> None:
        if not cycle.active:
            return
        try:
            result = future.result()
        except Exception as e:
            logger.warning("tool_call_failed %s: %s", call.name, e)
            if batch.single:
                self._abort(cycle, batch, ToolCallFailed(call.name, f"Tool execution failed: {e}"))
            else:
                self._record(cycle, batch, call, f"Error: {e}")
                self._emit(cycle, ToolCallFailed(call.name, str(e)))
                self._advance(cycle, batch)
            return

        text = "" if result is None else str(result)
        self._record(cycle, batch, call, text)
        self._emit(cycle, ToolCallSucceeded(call.id, call.name, text, batch.clean_text))
        self._advance(cycle, batch)

    def _record(self, cycle: ToolCallCycle, batch: _Batch, call: ToolCall, text: str) -> None:
        """Append the tool-role turn and remember the result."""
        cycle.history.append(Turn("tool", text, tool_call_id=call.id, name=call.name))
        result = ToolResult(call.id, call.name, text)
        cycle.results.append(result)
        batch.results.append(result)

    def _advance(self, cycle: ToolCallCycle, batch: _Batch) -> None:
        batch.index += 1
        self._process(cycle, batch)

    def _batch_done(self, cycle: ToolCallCycle, batch: _Batch) -> None:
        if not batch.single:
            self._emit(cycle, MultipleToolCallsComplete(tuple(batch.results), batch.clean_text))
        last_tool = batch.calls[-1].name
        self._request(cycle, self.prompts.build_follow_up(last_tool, include_tools=self._tools_on))

    # =========================================================================
    # Output
    # =========================================================================

    @staticmethod
    def _emit(cycle: ToolCallCycle, event: Any) -> None:
        if cycle.on_event is not None:
            cycle.on_event(event)

    def _abort(self, cycle: ToolCallCycle, batch: _Batch, outcome: ToolLoopOutcome) -> None:
        """Finish early. Calls left in the batch get a NOT_EXECUTED tool turn so history stays answerable."""
        for call in batch.calls[batch.index:]:
            cycle.history.append(Turn("tool", NOT_EXECUTED, tool_call_id=call.id, name=call.name))
        self._finish(cycle, outcome)

    def _finish(self, cycle: ToolCallCycle, outcome: ToolLoopOutcome) -> None:
        cycle.done = True
        logger.info("tool_loop_finished outcome=%s requests=%d tool_calls=%d",
                    type(outcome).__name__, cycle.requests, cycle.budget.tool_call_count)
        self._emit(cycle, outcome)
        cycle.on_complete(outcome)
