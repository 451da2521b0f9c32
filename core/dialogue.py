"""
Avatar Voice Agent - Dialogue Client
====================================

Multi-turn chat with an LLM service that may request tool calls.

Features:
- Ollama /api/chat (stream: false) or OpenAI-compatible /v1/chat/completions
- Native tool calls, with a fallback parser for JSON tool calls embedded
  in the reply text
- Every failure comes back as a DialogueError value, nothing is raised

Dependencies:
- requests
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union
import json
import logging
import re
import time
import uuid

import requests

logger = logging.getLogger(__name__)


# =============================================================================
# Conversation model
# =============================================================================

@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments_json: str

    @property
    def arguments(self) -> Dict[str, Any]:
        """
        Parsed arguments.

        Raises:
            ValueError: if the arguments are not a JSON object
        """
        try:
            value = json.loads(self.arguments_json) if self.arguments_json.strip() else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"Arguments are not valid JSON: {e.msg}") from e
        if not isinstance(value, dict):
            raise ValueError("Arguments must be a JSON object")
        return value

    @property
    def signature(self) -> str:
        """Name plus canonical arguments; equal signatures mean a repeated call."""
        try:
            canonical = json.dumps(self.arguments, sort_keys=True, separators=(",", ":"))
        except ValueError:
            canonical = self.arguments_json.strip()
        return f"{self.name}:{canonical}"

    @classmethod
    def create(cls, name: str, arguments: Any, call_id: Optional[str] = None) -> "ToolCall":
        """Build a call from a name and a dict (or an already-serialized string)."""
        if isinstance(arguments, str):
            arguments_json = arguments
        else:
            arguments_json = json.dumps(arguments if arguments is not None else {})
        return cls(call_id or f"call_{uuid.uuid4().hex[:12]}", name, arguments_json)


@dataclass
class Turn:
    """One entry of the conversation history."""
    role: str                                   # "user", "assistant" or "tool"
    content: str
    tool_call_id: Optional[str] = None          # tool turns only
    tool_calls: Optional[List[ToolCall]] = None  # assistant turns that requested tools
    name: Optional[str] = None                  # tool name on tool turns
    timestamp: float = field(default_factory=time.time)


class ConversationHistory:
    """
    Append-only turn list owned by one session.

    Usage:
        history = ConversationHistory()
        history.append(Turn("user", "What's the weather?"))
        for turn in history:
            ...
        history.clear()   # new conversation
    """

    def __init__(self):
        self._turns: List[Turn] = []

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def clear(self) -> None:
        self._turns = []

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def last(self) -> Optional[Turn]:
        return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class ToolCalls:
    calls: Tuple[ToolCall, ...]
    clean_text: str = ""       # Reply text with tool-call JSON removed


@dataclass(frozen=True)
class DialogueError:
    message: str


DialogueResult = Union[PlainText, ToolCalls, DialogueError]


# =============================================================================
# Embedded tool-call parser
# =============================================================================

class ToolCallParser:
    """
    Finds tool calls that a model wrote into its text instead of using
    native tool calling.

    Accepted shapes:
        {"tool": "name", "parameters": {...}}
        {"name": "name", "arguments": {...} or "<json>"}
        {"function": "name", "args": {...}}
    """

    SHAPES = (
        ("tool", "parameters"),
        ("name", "arguments"),
        ("function", "args"),
    )

    _WHITESPACE = re.compile(r"\s+")

    @staticmethod
    def _json_objects(text: str) -> Iterator[Tuple[int, int]]:
        """Yield (start, end) spans of balanced top-level {...} blocks."""
        i = 0
        while i < len(text):
            if text[i] != "{":
                i += 1
                continue
            depth = 0
            in_string = False
            escaped = False
            end = None
            for j in range(i, len(text)):
                ch = text[j]
                if in_string:
                    if escaped:
                        escaped = False
                    elif ch == "\\":
                        escaped = True
                    elif ch == '"':
                        in_string = False
                    continue
                if ch == '"':
                    in_string = True
                elif ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        end = j + 1
                        break
            if end is None:
                # Unclosed brace; a later block may still be complete
                i += 1
                continue
            yield i, end
            i = end

    def _match(self, data: Any) -> Optional[ToolCall]:
        if not isinstance(data, dict):
            return None
        for name_key, args_key in self.SHAPES:
            name = data.get(name_key)
            if isinstance(name, str) and name and args_key in data:
                return ToolCall.create(name, data[args_key])
        return None

    def _find(self, text: str) -> List[Tuple[int, int, ToolCall]]:
        found = []
        for start, end in self._json_objects(text):
            try:
                data = json.loads(text[start:end])
            except json.JSONDecodeError:
                continue
            call = self._match(data)
            if call is not None:
                found.append((start, end, call))
        return found

    def parse(self, text: str) -> List[ToolCall]:
        """Extract tool calls from text (empty list if none)."""
        if not text:
            return []
        return [call for _, _, call in self._find(text)]

    def clean_text(self, text: str) -> str:
        """Text with tool-call JSON blocks removed and whitespace collapsed."""
        if not text:
            return ""
        pieces = []
        cursor = 0
        for start, end, _ in self._find(text):
            pieces.append(text[cursor:start])
            cursor = end
        pieces.append(text[cursor:])
        cleaned = "".join(pieces).replace("```json", " ").replace("```", " ")
        return self._WHITESPACE.sub(" ", cleaned).strip()


# =============================================================================
# Client
# =============================================================================

@dataclass
class DialogueConfig:
    backend: str = "ollama"                 # "ollama" or "openai"
    base_url: str = "http://localhost:11434"
    model: str = "llama3.1"
    api_key: str = ""
    timeout_sec: float = 60.0
    temperature: float = 0.7


class DialogueClient:
    """
    Sends the conversation to the LLM service.

    Usage:
        client = DialogueClient(DialogueConfig(model="llama3.1"))
        result = client.send(history, system_prompt, registry.schema())

        if isinstance(result, PlainText):
            speak(result.text)
        elif isinstance(result, ToolCalls):
            run(result.calls)
        else:
            report(result.message)
    """

    def __init__(self, config: Optional[DialogueConfig] = None):
        self.config = config or DialogueConfig()
        if self.config.backend not in ("ollama", "openai"):
            raise ValueError(f"Unknown LLM backend: {self.config.backend}")
        self.parser = ToolCallParser()

        # Statistics
        self.request_count = 0
        self.error_count = 0
        self.total_latency = 0.0

    # =========================================================================
    # Request building
    # =========================================================================

    @property
    def url(self) -> str:
        base = self.config.base_url.rstrip("/")
        if self.config.backend == "ollama":
            return f"{base}/api/chat"
        return f"{base}/v1/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _serialize_call(self, call: ToolCall) -> Dict[str, Any]:
        if self.config.backend == "ollama":
            try:
                arguments = call.arguments
            except ValueError:
                arguments = {}
            return {"function": {"name": call.name, "arguments": arguments}}
        return {
            "id": call.id,
            "type": "function",
            "function": {"name": call.name, "arguments": call.arguments_json},
        }

    def build_messages(self, history: Sequence[Turn], system_instructions: str) -> List[Dict[str, Any]]:
        """Convert turns into the backend's message list."""
        messages: List[Dict[str, Any]] = []
        if system_instructions:
            messages.append({"role": "system", "content": system_instructions})

        requested_ids = set()
        for turn in history:
            if turn.role == "assistant" and turn.tool_calls:
                requested_ids.update(call.id for call in turn.tool_calls)
                messages.append({
                    "role": "assistant",
                    "content": turn.content or "",
                    "tool_calls": [self._serialize_call(c) for c in turn.tool_calls],
                })
            elif turn.role == "tool":
                if self.config.backend == "openai" and turn.tool_call_id not in requested_ids:
                    # Injected context with no matching request: OpenAI rejects orphan tool messages
                    messages.append({"role": "system", "content": turn.content})
                    continue
                message = {"role": "tool", "content": turn.content}
                if turn.tool_call_id:
                    message["tool_call_id"] = turn.tool_call_id
                if turn.name:
                    message["name"] = turn.name
                messages.append(message)
            else:
                messages.append({"role": turn.role, "content": turn.content})
        return messages

    def build_payload(
        self,
        history: Sequence[Turn],
        system_instructions: str,
        tool_schema: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": self.build_messages(history, system_instructions),
            "stream": False,
        }
        if self.config.backend == "ollama":
            payload["options"] = {"temperature": self.config.temperature}
        else:
            payload["temperature"] = self.config.temperature
        if tool_schema:
            payload["tools"] = tool_schema
        return payload

    # =========================================================================
    # Response parsing
    # =========================================================================

    def _parse_native_calls(self, raw_calls: Any) -> List[ToolCall]:
        if not isinstance(raw_calls, list):
            return []
        calls = []
        for raw in raw_calls:
            if not isinstance(raw, dict):
                continue
            function = raw.get("function")
            if not isinstance(function, dict) or not isinstance(function.get("name"), str) or not function["name"]:
                continue
            calls.append(ToolCall.create(function["name"], function.get("arguments"), raw.get("id")))
        return calls

    @staticmethod
    def _content_text(content: Any) -> Optional[str]:
        """Message content as text; list-form content keeps its text parts."""
        if content is None:
            return ""
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts = [
                part["text"] for part in content
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            ]
            return "".join(parts).strip()
        return None

    def parse_response(self, data: Dict[str, Any]) -> DialogueResult:
        """Turn a decoded response body into a DialogueResult."""
        if self.config.backend == "ollama":
            message = data.get("message") or {}
        else:
            choices = data.get("choices") or []
            if not isinstance(choices, list) or not choices:
                return DialogueError("Invalid response: no choices")
            if not isinstance(choices[0], dict):
                return DialogueError("Invalid response: malformed choice")
            message = choices[0].get("message") or {}

        if not isinstance(message, dict):
            return DialogueError("Invalid response: malformed message")
        content = self._content_text(message.get("content"))
        if content is None:
            return DialogueError("Invalid response: malformed content")

        native = self._parse_native_calls(message.get("tool_calls"))
        if native:
            return ToolCalls(tuple(native), content)

        embedded = self.parser.parse(content)
        if embedded:
            return ToolCalls(tuple(embedded), self.parser.clean_text(content))

        if not content:
            return DialogueError("Empty response from AI")
        return PlainText(content)

    # =========================================================================
    # Send
    # =========================================================================

    def send(
        self,
        history: Sequence[Turn],
        system_instructions: str,
        tool_schema: Optional[List[Dict[str, Any]]] = None,
    ) -> DialogueResult:
        """
        Send one request.

        Args:
            history: Conversation turns, oldest first
            system_instructions: System prompt for this request
            tool_schema: OpenAI-style function list (None = no tools)

        Returns:
            PlainText, ToolCalls or DialogueError
        """
        payload = self.build_payload(history, system_instructions, tool_schema)
        start = time.time()
        self.request_count += 1

        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_sec,
            )
        except requests.RequestException as e:
            self.error_count += 1
            logger.warning("dialogue_network_error %s", json.dumps({"error": str(e)}))
            return DialogueError(f"Network error: {e}")

        latency = time.time() - start
        self.total_latency += latency

        if not 200 <= response.status_code < 300:
            self.error_count += 1
            body = (response.text or "")[:200]
            logger.warning("dialogue_api_error %s", json.dumps({"status": response.status_code, "body": body}))
            return DialogueError(f"API error: {response.status_code} {body}".strip())

        try:
            data = response.json()
        except ValueError as e:
            self.error_count += 1
            return DialogueError(f"Invalid response: {e}")
        if not isinstance(data, dict):
            self.error_count += 1
            return DialogueError("Invalid response: expected a JSON object")

        result = self.parse_response(data)
        logger.info("dialogue_response %s", json.dumps({
            "type": type(result).__name__,
            "latency_ms": round(latency * 1000),
            "turns": len(history),
        }))
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get request statistics."""
        ok = self.request_count - self.error_count
        return {
            "requests": self.request_count,
            "errors": self.error_count,
            "avg_latency_ms": (self.total_latency / ok * 1000) if ok > 0 else 0.0,
        }
