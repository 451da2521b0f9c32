"""
Avatar Voice Agent - Tools
==========================

Tool definitions, executors and the registry the dialogue exposes to the LLM.

Features:
- ToolDefinition -> OpenAI-style function schema
- ToolExecutor base class with parameter validation
- ToolRegistry lookup by name
- Example executors: Home Assistant device control, SearXNG web search

Dependencies:
- requests (example executors)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import requests

logger = logging.getLogger(__name__)


# =============================================================================
# Definitions
# =============================================================================

_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


@dataclass
class ToolParameter:
    name: str
    type: str                                  # JSON schema type
    description: str
    required: bool = False
    enum: Optional[List[Any]] = None


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)
    category: str = "general"

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI function-calling schema for this tool."""
        properties = {}
        for param in self.parameters:
            prop: Dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum:
                prop["enum"] = list(param.enum)
            properties[param.name] = prop

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [p.name for p in self.parameters if p.required],
                    "additionalProperties": False,
                },
            },
        }


# =============================================================================
# Executors
# =============================================================================

class ToolExecutor:
    """
    Base class for a tool the model can call.

    Subclasses set `definition` and implement execute(). execute() returns
    the result text and raises on failure; the tool loop turns the
    exception into a ToolCallFailed outcome.
    """

    definition: ToolDefinition
    requires_confirmation: bool = False

    @property
    def name(self) -> str:
        return self.definition.name

    def validate_parameters(self, args: Dict[str, Any]) -> Optional[str]:
        """
        Check required parameters, types and enums.

        Returns:
            Error message, or None when the arguments are valid
        """
        if not isinstance(args, dict):
            return "Parameters must be a JSON object"

        for param in self.definition.parameters:
            if param.name not in args or args[param.name] is None:
                if param.required:
                    return f"Missing required parameter: {param.name}"
                continue

            value = args[param.name]
            expected = _JSON_TYPES.get(param.type)
            # bool is an int subclass; don't let True pass as a number
            if expected and (not isinstance(value, expected) or
                             (isinstance(value, bool) and param.type in ("integer", "number"))):
                return f"Parameter {param.name} must be of type {param.type}"
            if param.type == "string" and param.required and not value.strip():
                return f"Parameter {param.name} cannot be empty"
            if param.enum and value not in param.enum:
                allowed = ", ".join(str(v) for v in param.enum)
                return f"Invalid {param.name}: {value}. Valid values: {allowed}"
        return None

    def confirmation_message(self, args: Dict[str, Any]) -> str:
        return f"Allow {self.name}?"

    def execute(self, args: Dict[str, Any]) -> str:
        raise NotImplementedError


class ToolRegistry:
    """
    Name -> executor lookup.

    Usage:
        registry = ToolRegistry()
        registry.register(WebSearchTool("http://searx.local"))
        schema = registry.schema()
        executor = registry.get("searxng_search")
    """

    def __init__(self):
        self._executors: Dict[str, ToolExecutor] = {}

    def register(self, executor: ToolExecutor) -> None:
        if executor.name in self._executors:
            logger.warning("tool_replaced %s", executor.name)
        self._executors[executor.name] = executor
        logger.debug("tool_registered %s", executor.name)

    def get(self, name: str) -> Optional[ToolExecutor]:
        return self._executors.get(name)

    def names(self) -> List[str]:
        return list(self._executors)

    def schema(self) -> List[Dict[str, Any]]:
        return [e.definition.to_schema() for e in self._executors.values()]

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, name: str) -> bool:
        return name in self._executors


# =============================================================================
# Example Executors
# =============================================================================

class HomeAssistantTool(ToolExecutor):
    """
    Turns Home Assistant devices on and off.

    `entities` maps spoken device names to one or more Home Assistant entity
    ids, e.g. {"living_room_lights": ["light.living_room_1", "light.living_room_2"]}.
    A name that already looks like an entity id ("light.kitchen") is used as-is.
    """

    definition = ToolDefinition(
        name="home_assistant_control",
        description=(
            "Control home devices like lights, fans, switches. "
            "Use turn_on or turn_off actions with the device name."
        ),
        parameters=[
            ToolParameter("action", "string", "Action to perform: turn_on, turn_off",
                          required=True, enum=["turn_on", "turn_off"]),
            ToolParameter("entity_id", "string",
                          "Device to control (e.g., living_room_lights, bedroom_fan)",
                          required=True),
        ],
        category="home_automation",
    )

    def __init__(
        self,
        base_url: str,
        token: str,
        entities: Optional[Dict[str, List[str]]] = None,
        timeout_sec: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.entities = entities or {}
        self.timeout_sec = timeout_sec

    def _resolve(self, name: str) -> List[str]:
        if name in self.entities:
            return list(self.entities[name])
        if "." in name:
            return [name]
        return []

    def validate_parameters(self, args: Dict[str, Any]) -> Optional[str]:
        error = super().validate_parameters(args)
        if error:
            return error
        if not self._resolve(args["entity_id"]):
            available = ", ".join(sorted(self.entities)) or "none configured"
            return f"Unknown device: {args['entity_id']}. Available devices: {available}"
        return None

    def execute(self, args: Dict[str, Any]) -> str:
        action = args["action"]
        device = args["entity_id"]

        for entity_id in self._resolve(device):
            response = requests.post(
                f"{self.base_url}/api/services/homeassistant/{action}",
                json={"entity_id": entity_id},
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            logger.info("home_assistant_call action=%s entity=%s", action, entity_id)

        return f"Successfully {action.replace('_', ' ')} the {device.replace('_', ' ')}"


class WebSearchTool(ToolExecutor):
    """SearXNG web search returning a short text digest of the top results."""

    definition = ToolDefinition(
        name="searxng_search",
        description=(
            "Search the web for factual information, current events, news, research, "
            "or any topic that requires up-to-date information from the internet."
        ),
        parameters=[
            ToolParameter("query", "string", "Search query", required=True),
        ],
        category="search",
    )

    def __init__(self, base_url: str, max_results: int = 5, timeout_sec: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.max_results = max_results
        self.timeout_sec = timeout_sec

    def execute(self, args: Dict[str, Any]) -> str:
        query = args["query"].strip()
        response = requests.get(
            f"{self.base_url}/search",
            params={"q": query, "format": "json"},
            timeout=self.timeout_sec,
        )
        response.raise_for_status()
        data = response.json()

        lines = []
        for infobox in (data.get("infoboxes") or [])[:1]:
            if infobox.get("content"):
                lines.append(f"{infobox.get('infobox', 'Summary')}: {infobox['content']}")

        for i, result in enumerate((data.get("results") or [])[:self.max_results], 1):
            title = result.get("title", "").strip()
            content = (result.get("content") or "").strip()
            lines.append(f"{i}. {title}: {content}" if content else f"{i}. {title}")

        if not lines:
            return f"No search results found for: {query}"
        return f"Search results for '{query}':\n" + "\n".join(lines)
