"""
Avatar Voice Agent - System Prompts
===================================

Builds the system instructions sent with every dialogue request, and the
extra instruction added when the model continues after a tool result.
"""

from datetime import datetime
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


GLOBAL_GUIDELINES = (
    "Stay in character at all times and speak from your own perspective. "
    "Express feelings naturally; never say things like 'as an AI'. "
    "Your replies are spoken aloud, so avoid lists, markdown, emoji and URLs. "
    "Be accurate about facts and politely correct the user when they are wrong."
)

TOOL_GUIDELINES = (
    "Respond naturally to conversation, jokes, questions and casual chat. "
    "Use a tool when it gives better or more current information than you have, "
    "such as web searches, weather, device control or calendar changes. "
    "Never mention tools, functions or schemas to the user; just answer."
)

SEARCH_FOLLOW_UP = (
    "Based on the search results above, please provide a helpful and direct answer "
    "to the user's question. Use the information from the search results to give a "
    "natural, conversational response."
)
DEVICE_FOLLOW_UP = (
    "Please confirm that the requested device action has been completed successfully "
    "in a natural, conversational way."
)
CALENDAR_FOLLOW_UP = (
    "Please confirm that the calendar event has been created successfully "
    "in a natural, conversational way."
)
WEATHER_FOLLOW_UP = (
    "Based on the weather information above, please provide a helpful summary of the "
    "current weather conditions in a natural, conversational way."
)
DEFAULT_FOLLOW_UP = (
    "Based on the information above, please provide a helpful response to the "
    "user's question in a natural, conversational way."
)

FOLLOW_UP_PROMPTS = {
    "searxng_search": SEARCH_FOLLOW_UP,
    "search_wikipedia": SEARCH_FOLLOW_UP,
    "search": SEARCH_FOLLOW_UP,
    "home_assistant_control": DEVICE_FOLLOW_UP,
    "set_temperature": DEVICE_FOLLOW_UP,
    "create_event": CALENDAR_FOLLOW_UP,
    "get_current_weather": WEATHER_FOLLOW_UP,
}


def follow_up_prompt(tool_name: Optional[str]) -> str:
    """Instruction appended to the system prompt after a tool result."""
    return FOLLOW_UP_PROMPTS.get((tool_name or "").lower(), DEFAULT_FOLLOW_UP)


class SystemPromptBuilder:
    """
    Joins date/time, personality, guidelines and (optionally) tool usage.

    Usage:
        builder = SystemPromptBuilder(config.personality)
        prompt = builder.build(include_tools=True)
    """

    def __init__(self, personality: str, clock: Callable[[], datetime] = None):
        self.personality = personality
        self._clock = clock or (lambda: datetime.now().astimezone())

    def build(self, include_tools: bool = False) -> str:
        parts = [
            f"Current date and time: {self._clock().isoformat(timespec='seconds')}",
            self.personality.strip(),
            GLOBAL_GUIDELINES,
        ]
        if include_tools:
            parts.append(TOOL_GUIDELINES)

        prompt = "\n\n".join(p for p in parts if p)
        logger.debug("system_prompt_built tools=%s length=%d", include_tools, len(prompt))
        return prompt

    def build_follow_up(self, tool_name: Optional[str], include_tools: bool = True) -> str:
        """System prompt for a continuation request after tool_name ran."""
        return f"{self.build(include_tools)}\n\n{follow_up_prompt(tool_name)}"
