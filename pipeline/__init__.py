# Avatar Voice Agent - Pipeline Package

from .config import AgentConfig, ConversationState
from .orchestrator import ConversationListener, ConversationOrchestrator, main

__all__ = [
    "AgentConfig",
    "ConversationState",
    "ConversationListener",
    "ConversationOrchestrator",
    "main",
]
