"""
Tests: Component wiring (pipeline/components.py)

Nothing is started, so no audio device or remote service is touched.
"""

import pytest

from conftest import FakeAvatar
from core.tools import HomeAssistantTool, WebSearchTool
from pipeline.components import ComponentManager
from pipeline.config import AgentConfig
from pipeline.orchestrator import ConversationOrchestrator


@pytest.fixture
def manager():
    config = AgentConfig(
        enable_wake_word=False,
        searxng_url="http://searx:8080",
        home_assistant_url="http://ha:8123",
        home_assistant_token="token",
        max_tool_calls=4,
        tts_voice="nova",
    )
    components = ComponentManager(config, avatar=FakeAvatar())
    yield components
    components.stop()


def test_initialize_all(manager, capsys):
    manager.initialize_all()
    out = capsys.readouterr().out

    for step in range(1, 9):
        assert f"[{step}/8]" in out
    assert "Avatar Voice Agent Ready!" in out
    assert manager.wake_word is None
    assert manager.memory.enabled is False
    assert manager.tts.config.voice == "nova"
    assert manager.tool_loop.max_tool_calls == 4


def test_tools_registered_from_config(manager):
    manager.initialize_all()
    assert isinstance(manager.registry.get("home_assistant_control"), HomeAssistantTool)
    assert isinstance(manager.registry.get("searxng_search"), WebSearchTool)


def test_tools_disabled_registers_nothing():
    components = ComponentManager(
        AgentConfig(enable_wake_word=False, enable_tools=False, searxng_url="http://searx"),
        avatar=FakeAvatar(),
    )
    components.initialize_all()
    assert len(components.registry) == 0
    components.stop()


def test_initialize_all_is_idempotent(manager, capsys):
    manager.initialize_all()
    loop = manager.loop
    manager.initialize_all()
    assert manager.loop is loop


def test_build_orchestrator(manager):
    orchestrator = manager.build_orchestrator()
    assert isinstance(orchestrator, ConversationOrchestrator)
    assert orchestrator.config is manager.config
    assert not orchestrator.is_running


def test_lip_sync_drives_avatar_mouth(manager):
    manager.initialize_all()
    manager.lip_sync.reset()
    assert manager.avatar.mouth[-1] == 0.0
