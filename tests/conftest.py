"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.tools import tool

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from agentcycle.config.agent_config import AgentConfig  # noqa: E402
from agentcycle.graph.plan import Plan, Step, StepType, ToolSpec  # noqa: E402
from agentcycle.graph.state import SessionState  # noqa: E402
from agentcycle.models.client import ModelClient  # noqa: E402
from agentcycle.tools.invoker import ToolInvoker  # noqa: E402


@tool
def lookup(query: str) -> str:
    """Look up a fact about the query."""
    return f"Fact about {query}"


@tool
def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


def _fake_model(*responses):
    model = Mock(spec=ModelClient)
    model.invoke = AsyncMock(side_effect=list(responses))
    return model


@pytest.fixture
def fake_model():
    """Factory for ModelClient doubles returning `responses` in order (exceptions are raised)."""
    return _fake_model


@pytest.fixture
def make_config():
    """Factory for AgentConfig with test-friendly defaults."""
    def _make(**overrides):
        values = {"name": "tester", "ltm_enabled": False}
        values.update(overrides)
        return AgentConfig(**values)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def invoker():
    return ToolInvoker([lookup, add], timeout=5.0)


@pytest.fixture
def two_step_plan():
    return Plan(
        summary="Answer the question",
        steps=[
            Step(step_number=1, step_name="Research", description="Collect facts about Paris"),
            Step(step_number=2, step_name="Answer", description="Write the final answer"),
        ],
    )


@pytest.fixture
def tools_step_plan():
    return Plan(
        summary="Look something up",
        steps=[
            Step(
                step_number=1,
                step_name="Lookup",
                description="Look up Paris",
                type=StepType.TOOLS,
                tools=[ToolSpec(name="lookup", description="Find facts", inputs={"query": "Paris"})],
            ),
        ],
    )


@pytest.fixture
def make_state():
    """Factory for SessionState with an optional active plan or history."""
    def _make(objective="What is the capital of France?", **fields):
        state = SessionState.initial(objective, stm_capacity=5, session_id="session-1")
        for key, value in fields.items():
            setattr(state, key, value)
        return state
    return _make
