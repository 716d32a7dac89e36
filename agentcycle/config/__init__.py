"""Configuration exports."""

from .agent_config import (
    AgentConfig,
    AgentMode,
    ExecutionMode,
    PlannerMode,
    build_agent_config,
    load_agent_config,
    validate_agent_config,
)
from .settings import Settings, get_settings

__all__ = [
    "AgentConfig",
    "AgentMode",
    "ExecutionMode",
    "PlannerMode",
    "Settings",
    "build_agent_config",
    "get_settings",
    "load_agent_config",
    "validate_agent_config",
]
