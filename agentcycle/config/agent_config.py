"""Per-session agent configuration consumed by routers and nodes."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentcycle.utils.error_handler import ConfigurationError

if TYPE_CHECKING:
    from .settings import Settings

LOGGER = logging.getLogger("agentcycle.config")


class AgentMode(str, Enum):
    INTERACTIVE = "interactive"
    AUTONOMOUS = "autonomous"
    HYBRID = "hybrid"


class ExecutionMode(str, Enum):
    REACTIVE = "reactive"
    PLANNING = "planning"


class PlannerMode(str, Enum):
    ACTIVATED = "activated"
    DISABLED = "disabled"
    AUTOMATIC = "automatic"


class AgentConfig(BaseModel):
    """Read-only session configuration.

    Routers are pure functions of `(state, config)`, so this model is frozen.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "agentcycle"
    description: str = ""
    objectives: List[str] = Field(default_factory=list)

    mode: AgentMode = AgentMode.INTERACTIVE
    execution_mode: ExecutionMode = ExecutionMode.PLANNING
    planner_mode: PlannerMode = PlannerMode.ACTIVATED

    max_graph_steps: int = 100
    max_retries: int = 3
    tool_timeout: float = 30.0
    model_timeout: float = 45.0
    tool_output_max_chars: int = 100_000

    short_term_memory: int = 5
    memory_size: int = 20
    ltm_enabled: bool = True
    ltm_top_k: int = 4
    similarity_threshold: float = 0.0

    human_in_the_loop: bool = False
    plan_validation_enabled: bool = True
    task_verification_threshold: int = 70

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "AgentConfig":
        """Build a validated config from environment settings plus explicit overrides."""
        values: Dict[str, Any] = {
            "name": settings.agent.name,
            "mode": settings.agent.mode,
            "execution_mode": settings.agent.execution_mode,
            "planner_mode": settings.agent.planner_mode,
            "human_in_the_loop": settings.agent.human_in_the_loop,
            "plan_validation_enabled": settings.agent.plan_validation_enabled,
            "max_graph_steps": settings.governance.max_graph_steps,
            "max_retries": settings.governance.max_retries,
            "tool_timeout": settings.governance.tool_timeout,
            "model_timeout": settings.governance.model_timeout,
            "tool_output_max_chars": settings.governance.tool_output_max_chars,
            "short_term_memory": settings.memory.short_term_memory,
            "memory_size": settings.memory.memory_size,
            "ltm_enabled": settings.memory.ltm_enabled,
            "ltm_top_k": settings.memory.ltm_top_k,
            "similarity_threshold": settings.memory.similarity_threshold,
        }
        values.update(overrides)
        return build_agent_config(values)


def validate_agent_config(config: AgentConfig) -> AgentConfig:
    """Reject configurations that cannot run. Raises ConfigurationError."""
    positive = {
        "max_graph_steps": config.max_graph_steps,
        "max_retries": config.max_retries,
        "tool_timeout": config.tool_timeout,
        "model_timeout": config.model_timeout,
        "tool_output_max_chars": config.tool_output_max_chars,
        "short_term_memory": config.short_term_memory,
        "memory_size": config.memory_size,
        "ltm_top_k": config.ltm_top_k,
    }
    for field_name, value in positive.items():
        if value <= 0:
            raise ConfigurationError(f"{field_name} must be positive, got {value}")

    if not 0.0 <= config.similarity_threshold <= 1.0:
        raise ConfigurationError(
            f"similarity_threshold must be between 0 and 1, got {config.similarity_threshold}"
        )
    if not 0 <= config.task_verification_threshold <= 100:
        raise ConfigurationError(
            f"task_verification_threshold must be between 0 and 100, got {config.task_verification_threshold}"
        )
    if config.execution_mode == ExecutionMode.REACTIVE and config.mode != AgentMode.INTERACTIVE:
        raise ConfigurationError(
            f"Reactive execution is only supported for interactive agents, not {config.mode.value}"
        )
    if config.mode == AgentMode.HYBRID and not config.human_in_the_loop:
        raise ConfigurationError("Hybrid agents require human_in_the_loop to be enabled")
    return config


def build_agent_config(values: Dict[str, Any]) -> AgentConfig:
    """Validate raw values into an AgentConfig, surfacing errors as ConfigurationError."""
    try:
        config = AgentConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid agent configuration: {e}") from e
    return validate_agent_config(config)


def load_agent_config(path: Union[str, Path], settings: Optional["Settings"] = None) -> AgentConfig:
    """Load an agent profile YAML and overlay it on environment settings.

    Example profile:
        name: market-watcher
        description: Tracks prices and reports anomalies
        objectives:
          - Report daily price moves above 5%
        mode: autonomous
        max_graph_steps: 200
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Agent profile not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Agent profile {path} must be a mapping")

    LOGGER.info(f"Loaded agent profile '{data.get('name', path.stem)}' from {path}")
    if settings is None:
        return build_agent_config(data)
    return AgentConfig.from_settings(settings, **data)
