"""Utilities for agentcycle."""

from .logging_utils import (
    get_logger,
    log_error,
    log_node_entry,
    log_node_exit,
    log_plan_created,
    log_routing_decision,
    log_step_execution,
    log_tool_call,
    log_tool_result,
    setup_logging,
)
from .error_handler import (
    AgentCycleError,
    ConfigurationError,
    IterationCeilingReached,
    ModelInvocationError,
    StructuredOutputError,
    ToolExecutionError,
    ToolExecutionTimeout,
    ValidationFailure,
    handle_model_error,
    is_token_limit_error,
    with_error_boundary,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_error",
    "log_node_entry",
    "log_node_exit",
    "log_plan_created",
    "log_routing_decision",
    "log_step_execution",
    "log_tool_call",
    "log_tool_result",
    "AgentCycleError",
    "ConfigurationError",
    "IterationCeilingReached",
    "ModelInvocationError",
    "StructuredOutputError",
    "ToolExecutionError",
    "ToolExecutionTimeout",
    "ValidationFailure",
    "handle_model_error",
    "is_token_limit_error",
    "with_error_boundary",
]
