"""Error taxonomy and node error boundaries for the orchestration graph."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Callable

from langchain_core.messages import AIMessage

LOGGER = logging.getLogger("agentcycle.errors")

TOKEN_LIMIT_MARKERS = ("token limit", "tokens exceed", "context length", "context_length")


class AgentCycleError(Exception):
    """Base exception for orchestration errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationFailure(AgentCycleError):
    """A plan or step was judged invalid."""
    pass


class ToolExecutionTimeout(AgentCycleError):
    """A tool call did not settle before its timeout."""

    def __init__(self, message: str, timeout: float, tool_names=None, user_message: str = None):
        super().__init__(message, user_message)
        self.timeout = timeout
        self.tool_names = list(tool_names or [])


class ToolExecutionError(AgentCycleError):
    """Error during tool execution."""
    pass


class ModelInvocationError(AgentCycleError):
    """Error during model invocation."""
    pass


class StructuredOutputError(ModelInvocationError):
    """The model returned output that does not match the requested schema."""
    pass


class ConfigurationError(AgentCycleError):
    """Missing or invalid configuration. Never retried."""
    pass


class IterationCeilingReached(AgentCycleError):
    """The session reached its graph step ceiling."""

    def __init__(self, current_step: int, max_steps: int):
        super().__init__(
            f"Iteration ceiling reached ({current_step}/{max_steps})",
            user_message=f"Reached the maximum of {max_steps} graph steps. Ending workflow.",
        )
        self.current_step = current_step
        self.max_steps = max_steps


def is_token_limit_error(error: BaseException) -> bool:
    """Return True when an error signals a token or context window overflow."""
    if error is None:
        return False
    text = str(error).lower()
    return any(marker in text for marker in TOKEN_LIMIT_MARKERS)


def handle_model_error(error: Exception) -> str:
    """Convert model invocation errors to user-friendly messages.

    Args:
        error: Exception raised during model invocation

    Returns:
        User-friendly error message
    """
    error_str = str(error).lower()

    if "rate_limit" in error_str or "429" in error_str:
        return "The model provider is rate limiting requests, please retry later"

    if "timeout" in error_str or "timed out" in error_str:
        return "The model did not respond in time"

    if is_token_limit_error(error):
        return "The conversation exceeded the model context window, please start a new session"

    if "invalid_api_key" in error_str or "authentication" in error_str:
        return "The model API key is invalid"

    if "quota" in error_str or "insufficient" in error_str:
        return "The model provider quota is exhausted"

    return f"The model service is unavailable: {error}"


def _terminal_update(node_name: str, content: str, termination: str, error_type: str = None,
                     error_message: str = ""):
    from agentcycle.graph.machine import Continue
    from agentcycle.graph.node_ids import GraphNode
    from agentcycle.graph.state import ErrorInfo, SkipValidation

    message = AIMessage(
        content=content,
        additional_kwargs={"from": node_name, "final": True, "termination": termination},
    )
    update = {
        "messages": [message],
        "last_node": node_name,
        "skip_validation": SkipValidation(skip_validation=True, goto=GraphNode.END_GRAPH.value),
    }
    if error_type:
        update["error"] = ErrorInfo(
            has_error=True,
            type=error_type,
            message=error_message or content,
            source=node_name,
            timestamp=time.time(),
        )
    return Continue(update)


def convert_exception(node_name: str, error: Exception):
    """Turn an exception raised inside a node into a terminal state update.

    ConfigurationError is re-raised so the whole session aborts.
    """
    if isinstance(error, ConfigurationError):
        raise error
    if isinstance(error, IterationCeilingReached):
        LOGGER.warning(f"{node_name}: {error}")
        return _terminal_update(node_name, error.user_message, "iteration_ceiling")
    if isinstance(error, ToolExecutionTimeout):
        LOGGER.error(f"{node_name} tool timeout: {error}")
        return _terminal_update(
            node_name, f"Tool execution timed out: {error.user_message}", "error", "tool_timeout", str(error)
        )
    if isinstance(error, ToolExecutionError):
        LOGGER.error(f"{node_name} tool error: {error}")
        return _terminal_update(
            node_name, f"Tool execution failed: {error.user_message}", "error", "tool_error", str(error)
        )
    if isinstance(error, ModelInvocationError):
        LOGGER.error(f"{node_name} model error: {error}")
        if is_token_limit_error(error):
            return _terminal_update(
                node_name,
                "The conversation exceeded the model context window. Ending workflow, please start a new session.",
                "error",
                "token_limit",
                str(error),
            )
        return _terminal_update(
            node_name, f"Model invocation failed: {error.user_message}", "error", "model_error", str(error)
        )
    if isinstance(error, ValidationFailure):
        LOGGER.error(f"{node_name} validation failure: {error}")
        return _terminal_update(
            node_name, f"Validation failed: {error.user_message}", "failed", "validation_error", str(error)
        )
    LOGGER.exception(f"{node_name} unexpected error", exc_info=error)
    return _terminal_update(
        node_name, f"{node_name} failed unexpectedly: {error}", "error", "execution_error", str(error)
    )


def with_error_boundary(node_name: str):
    """Decorator to add an error boundary to graph nodes.

    Exceptions are converted into a `Continue` result that carries an error
    annotation and forces the orchestrator to `end_graph`.

    Args:
        node_name: Name of the node for logging and error annotations

    Example:
        @with_error_boundary("create_initial_plan")
        async def create_initial_plan(state: SessionState) -> NodeResult:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                return convert_exception(node_name, e)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                return convert_exception(node_name, e)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
