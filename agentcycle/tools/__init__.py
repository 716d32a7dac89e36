"""Tool collaborators."""

from .invoker import ToolInvoker, timeout_tool_messages, truncate_tool_message

__all__ = ["ToolInvoker", "timeout_tool_messages", "truncate_tool_message"]
