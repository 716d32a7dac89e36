"""Tool execution against a shared timeout, plus output truncation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool

from agentcycle.graph.message_utils import stringify_content
from agentcycle.utils.error_handler import ToolExecutionError, ToolExecutionTimeout
from agentcycle.utils.logging_utils import log_tool_call, log_tool_result

LOGGER = logging.getLogger("agentcycle.tools")


def truncate_tool_message(message: ToolMessage, max_chars: int) -> ToolMessage:
    """Clip oversized tool output, keeping the head of the result."""
    content = stringify_content(message.content)
    if len(content) <= max_chars:
        return message
    LOGGER.warning(f"Tool {message.name} output truncated: {len(content)} > {max_chars} chars")
    clipped = content[:max_chars] + f"\n\n[Output truncated: showing {max_chars} of {len(content)} characters]"
    return message.model_copy(update={"content": clipped})


class ToolInvoker:
    """Holds the tools available to the executor and runs one turn of tool calls.

    All calls of a turn run concurrently and race a single timer; whichever
    settles first wins.
    """

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None, timeout: float = 30.0):
        self._tools: Dict[str, BaseTool] = {}
        self.timeout = timeout
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> BaseTool:
        if name not in self._tools:
            raise ToolExecutionError(f"Unknown tool: {name}", user_message=f"Tool '{name}' is not available")
        return self._tools[name]

    def list_tools(self) -> List[BaseTool]:
        return list(self._tools.values())

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def describe(self) -> str:
        if not self._tools:
            return "No tools available."
        return "\n".join(f"- {tool.name}: {tool.description}" for tool in self._tools.values())

    async def invoke(self, tool_calls: Iterable[Mapping[str, Any]]) -> List[ToolMessage]:
        """Run the tool calls of one AI turn.

        Raises:
            ToolExecutionTimeout: the turn did not settle within `timeout`
            ToolExecutionError: unknown tool or a tool raised
        """
        calls = [{**call, "type": "tool_call"} for call in tool_calls]
        pending = [(call, self.get_tool(call["name"])) for call in calls]

        for call, _ in pending:
            log_tool_call(LOGGER, call["name"], call.get("args", {}))

        try:
            results = await asyncio.wait_for(
                asyncio.gather(*(tool.ainvoke(call) for call, tool in pending)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            names = [call["name"] for call in calls]
            LOGGER.error(f"Tool call(s) {names} timed out after {self.timeout}s")
            raise ToolExecutionTimeout(
                f"Tool call(s) {', '.join(names)} timed out after {self.timeout}s",
                timeout=self.timeout,
                tool_names=names,
                user_message=f"{', '.join(names)} did not respond within {self.timeout:.0f}s",
            ) from e
        except ToolExecutionError:
            raise
        except Exception as e:
            LOGGER.error(f"Tool execution failed: {e}")
            raise ToolExecutionError(f"Tool execution failed: {e}") from e

        messages = []
        for (call, _), result in zip(pending, results):
            message = result if isinstance(result, ToolMessage) else ToolMessage(
                content=stringify_content(result), tool_call_id=call.get("id") or "", name=call["name"]
            )
            log_tool_result(LOGGER, call["name"], message.content, success=message.status != "error")
            messages.append(message)
        return messages


def timeout_tool_messages(tool_calls: Iterable[Mapping[str, Any]], error: ToolExecutionTimeout) -> List[ToolMessage]:
    """Error results standing in for tool calls that did not settle in time."""
    return [
        ToolMessage(
            content=f"Tool {call['name']} timed out after {error.timeout}s",
            tool_call_id=call.get("id") or "",
            name=call["name"],
            status="error",
            additional_kwargs={"from": "tools", "final": False, "timeout": True},
        )
        for call in tool_calls
    ]
