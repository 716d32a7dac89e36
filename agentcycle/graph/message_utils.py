"""Message inspection and step/history formatting helpers."""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Union

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from agentcycle.graph.plan import History, HistoryItem, Plan, Step, StepType

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.graph.state import SessionState
    from agentcycle.memory.ltm import MemoryRecord

TERMINAL_MARKERS = ("FINAL ANSWER", "PLAN_COMPLETED")
REPLAN_MARKER = "REQUEST_REPLAN"


def stringify_content(content: Any) -> str:
    if isinstance(content, list):
        pieces: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                pieces.append(str(item["text"]))
            else:
                pieces.append(str(item))
        return "\n".join(pieces)
    return str(content)


def is_terminal_message(message: Optional[BaseMessage]) -> bool:
    if message is None:
        return False
    if message.additional_kwargs.get("final") is True:
        return True
    text = stringify_content(message.content)
    return any(marker in text for marker in TERMINAL_MARKERS)


def is_replan_request(message: Optional[BaseMessage]) -> bool:
    if message is None or not isinstance(message, AIMessage):
        return False
    return REPLAN_MARKER in stringify_content(message.content)


def has_tool_calls(message: Optional[BaseMessage]) -> bool:
    return bool(getattr(message, "tool_calls", None))


def estimate_tokens(text: str) -> int:
    """Rough token estimate: average of chars/4 and word count."""
    char_count = len(text)
    word_count = len([word for word in text.split() if word])
    return math.ceil((char_count / 4 + word_count) / 2)


def has_reached_max_steps(state: "SessionState", config: "AgentConfig") -> bool:
    return state.current_graph_step >= config.max_graph_steps


def trailing_tool_messages(messages: List[BaseMessage]) -> List[ToolMessage]:
    """Tool messages appended after the most recent non-tool message."""
    collected: List[ToolMessage] = []
    for message in reversed(messages):
        if not isinstance(message, ToolMessage):
            break
        collected.append(message)
    return list(reversed(collected))


def latest_rejection_reason(messages: List[BaseMessage]) -> Optional[str]:
    """Most recent validator/verifier rejection reason or replan request text."""
    for message in reversed(messages):
        reason = message.additional_kwargs.get("reason")
        if reason:
            return str(reason)
        if is_replan_request(message):
            return stringify_content(message.content)
    return None


def create_max_iterations_response(graph_step: int, node_name: str, max_steps: int) -> dict:
    message = AIMessage(
        content=f"Reached the maximum of {max_steps} graph steps. Ending workflow.",
        additional_kwargs={
            "from": node_name,
            "final": True,
            "graph_step": graph_step,
            "termination": "iteration_ceiling",
        },
    )
    return {"messages": [message], "last_node": node_name}


def step_key(plan_or_history: Union[Plan, History], index: int) -> str:
    return f"{plan_or_history.id}:{index}"


# ========== Plans ==========

def format_plan_created(plan: Plan, verb: str = "created") -> str:
    lines = [f"Plan {verb} with {len(plan.steps)} steps:"]
    for step in plan.steps:
        lines.append(f"{step.step_number}. {step.step_name}: {step.description}")
    return "\n".join(lines)


def format_plan_summary(plan: Plan) -> str:
    formatted = f"Plan Summary: {plan.summary}\n\n"
    formatted += f"Steps ({len(plan.steps)} total):\n"
    for step in plan.steps:
        formatted += f"{step.step_number}. {step.step_name} [{step.type.value}] - {step.status.value}\n"
        formatted += f"   Description: {step.description}\n"
        if step.type == StepType.TOOLS and step.tools:
            formatted += "   Tools:\n"
            for index, tool in enumerate(step.tools, 1):
                formatted += f"   - Tool {index}: {tool.name}\n"
                formatted += f"     • Description: {tool.description}\n"
                formatted += f"     • Required: {tool.required}\n"
                formatted += f"     • Expected Result: {tool.expected_result}\n"
        formatted += "\n"
    return formatted


def format_execution_message(step: Step) -> str:
    parts = [
        f"S{step.step_number}:{step.step_name}",
        f"Type: {step.type.value}",
        f"Description: {step.description}",
    ]
    if step.type == StepType.TOOLS:
        for index, tool in enumerate(step.tools):
            parts.append(f"T{index}:{tool.name} - {tool.description}")
            parts.append(f"Required: {tool.required}")
            if tool.inputs:
                parts.append(f"Inputs: {json.dumps(tool.inputs, ensure_ascii=False, default=str)}")
            parts.append(f"Expected: {tool.expected_result}")
    if step.type == StepType.HUMAN_IN_THE_LOOP and step.message is not None:
        parts.append(f"Human input: {step.message.content}")
    return "\n".join(parts)


# ========== Short-term memory entries ==========

def format_step_for_stm(step: Step) -> str:
    header = f"S{step.step_number}:{step.step_name}"
    if step.type == StepType.TOOLS and step.tools:
        tool_info = "|".join(
            f"Tool: {tool.name}->{_clip(tool.result)}" for tool in step.tools
        )
        return f"{header}[{tool_info}]"
    if step.message is None:
        return f"{header}→{step.status.value}"
    return f"{header}→{_clip(step.message.content)}"


def format_history_item_for_stm(item: HistoryItem) -> str:
    stamp = datetime.fromtimestamp(item.timestamp, tz=timezone.utc).isoformat()
    if item.type == "tools" and item.tools:
        tool_info = "|".join(f"Tool: {tool.name}->{_clip(tool.result)}" for tool in item.tools)
        return f"ReAct turn at {stamp}[{tool_info}]"
    content = item.message.content if item.message else "No message"
    return f"ReAct turn at {stamp}→{_clip(content)}"


def _clip(text: Optional[str], limit: int = 400) -> str:
    if text is None:
        return "pending"
    text = str(text)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


# ========== Validator input ==========

def format_validator_input(item: Union[Step, HistoryItem]) -> str:
    if isinstance(item, Step):
        header = f"S{item.step_number}:{item.step_name}\nD:{item.description}"
        if item.type == StepType.TOOLS and item.tools:
            tool_info = "|".join(
                f"T{index}:{tool.description}\n Result: ```json "
                + json.dumps(
                    {
                        "tool_name": tool.name,
                        "tool_call_id": tool.metadata.get("tool_call_id"),
                        "tool_result": tool.result,
                    },
                    ensure_ascii=False,
                    default=str,
                )
                + "```"
                for index, tool in enumerate(item.tools, 1)
            )
            return f"{header}[{tool_info}]"
        content = item.message.content if item.message else "No result produced"
        return f"{header}→{content}"

    stamp = datetime.fromtimestamp(item.timestamp, tz=timezone.utc).isoformat()
    header = f"Q:{stamp}\nD:History Item"
    if item.type == "tools" and item.tools:
        tool_info = "|".join(
            f"T{index}:Result: ```json "
            + json.dumps(
                {"tool_name": tool.name, "tool_call_id": tool.tool_call_id, "tool_result": tool.result},
                ensure_ascii=False,
                default=str,
            )
            + "```"
            for index, tool in enumerate(item.tools, 1)
        )
        return f"{header}[{tool_info}]"
    content = item.message.content if item.message else "No result produced"
    return f"{header}→{content}"


# ========== Long-term memory ==========

def format_ltm_for_context(records: Iterable["MemoryRecord"]) -> str:
    lines = []
    for record in records:
        kind = record.metadata.get("kind", "memory")
        lines.append(f"Memory [{kind}, relevance: {record.similarity:.4f}]: {record.content}")
    return "\n\n".join(lines)


def describe_objective(state: "SessionState", config: "AgentConfig") -> str:
    """Objective of the session, falling back to the configured agent objectives."""
    if state.objective:
        return state.objective
    if config.objectives:
        return "\n".join(f"- {objective}" for objective in config.objectives)
    return "No explicit objective given."
