"""Component dispatch nodes, component exits and terminal cleanup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict

from langchain_core.messages import AIMessage

from agentcycle.graph.machine import Continue, NodeFn
from agentcycle.graph.message_utils import (
    create_max_iterations_response,
    has_reached_max_steps,
    latest_rejection_reason,
)
from agentcycle.graph.node_ids import GraphNode
from agentcycle.graph.state import SessionState, SkipValidation
from agentcycle.utils.logging_utils import log_node_entry, log_node_exit

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig

LOGGER = logging.getLogger("agentcycle.orchestrator")


def _dispatch_node(node: GraphNode) -> NodeFn:
    async def dispatch(state: SessionState) -> Continue:
        # A forced route is consumed once the target component is entered.
        LOGGER.debug(f"Dispatching to {node.value}")
        return Continue({"skip_validation": None})

    dispatch.__name__ = node.value
    return dispatch


def build_terminal_exit(node, config: "AgentConfig", label: str) -> NodeFn:
    """Create the failure exit of a component.

    The exit explains why the component stopped, unless the last message
    already carries a termination reason, and forces the route to end_graph.
    """
    node_name = getattr(node, "value", node)

    async def terminal_exit(state: SessionState) -> Continue:
        log_node_entry(LOGGER, node_name, state)
        updates = {
            "last_node": node_name,
            "skip_validation": SkipValidation(skip_validation=True, goto=GraphNode.END_GRAPH.value),
        }
        last_message = state.last_message
        if last_message is None or "termination" not in last_message.additional_kwargs:
            if has_reached_max_steps(state, config):
                updates["messages"] = create_max_iterations_response(
                    state.current_graph_step, node_name, config.max_graph_steps
                )["messages"]
            else:
                reason = latest_rejection_reason(state.messages) or "retry limit reached"
                updates["messages"] = [
                    AIMessage(
                        content=f"{label} could not complete the task: {reason}",
                        additional_kwargs={"from": node_name, "final": True, "termination": "failed"},
                    )
                ]
        log_node_exit(LOGGER, node_name, updates)
        return Continue(updates)

    terminal_exit.__name__ = node_name
    return terminal_exit


async def end_graph(state: SessionState) -> Continue:
    """Reset per-run mutable state before the session exits."""
    log_node_entry(LOGGER, GraphNode.END_GRAPH.value, state)
    updates = {
        "last_node": GraphNode.END_GRAPH,
        "plans_or_histories": None,
        "current_step_index": 0,
        "retry": 0,
        "skip_validation": None,
        "external_input": None,
        "interrupted_at": None,
    }
    log_node_exit(LOGGER, GraphNode.END_GRAPH.value, updates)
    return Continue(updates)


def build_orchestrator_nodes() -> Dict[str, NodeFn]:
    return {
        GraphNode.PLANNING_ORCHESTRATOR.value: _dispatch_node(GraphNode.PLANNING_ORCHESTRATOR),
        GraphNode.AGENT_EXECUTOR.value: _dispatch_node(GraphNode.AGENT_EXECUTOR),
        GraphNode.MEMORY_ORCHESTRATOR.value: _dispatch_node(GraphNode.MEMORY_ORCHESTRATOR),
        GraphNode.END_GRAPH.value: end_graph,
    }
