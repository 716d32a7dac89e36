"""Node identifiers for the orchestration state machine."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class GraphNode(str, Enum):
    """Top-level components. Valid targets for a forced route."""

    PLANNING_ORCHESTRATOR = "planning_orchestrator"
    AGENT_EXECUTOR = "agent_executor"
    MEMORY_ORCHESTRATOR = "memory_orchestrator"
    TASK_VERIFIER = "task_verifier"
    TASK_UPDATER = "task_updater"
    END_GRAPH = "end_graph"


class PlannerNode(str, Enum):
    CREATE_INITIAL_PLAN = "create_initial_plan"
    CREATE_INITIAL_HISTORY = "create_initial_history"
    PLAN_REVISION = "plan_revision"
    EVOLVE_FROM_HISTORY = "evolve_from_history"
    PLANNER_VALIDATOR = "planner_validator"
    GET_PLANNER_STATUS = "get_planner_status"
    END = "planner_end"
    END_PLANNER_GRAPH = "end_planner_graph"


class ExecutorNode(str, Enum):
    REASONING_EXECUTOR = "reasoning_executor"
    TOOL_EXECUTOR = "tool_executor"
    EXECUTOR_VALIDATOR = "executor_validator"
    HUMAN = "human"
    END = "executor_end"
    END_EXECUTOR_GRAPH = "end_executor_graph"


class MemoryNode(str, Enum):
    STM_MANAGER = "stm_manager"
    LTM_MANAGER = "ltm_manager"
    RETRIEVE_MEMORY = "retrieve_memory"
    END = "memory_end"
    END_MEMORY_GRAPH = "end_memory_graph"


START = "__start__"

_COMPONENTS: Dict[str, GraphNode] = {}
for _member in PlannerNode:
    _COMPONENTS[_member.value] = GraphNode.PLANNING_ORCHESTRATOR
for _member in ExecutorNode:
    _COMPONENTS[_member.value] = GraphNode.AGENT_EXECUTOR
for _member in MemoryNode:
    _COMPONENTS[_member.value] = GraphNode.MEMORY_ORCHESTRATOR
for _member in GraphNode:
    _COMPONENTS[_member.value] = _member


def component_of(node_id: Optional[str]) -> Optional[GraphNode]:
    """Return the component that owns `node_id`, or None for unknown ids."""
    if node_id is None:
        return None
    return _COMPONENTS.get(getattr(node_id, "value", node_id))


def is_graph_node(node_id: str) -> bool:
    return getattr(node_id, "value", node_id) in {member.value for member in GraphNode}
