"""Node factories for the orchestration state machine."""

from .executor import build_executor_nodes
from .memory import build_memory_nodes
from .orchestrator import build_orchestrator_nodes, build_terminal_exit, end_graph
from .planner import build_planner_nodes, check_plan_structure
from .verifier import build_verifier_nodes

__all__ = [
    "build_executor_nodes",
    "build_memory_nodes",
    "build_orchestrator_nodes",
    "build_planner_nodes",
    "build_terminal_exit",
    "build_verifier_nodes",
    "check_plan_structure",
    "end_graph",
]
