"""Routing functions for the orchestration state machine.

Every router is a pure function of `(state, config)`: it reads the state,
logs its decision and returns the id of the next node.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from agentcycle.config.agent_config import AgentMode, ExecutionMode, PlannerMode
from agentcycle.graph.message_utils import (
    has_reached_max_steps,
    has_tool_calls,
    is_replan_request,
    is_terminal_message,
)
from agentcycle.graph.node_ids import ExecutorNode, GraphNode, MemoryNode, PlannerNode, component_of, is_graph_node
from agentcycle.graph.plan import StepStatus, StepType, TaskStatus
from agentcycle.graph.state import ABORTED_RETRY
from agentcycle.utils.logging_utils import log_routing_decision

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.graph.state import SessionState

LOGGER = logging.getLogger("agentcycle.routing")

PLAN_PRODUCERS = {
    PlannerNode.CREATE_INITIAL_PLAN.value,
    PlannerNode.PLAN_REVISION.value,
    PlannerNode.EVOLVE_FROM_HISTORY.value,
}


def _decide(source: str, decision, reason: str) -> str:
    decision = getattr(decision, "value", decision)
    log_routing_decision(LOGGER, source, decision, reason)
    return decision


def _has_error(state: "SessionState") -> bool:
    return state.error is not None and state.error.has_error


# ========== Orchestrator ==========

def select_entry(state: "SessionState", config: "AgentConfig") -> str:
    """Pick the first component of a session from the agent and execution modes."""
    if config.mode == AgentMode.INTERACTIVE:
        if config.execution_mode == ExecutionMode.REACTIVE:
            return _decide("start", GraphNode.AGENT_EXECUTOR, "Interactive reactive agent starts executing")
        return _decide("start", GraphNode.PLANNING_ORCHESTRATOR, "Interactive planning agent starts planning")
    if config.mode in (AgentMode.AUTONOMOUS, AgentMode.HYBRID):
        return _decide("start", GraphNode.PLANNING_ORCHESTRATOR, f"{config.mode.value} agent starts planning")
    return _decide("start", GraphNode.END_GRAPH, f"Unknown agent mode {config.mode}")


def orchestration_route(state: "SessionState", config: "AgentConfig") -> str:
    """Choose the next component after a component finished its turn.

    Precedence: error marker, forced route, then the component that ran last.
    """
    source = state.last_node or "orchestrator"

    if _has_error(state):
        return _decide(source, GraphNode.END_GRAPH, f"Error from {state.error.source}: {state.error.message[:80]}")

    skip = state.skip_validation
    if skip is not None and skip.skip_validation:
        if is_graph_node(skip.goto):
            return _decide(source, skip.goto, "Forced route")
        LOGGER.error(f"Forced route to unknown node '{skip.goto}', terminating")
        return _decide(source, GraphNode.END_GRAPH, f"Invalid forced route target '{skip.goto}'")

    component = component_of(state.last_node)
    plan = state.active_plan()

    if component == GraphNode.TASK_VERIFIER:
        return _decide(source, GraphNode.TASK_UPDATER, "Verification done, updating task")

    if component == GraphNode.AGENT_EXECUTOR:
        if plan is not None and plan.status == TaskStatus.WAITING_VALIDATION:
            return _decide(source, GraphNode.TASK_VERIFIER, "Task waiting for verification")
        return _decide(source, GraphNode.MEMORY_ORCHESTRATOR, "Executor turn done, updating memory")

    if component == GraphNode.PLANNING_ORCHESTRATOR:
        return _decide(source, GraphNode.MEMORY_ORCHESTRATOR, "Planning done, updating memory")

    if component == GraphNode.MEMORY_ORCHESTRATOR:
        if plan is not None and plan.status == TaskStatus.COMPLETED and _has_pending_steps(plan):
            return _decide(source, GraphNode.AGENT_EXECUTOR, "Task verified, pending steps run first")
        if plan is not None and plan.status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            return _decide(source, GraphNode.PLANNING_ORCHESTRATOR, f"Task {plan.status.value}, planning next cycle")
        return _decide(source, GraphNode.AGENT_EXECUTOR, "Memory updated, executing")

    if component == GraphNode.TASK_UPDATER:
        return _task_updater_route(state, source)

    return _decide(source, GraphNode.AGENT_EXECUTOR, "Default route")


def _has_pending_steps(plan) -> bool:
    return any(step.status == StepStatus.PENDING for step in plan.steps)


def _task_updater_route(state: "SessionState", source: str) -> str:
    plan = state.active_plan()
    verdict = _verifier_annotations(state)

    if plan is not None and verdict.get("task_completed") and _has_pending_steps(plan):
        return _decide(source, GraphNode.AGENT_EXECUTOR, "Task verified, steps remain")

    if plan is not None and plan.status == TaskStatus.COMPLETED:
        if _has_pending_steps(plan):
            return _decide(source, GraphNode.AGENT_EXECUTOR, "Task verified, steps remain")
        return _decide(source, GraphNode.PLANNING_ORCHESTRATOR, "Task verified, starting a new planning cycle")

    if plan is not None and plan.status == TaskStatus.FAILED and verdict.get("needs_replan"):
        return _decide(source, GraphNode.PLANNING_ORCHESTRATOR, "Task verification failed, replanning")

    return _decide(source, GraphNode.AGENT_EXECUTOR, "No verification outcome, continuing execution")


def _verifier_annotations(state: "SessionState") -> dict:
    for message in reversed(state.messages):
        if message.additional_kwargs.get("from") == GraphNode.TASK_VERIFIER.value:
            return message.additional_kwargs
    return {}


# ========== Planner ==========

def planning_route(state: "SessionState", config: "AgentConfig") -> str:
    """Route inside the planner. The iteration ceiling is checked first."""
    source = state.last_node or GraphNode.PLANNING_ORCHESTRATOR.value

    if has_reached_max_steps(state, config):
        return _decide(source, PlannerNode.END_PLANNER_GRAPH,
                       f"Max graph steps reached ({state.current_graph_step}/{config.max_graph_steps})")
    if _has_error(state):
        return _decide(source, PlannerNode.END_PLANNER_GRAPH, "Planner error")

    last_node = state.last_node
    plan = state.active_plan()

    if last_node == PlannerNode.PLANNER_VALIDATOR.value:
        if state.retry == 0:
            return _decide(source, PlannerNode.END, "Plan validated")
        if state.retry >= config.max_retries:
            return _decide(source, PlannerNode.END_PLANNER_GRAPH,
                           f"Plan rejected {state.retry} times (max {config.max_retries})")
        return _decide(source, PlannerNode.PLAN_REVISION, f"Plan rejected, revising (retry {state.retry})")

    if last_node == PlannerNode.GET_PLANNER_STATUS.value:
        if _planner_activated(state):
            return _decide(source, PlannerNode.CREATE_INITIAL_PLAN, "Planning activated for this request")
        return _decide(source, PlannerNode.CREATE_INITIAL_HISTORY, "Planning not needed for this request")

    if last_node in PLAN_PRODUCERS:
        if is_terminal_message(state.last_message):
            return _decide(source, PlannerNode.END_PLANNER_GRAPH, "Planner produced a final answer")
        if config.plan_validation_enabled:
            return _decide(source, PlannerNode.PLANNER_VALIDATOR, "Validating plan")
        return _decide(source, PlannerNode.END, "Plan ready, validation disabled")

    if last_node == PlannerNode.CREATE_INITIAL_HISTORY.value:
        return _decide(source, PlannerNode.END, "History initialized")

    if plan is not None and is_replan_request(state.last_ai_message()):
        return _decide(source, PlannerNode.PLAN_REVISION, "Executor requested a replan")

    if config.mode == AgentMode.INTERACTIVE and state.plans_or_histories is None:
        if config.planner_mode == PlannerMode.DISABLED:
            return _decide(source, PlannerNode.CREATE_INITIAL_HISTORY, "Planner disabled")
        if config.planner_mode == PlannerMode.AUTOMATIC:
            return _decide(source, PlannerNode.GET_PLANNER_STATUS, "Detecting whether planning is needed")
        return _decide(source, PlannerNode.CREATE_INITIAL_PLAN, "Planner activated")

    if plan is None:
        return _decide(source, PlannerNode.CREATE_INITIAL_PLAN, "No active plan")

    if config.mode in (AgentMode.AUTONOMOUS, AgentMode.HYBRID):
        if plan.status == TaskStatus.FAILED:
            return _decide(source, PlannerNode.PLAN_REVISION, "Task failed, revising plan")
        if plan.status == TaskStatus.COMPLETED:
            return _decide(source, PlannerNode.EVOLVE_FROM_HISTORY, "Task completed, extending plan")

    return _decide(source, PlannerNode.END, "Nothing to plan")


def _planner_activated(state: "SessionState") -> bool:
    message = state.last_message
    if message is None or message.additional_kwargs.get("from") != PlannerNode.GET_PLANNER_STATUS.value:
        return False
    return bool(message.additional_kwargs.get("activated"))


# ========== Executor ==========

def executor_entry_route(state: "SessionState", config: "AgentConfig") -> str:
    source = GraphNode.AGENT_EXECUTOR.value

    if has_reached_max_steps(state, config):
        return _decide(source, ExecutorNode.END_EXECUTOR_GRAPH,
                       f"Max graph steps reached ({state.current_graph_step}/{config.max_graph_steps})")

    plan = state.active_plan()
    if plan is not None:
        if plan.is_finished(state.current_step_index):
            return _decide(source, ExecutorNode.END, "All plan steps executed")
        step = plan.step_at(state.current_step_index)
        if (
            config.mode == AgentMode.HYBRID
            and step.type == StepType.HUMAN_IN_THE_LOOP
            and step.status == StepStatus.PENDING
        ):
            return _decide(source, ExecutorNode.HUMAN, f"Step {step.step_number} needs human input")

    return _decide(source, ExecutorNode.REASONING_EXECUTOR, "Executing")


def executor_route(state: "SessionState", config: "AgentConfig") -> str:
    """Route inside the executor after reasoning, tool execution or validation."""
    source = state.last_node or GraphNode.AGENT_EXECUTOR.value

    if _has_error(state):
        return _decide(source, ExecutorNode.END_EXECUTOR_GRAPH, "Executor error")

    last_node = state.last_node

    if last_node == ExecutorNode.REASONING_EXECUTOR.value:
        last_message = state.last_message
        if is_terminal_message(last_message):
            return _decide(source, ExecutorNode.END, "Final answer produced")
        if is_replan_request(last_message):
            return _decide(source, ExecutorNode.END, "Replan requested")
        if has_tool_calls(last_message):
            return _decide(source, ExecutorNode.TOOL_EXECUTOR,
                           f"Model requested {len(last_message.tool_calls)} tool call(s)")
        return _decide(source, ExecutorNode.EXECUTOR_VALIDATOR, "Validating message result")

    if last_node == ExecutorNode.TOOL_EXECUTOR.value:
        if has_reached_max_steps(state, config):
            return _decide(source, ExecutorNode.END_EXECUTOR_GRAPH,
                           f"Max graph steps reached ({state.current_graph_step}/{config.max_graph_steps})")
        return _decide(source, ExecutorNode.EXECUTOR_VALIDATOR, "Validating tool results")

    if last_node == ExecutorNode.EXECUTOR_VALIDATOR.value:
        if state.retry == ABORTED_RETRY:
            return _decide(source, ExecutorNode.END_EXECUTOR_GRAPH, "Validation aborted")
        if state.retry >= config.max_retries:
            return _decide(source, ExecutorNode.END_EXECUTOR_GRAPH,
                           f"Step rejected {state.retry} times (max {config.max_retries})")
        if state.retry > 0:
            return _decide(source, ExecutorNode.REASONING_EXECUTOR, f"Retrying step (retry {state.retry})")
        return _decide(source, ExecutorNode.END, "Step validated")

    return _decide(source, ExecutorNode.END, f"Unexpected executor state after {last_node}")


# ========== Memory ==========

def memory_entry_route(state: "SessionState", config: "AgentConfig") -> str:
    source = GraphNode.MEMORY_ORCHESTRATOR.value
    if has_reached_max_steps(state, config):
        return _decide(source, MemoryNode.END_MEMORY_GRAPH,
                       f"Max graph steps reached ({state.current_graph_step}/{config.max_graph_steps})")
    return _decide(source, MemoryNode.STM_MANAGER, "Updating short-term memory")


MEMORY_PIPELINE = {
    MemoryNode.STM_MANAGER.value: MemoryNode.LTM_MANAGER,
    MemoryNode.LTM_MANAGER.value: MemoryNode.RETRIEVE_MEMORY,
    MemoryNode.RETRIEVE_MEMORY.value: MemoryNode.END,
}


def memory_route(state: "SessionState", config: "AgentConfig") -> str:
    source = state.last_node or GraphNode.MEMORY_ORCHESTRATOR.value
    if _has_error(state):
        return _decide(source, MemoryNode.END_MEMORY_GRAPH, "Memory error")
    next_node: Optional[MemoryNode] = MEMORY_PIPELINE.get(state.last_node)
    if next_node is None:
        return _decide(source, MemoryNode.END, f"Unexpected memory state after {state.last_node}")
    return _decide(source, next_node, "Next memory stage")
