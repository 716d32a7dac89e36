"""Factory assembling the orchestration state machine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from agentcycle.graph.machine import StateMachine, Transition
from agentcycle.graph.node_ids import ExecutorNode, GraphNode, MemoryNode, PlannerNode
from agentcycle.graph.nodes import (
    build_executor_nodes,
    build_memory_nodes,
    build_orchestrator_nodes,
    build_planner_nodes,
    build_verifier_nodes,
)
from agentcycle.graph.routing import (
    executor_entry_route,
    executor_route,
    memory_entry_route,
    memory_route,
    orchestration_route,
    planning_route,
    select_entry,
)

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.memory.ltm import LongTermMemory
    from agentcycle.models.client import ModelClient
    from agentcycle.tools.invoker import ToolInvoker

LOGGER = logging.getLogger("agentcycle.builder")


def build_state_machine(
    *,
    model: "ModelClient",
    tools: "ToolInvoker",
    config: "AgentConfig",
    ltm: Optional["LongTermMemory"] = None,
    validator_model: Optional["ModelClient"] = None,
) -> StateMachine:
    """Compose the node table and its transitions.

    Layout:

        start → planning_orchestrator | agent_executor
        planning_orchestrator → planner nodes → planner_end → (route)
        agent_executor → [human] → reasoning_executor ⇄ tool_executor → executor_validator → executor_end → (route)
        memory_orchestrator → stm_manager → ltm_manager → retrieve_memory → memory_end → (route)
        task_verifier → task_updater → (route)
        (route) = orchestration_route, which may end at end_graph

    The table is validated on construction; an unknown target raises
    ConfigurationError before any session runs.
    """
    nodes = {}
    nodes.update(build_orchestrator_nodes())
    nodes.update(build_planner_nodes(model=model, tools=tools, config=config, validator_model=validator_model))
    nodes.update(build_executor_nodes(model=model, tools=tools, config=config, validator_model=validator_model))
    nodes.update(build_memory_nodes(model=validator_model or model, ltm=ltm, config=config))
    nodes.update(build_verifier_nodes(model=validator_model or model, config=config))

    to_component = Transition.conditional(orchestration_route, list(GraphNode))
    planner = Transition.conditional(planning_route, list(PlannerNode))
    executor = Transition.conditional(
        executor_route,
        [ExecutorNode.REASONING_EXECUTOR, ExecutorNode.TOOL_EXECUTOR, ExecutorNode.EXECUTOR_VALIDATOR,
         ExecutorNode.END, ExecutorNode.END_EXECUTOR_GRAPH],
    )
    memory = Transition.conditional(memory_route, list(MemoryNode))

    transitions = {
        GraphNode.PLANNING_ORCHESTRATOR: planner,
        GraphNode.AGENT_EXECUTOR: Transition.conditional(
            executor_entry_route,
            [ExecutorNode.REASONING_EXECUTOR, ExecutorNode.HUMAN, ExecutorNode.END, ExecutorNode.END_EXECUTOR_GRAPH],
        ),
        GraphNode.MEMORY_ORCHESTRATOR: Transition.conditional(
            memory_entry_route, [MemoryNode.STM_MANAGER, MemoryNode.END_MEMORY_GRAPH]
        ),
        GraphNode.TASK_VERIFIER: Transition.to(GraphNode.TASK_UPDATER),
        GraphNode.TASK_UPDATER: to_component,
    }

    for node in PlannerNode:
        transitions[node] = to_component if node in (PlannerNode.END, PlannerNode.END_PLANNER_GRAPH) else planner

    transitions[ExecutorNode.HUMAN] = Transition.to(ExecutorNode.REASONING_EXECUTOR)
    for node in (ExecutorNode.REASONING_EXECUTOR, ExecutorNode.TOOL_EXECUTOR, ExecutorNode.EXECUTOR_VALIDATOR):
        transitions[node] = executor
    transitions[ExecutorNode.END] = to_component
    transitions[ExecutorNode.END_EXECUTOR_GRAPH] = to_component

    for node in (MemoryNode.STM_MANAGER, MemoryNode.LTM_MANAGER, MemoryNode.RETRIEVE_MEMORY):
        transitions[node] = memory
    transitions[MemoryNode.END] = to_component
    transitions[MemoryNode.END_MEMORY_GRAPH] = to_component

    machine = StateMachine(
        nodes=nodes,
        transitions=transitions,
        entry=Transition.conditional(
            select_entry,
            [GraphNode.PLANNING_ORCHESTRATOR, GraphNode.AGENT_EXECUTOR, GraphNode.END_GRAPH],
        ),
        terminal=GraphNode.END_GRAPH,
    )
    LOGGER.info(f"Built state machine with {len(machine.nodes)} nodes for {config.mode.value} agent")
    return machine
