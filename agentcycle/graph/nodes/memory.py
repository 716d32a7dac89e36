"""Memory nodes: STM window update, LTM write path and LTM retrieval."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from langchain_core.messages import HumanMessage

from agentcycle.graph.machine import Continue, NodeFn
from agentcycle.graph.message_utils import (
    describe_objective,
    format_history_item_for_stm,
    format_step_for_stm,
    step_key,
    stringify_content,
)
from agentcycle.graph.node_ids import MemoryNode
from agentcycle.graph.nodes.orchestrator import build_terminal_exit
from agentcycle.graph.prompts import SUMMARIZE_MEMORY_PROMPT
from agentcycle.graph.state import SessionState
from agentcycle.utils.error_handler import with_error_boundary
from agentcycle.utils.logging_utils import log_node_entry, log_node_exit

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.memory.ltm import LongTermMemory
    from agentcycle.models.client import ModelClient

LOGGER = logging.getLogger("agentcycle.memory")


def latest_memory_entry(state: SessionState) -> Optional[Tuple[str, str]]:
    """(key, formatted content) of the most recently processed step or turn, if any."""
    plan = state.active_plan()
    if plan is not None:
        index = state.current_step_index - 1
        step = plan.step_at(index)
        if step is None:
            return None
        return step_key(plan, index), format_step_for_stm(step)

    history = state.active_history()
    if history is not None and history.items:
        index = len(history.items) - 1
        return step_key(history, index), format_history_item_for_stm(history.items[index])
    return None


def build_memory_nodes(
    *,
    model: "ModelClient",
    ltm: Optional["LongTermMemory"],
    config: "AgentConfig",
) -> Dict[str, NodeFn]:
    """Create the memory nodes. `ltm=None` or `ltm_enabled=False` keeps memory short-term only."""

    ltm_active = ltm is not None and config.ltm_enabled

    @with_error_boundary(MemoryNode.STM_MANAGER.value)
    async def stm_manager(state: SessionState) -> Continue:
        node = MemoryNode.STM_MANAGER.value
        log_node_entry(LOGGER, node, state)
        updates = {"last_node": node}

        entry = latest_memory_entry(state)
        if entry is not None:
            key, content = entry
            latest = state.memories.stm.latest()
            if latest is not None and latest.key == key:
                LOGGER.debug(f"STM already holds {key}")
            else:
                memories = state.memories.copy()
                memories.stm.push(content, key=key)
                updates["memories"] = memories
                LOGGER.info(f"STM push {key} ({len(memories.stm)}/{memories.stm.capacity})")

        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(MemoryNode.LTM_MANAGER.value)
    async def ltm_manager(state: SessionState) -> Continue:
        node = MemoryNode.LTM_MANAGER.value
        log_node_entry(LOGGER, node, state)
        updates = {"last_node": node}

        latest = state.memories.stm.latest()
        if not ltm_active or latest is None or latest.key is None:
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)
        if latest.key == state.memories.ltm.last_stored_key:
            LOGGER.debug(f"LTM already stored {latest.key}")
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        summary = await model.invoke([HumanMessage(content=SUMMARIZE_MEMORY_PROMPT.format(content=latest.content))])
        await ltm.remember(
            stringify_content(summary.content),
            {"step_key": latest.key, "kind": "step", "session_id": state.session_id},
        )

        memories = state.memories.copy()
        memories.ltm.last_stored_key = latest.key
        updates["memories"] = memories
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(MemoryNode.RETRIEVE_MEMORY.value)
    async def retrieve_memory(state: SessionState) -> Continue:
        node = MemoryNode.RETRIEVE_MEMORY.value
        log_node_entry(LOGGER, node, state)
        updates = {"last_node": node}

        if ltm_active:
            step = state.current_step()
            query = step.description if step is not None else describe_objective(state, config)
            items = await ltm.recall(query, exclude_keys=state.memories.stm.keys())
            memories = state.memories.copy()
            memories.ltm.items = items
            updates["memories"] = memories
            LOGGER.info(f"Retrieved {len(items)} long-term memories")

        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def memory_end(state: SessionState) -> Continue:
        return Continue({"last_node": MemoryNode.END.value})

    return {
        MemoryNode.STM_MANAGER.value: stm_manager,
        MemoryNode.LTM_MANAGER.value: ltm_manager,
        MemoryNode.RETRIEVE_MEMORY.value: retrieve_memory,
        MemoryNode.END.value: memory_end,
        MemoryNode.END_MEMORY_GRAPH.value: build_terminal_exit(MemoryNode.END_MEMORY_GRAPH, config, "Memory"),
    }
