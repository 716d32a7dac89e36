"""Session driver: executes nodes, folds updates and handles suspension."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from agentcycle.config.agent_config import AgentMode
from agentcycle.graph.machine import AwaitingExternalInput, StateMachine
from agentcycle.graph.message_utils import stringify_content
from agentcycle.graph.state import SessionState, merge_state
from agentcycle.utils.error_handler import AgentCycleError, ConfigurationError, IterationCeilingReached

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.memory.ltm import LongTermMemory
    from agentcycle.persistence.checkpointer import Checkpointer

LOGGER = logging.getLogger("agentcycle.runner")

AWAITING_INPUT = "awaiting_input"


@dataclass
class RunResult:
    """Outcome of one run or resume call.

    status is one of completed, failed, iteration_ceiling, error, awaiting_input.
    """

    status: str
    session_id: str
    state: SessionState
    prompt: Optional[str] = None

    @property
    def final_answer(self) -> Optional[str]:
        message = self.state.last_message
        if message is None or self.status == AWAITING_INPUT:
            return None
        return stringify_content(message.content)


class GraphRunner:
    """Drives one session at a time through the state machine.

    Exactly one node runs at a time. `current_graph_step` grows by one per
    executed node. On `AwaitingExternalInput` the state is checkpointed and
    the same node is re-entered by `resume`.
    """

    def __init__(
        self,
        machine: StateMachine,
        config: "AgentConfig",
        checkpointer: Optional["Checkpointer"] = None,
        ltm: Optional["LongTermMemory"] = None,
    ):
        if config.mode == AgentMode.HYBRID and checkpointer is None:
            raise ConfigurationError("Hybrid agents need a checkpointer to suspend for human input")
        self.machine = machine
        self.config = config
        self.checkpointer = checkpointer
        self.ltm = ltm
        # Exits still need a few nodes after the ceiling to wind down.
        self.hard_limit = config.max_graph_steps + len(machine.nodes)

    async def run(self, objective: str, session_id: Optional[str] = None) -> RunResult:
        state = SessionState.initial(objective, self.config.short_term_memory, session_id)
        LOGGER.info(f"Session {state.session_id[:8]} started: {objective[:80]}")
        first = self.machine.first_node(state, self.config)
        return await self._drive(state, first)

    async def resume(self, session_id: str, value: str) -> RunResult:
        """Inject external input and re-enter the node that suspended."""
        if self.checkpointer is None:
            raise ConfigurationError("Cannot resume a session without a checkpointer")
        state = self.checkpointer.restore(session_id)
        if state is None:
            raise AgentCycleError(f"No checkpoint for session {session_id}", user_message="Unknown session")
        if state.interrupted_at is None:
            raise AgentCycleError(
                f"Session {session_id} is not waiting for input",
                user_message="This session is not waiting for input",
            )
        LOGGER.info(f"Session {session_id[:8]} resumed at {state.interrupted_at}")
        state = merge_state(state, {"external_input": value})
        return await self._drive(state, state.interrupted_at)

    async def _drive(self, state: SessionState, node: str) -> RunResult:
        while True:
            if state.current_graph_step >= self.hard_limit:
                raise IterationCeilingReached(state.current_graph_step, self.config.max_graph_steps)

            result = await self.machine.nodes[node](state)

            if isinstance(result, AwaitingExternalInput):
                state = merge_state(state, result.update)
                state = merge_state(state, {"interrupted_at": node})
                if self.checkpointer is not None:
                    self.checkpointer.snapshot(state)
                LOGGER.info(f"Session {state.session_id[:8]} suspended at {node}")
                return RunResult(AWAITING_INPUT, state.session_id, state, prompt=result.prompt)

            state = merge_state(state, result.update)
            state = merge_state(state, {"current_graph_step": state.current_graph_step + 1})

            if self.machine.is_terminal(node):
                break
            node = self.machine.next_node(node, state, self.config)

        status = self._status(state)
        LOGGER.info(f"Session {state.session_id[:8]} finished: {status} after {state.current_graph_step} steps")
        if status == "completed":
            await self._record_iteration(state)
        if self.checkpointer is not None:
            self.checkpointer.snapshot(state)
        return RunResult(status, state.session_id, state)

    @staticmethod
    def _status(state: SessionState) -> str:
        message = state.last_message
        termination = message.additional_kwargs.get("termination") if message is not None else None
        if termination:
            return termination
        if state.error is not None and state.error.has_error:
            return "error"
        return "failed"

    async def _record_iteration(self, state: SessionState) -> None:
        if self.ltm is None or not self.config.ltm_enabled or not state.objective:
            return
        answer = stringify_content(state.last_message.content)
        await self.ltm.record_iteration(state.objective, answer)
