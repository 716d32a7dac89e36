"""Task verification and the task/step updater."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from agentcycle.graph.machine import Continue, NodeFn
from agentcycle.graph.message_utils import describe_objective, format_plan_summary, format_step_for_stm
from agentcycle.graph.node_ids import GraphNode
from agentcycle.graph.plan import StepStatus, TaskStatus, TaskVerification
from agentcycle.graph.prompts import TASK_VERIFIER_CONTEXT_PROMPT, TASK_VERIFIER_SYSTEM_PROMPT
from agentcycle.graph.state import SessionState
from agentcycle.utils.error_handler import ValidationFailure, with_error_boundary
from agentcycle.utils.logging_utils import log_node_entry, log_node_exit

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.models.client import ModelClient

LOGGER = logging.getLogger("agentcycle.verifier")


def build_verifier_nodes(*, model: "ModelClient", config: "AgentConfig") -> Dict[str, NodeFn]:
    """Create the task verifier and task updater nodes."""

    @with_error_boundary(GraphNode.TASK_VERIFIER.value)
    async def task_verifier(state: SessionState) -> Continue:
        node = GraphNode.TASK_VERIFIER.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        if plan is None:
            raise ValidationFailure("No task to verify")

        executed = [format_step_for_stm(step) for step in reversed(plan.steps) if step.status == StepStatus.COMPLETED]
        verification = await model.invoke(
            [
                SystemMessage(content=TASK_VERIFIER_SYSTEM_PROMPT),
                HumanMessage(content=TASK_VERIFIER_CONTEXT_PROMPT.format(
                    objective=describe_objective(state, config),
                    plan=format_plan_summary(plan),
                    executed="\n".join(executed) or "None.",
                )),
            ],
            schema=TaskVerification,
        )

        accepted = (
            verification.task_completed
            and verification.confidence_score >= config.task_verification_threshold
        )
        LOGGER.info(
            f"Task verification: completed={verification.task_completed}, "
            f"confidence={verification.confidence_score}, accepted={accepted}"
        )

        content = (
            f"Task verification {'passed' if accepted else 'failed'} "
            f"({verification.confidence_score}% confidence): {verification.reasoning}"
        )
        if not accepted and verification.missing_elements:
            content += "\nMissing: " + "; ".join(verification.missing_elements)
        kwargs = {
            "from": node,
            "final": False,
            "task_completed": accepted,
            "needs_replan": not accepted,
            "confidence_score": verification.confidence_score,
            "missing_elements": list(verification.missing_elements),
            "next_actions": list(verification.next_actions),
        }
        if not accepted:
            kwargs["reason"] = content

        updates = {"messages": [AIMessage(content=content, additional_kwargs=kwargs)], "last_node": node}
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(GraphNode.TASK_UPDATER.value)
    async def task_updater(state: SessionState) -> Continue:
        node = GraphNode.TASK_UPDATER.value
        log_node_entry(LOGGER, node, state)
        updates = {"last_node": node}

        last_message = state.last_message
        plan = state.active_plan()
        if (
            plan is None
            or last_message is None
            or last_message.additional_kwargs.get("from") != GraphNode.TASK_VERIFIER.value
        ):
            LOGGER.debug("No verification outcome to apply")
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        succeeded = bool(last_message.additional_kwargs.get("task_completed"))
        memories = state.memories.copy()
        if succeeded:
            # Accepted early: the task stays open until its remaining steps have run.
            pending = sum(1 for step in plan.steps if step.status == StepStatus.PENDING)
            status = TaskStatus.PENDING if pending else TaskStatus.COMPLETED
            if pending:
                LOGGER.info(f"Task accepted with {pending} step(s) still pending, resuming execution")
            updates["plans_or_histories"] = plan.model_copy(update={"status": status})
            updates["current_task_index"] = state.current_task_index + 1
            verdict = "completed"
        else:
            # Index stays put so the same task is attempted again.
            updates["plans_or_histories"] = plan.model_copy(update={"status": TaskStatus.FAILED})
            verdict = "failed"

        memories.stm.push(
            f"Task {state.current_task_index + 1} {verdict}: {last_message.content}",
            key=f"{plan.id}:task:{state.current_task_index}",
        )
        updates["memories"] = memories

        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    return {
        GraphNode.TASK_VERIFIER.value: task_verifier,
        GraphNode.TASK_UPDATER.value: task_updater,
    }
