"""Planner nodes: plan creation, revision, adaptive extension and validation."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from agentcycle.graph.machine import Continue, NodeFn
from agentcycle.graph.message_utils import (
    describe_objective,
    format_ltm_for_context,
    format_plan_created,
    format_plan_summary,
    format_step_for_stm,
    latest_rejection_reason,
)
from agentcycle.graph.node_ids import PlannerNode
from agentcycle.graph.nodes.orchestrator import build_terminal_exit
from agentcycle.graph.plan import (
    History,
    Plan,
    PlanDraft,
    PlannerStatusVerdict,
    StepStatus,
    StepType,
    TaskStatus,
    ValidatorVerdict,
    steps_from_drafts,
)
from agentcycle.graph.prompts import (
    ADAPTIVE_PLANNER_CONTEXT_PROMPT,
    PLAN_VALIDATOR_CONTEXT_PROMPT,
    PLAN_VALIDATOR_SYSTEM_PROMPT,
    PLANNER_CONTEXT_PROMPT,
    PLANNER_STATUS_SYSTEM_PROMPT,
    PLANNER_SYSTEM_PROMPT,
    REPLAN_CONTEXT_PROMPT,
    build_agent_identity,
    get_current_datetime_tag,
)
from agentcycle.graph.state import SessionState
from agentcycle.utils.error_handler import (
    AgentCycleError,
    ConfigurationError,
    ValidationFailure,
    with_error_boundary,
)
from agentcycle.utils.logging_utils import log_node_entry, log_node_exit, log_plan_created

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.models.client import ModelClient
    from agentcycle.tools.invoker import ToolInvoker

LOGGER = logging.getLogger("agentcycle.planner")

PLACEHOLDER_PATTERN = re.compile(
    r"<[^<>]+>|\bTODO\b|placeholder|\bexample\b|\bmock\b|\bdummy\b|lorem ipsum|\blorem\b",
    re.IGNORECASE,
)


def _iter_string_values(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_string_values(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_string_values(item)


def check_plan_structure(plan: Plan, available_tools: Iterable[str]) -> Optional[str]:
    """Return the first structural problem of `plan`, or None when it is sound.

    Tool steps may only cite available tools and must not carry placeholder
    input values.
    """
    available = set(available_tools)
    if not plan.steps:
        return "Plan has no steps"
    for expected, step in enumerate(plan.steps, 1):
        if step.step_number != expected:
            return f"Step numbering is not sequential at step {step.step_number} (expected {expected})"
        if step.type != StepType.TOOLS:
            continue
        if not step.tools:
            return f"Step {step.step_number} is a tools step but cites no tool"
        for tool in step.tools:
            if tool.name not in available:
                return f"Step {step.step_number} cites unavailable tool '{tool.name}'"
            for text in _iter_string_values(tool.inputs):
                if PLACEHOLDER_PATTERN.search(text):
                    return f"Step {step.step_number} uses placeholder input '{text}' for tool '{tool.name}'"
    return None


def build_planner_nodes(
    *,
    model: "ModelClient",
    tools: "ToolInvoker",
    config: "AgentConfig",
    validator_model: Optional["ModelClient"] = None,
) -> Dict[str, NodeFn]:
    """Create the planner nodes bound to their model and the tool catalog."""

    validator_model = validator_model or model
    identity = build_agent_identity(config)
    planner_system = f"{PLANNER_SYSTEM_PROMPT.format(identity=identity)}\n\n{get_current_datetime_tag()}"

    def _planner_context(state: SessionState) -> str:
        return PLANNER_CONTEXT_PROMPT.format(
            objective=describe_objective(state, config),
            tools=tools.describe(),
            stm=state.memories.stm.render(),
            ltm=format_ltm_for_context(state.memories.ltm.items) or "None.",
        )

    async def _draft(context: str) -> PlanDraft:
        return await model.invoke(
            [SystemMessage(content=planner_system), HumanMessage(content=context)],
            schema=PlanDraft,
        )

    @with_error_boundary(PlannerNode.CREATE_INITIAL_PLAN.value)
    async def create_initial_plan(state: SessionState) -> Continue:
        node = PlannerNode.CREATE_INITIAL_PLAN.value
        log_node_entry(LOGGER, node, state)

        draft = await _draft(_planner_context(state))
        if not draft.steps:
            raise ValidationFailure("Planner returned a plan without steps", user_message="No plan could be built")

        plan = Plan(steps=steps_from_drafts(draft.steps), summary=draft.summary)
        log_plan_created(LOGGER, plan)

        updates = {
            "messages": [
                AIMessage(content=format_plan_created(plan), additional_kwargs={"from": node, "final": False})
            ],
            "last_node": node,
            "plans_or_histories": plan,
            "current_step_index": 0,
            "retry": 0,
        }
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(PlannerNode.PLAN_REVISION.value)
    async def plan_revision(state: SessionState) -> Continue:
        node = PlannerNode.PLAN_REVISION.value
        log_node_entry(LOGGER, node, state)

        previous = state.active_plan()
        reason = latest_rejection_reason(state.messages) or "The previous plan did not achieve the goal"
        context = REPLAN_CONTEXT_PROMPT.format(
            objective=describe_objective(state, config),
            previous_plan=format_plan_summary(previous) if previous else "None.",
            rejection_reason=reason,
            tools=tools.describe(),
        )
        draft = await _draft(context)
        if not draft.steps:
            raise ValidationFailure("Planner returned a revised plan without steps", user_message="No plan could be built")

        plan = Plan(steps=steps_from_drafts(draft.steps), summary=draft.summary)
        if previous is not None:
            plan = plan.model_copy(update={"id": previous.id})
        LOGGER.info(f"Plan {plan.id[:8]} revised for: {reason[:120]}")
        log_plan_created(LOGGER, plan)

        updates = {
            "messages": [
                AIMessage(content=format_plan_created(plan, "revised"), additional_kwargs={"from": node, "final": False})
            ],
            "last_node": node,
            "plans_or_histories": plan,
            "current_step_index": 0,
        }
        # Validator retries accumulate across revisions; other callers start fresh.
        if state.last_node != PlannerNode.PLANNER_VALIDATOR.value:
            updates["retry"] = 0
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(PlannerNode.EVOLVE_FROM_HISTORY.value)
    async def evolve_from_history(state: SessionState) -> Continue:
        node = PlannerNode.EVOLVE_FROM_HISTORY.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        if plan is None:
            raise ValidationFailure("No plan to extend")

        completed = [format_step_for_stm(step) for step in plan.steps if step.status == StepStatus.COMPLETED]
        context = ADAPTIVE_PLANNER_CONTEXT_PROMPT.format(
            objective=describe_objective(state, config),
            existing_plan=format_plan_summary(plan),
            completed="\n".join(completed) or "None.",
            tools=tools.describe(),
        )
        draft = await _draft(context)

        existing = len(plan.steps)
        new_steps = steps_from_drafts(draft.steps, start_number=existing + 1)
        if not new_steps:
            updates = {
                "messages": [
                    AIMessage(
                        content="PLAN_COMPLETED: the objective is reached, no further steps are needed.",
                        additional_kwargs={"from": node, "final": True, "termination": "completed"},
                    )
                ],
                "last_node": node,
            }
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        extended = plan.model_copy(update={
            "steps": [*plan.steps, *new_steps],
            "summary": draft.summary or plan.summary,
            "status": TaskStatus.PENDING,
        })
        LOGGER.info(f"Plan {plan.id[:8]} extended with steps {existing + 1}..{existing + len(new_steps)}")

        updates = {
            "messages": [
                AIMessage(
                    content=format_plan_created(extended, "extended"),
                    additional_kwargs={"from": node, "final": False},
                )
            ],
            "last_node": node,
            "plans_or_histories": extended,
            "current_step_index": existing,
            "retry": 0,
        }
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(PlannerNode.PLANNER_VALIDATOR.value)
    async def planner_validator(state: SessionState) -> Continue:
        node = PlannerNode.PLANNER_VALIDATOR.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        if plan is None:
            raise ValidationFailure("No plan to validate")

        problem = check_plan_structure(plan, tools.tool_names)
        if problem is not None:
            verdict = ValidatorVerdict(success=False, result=problem)
        else:
            verdict = await validator_model.invoke(
                [
                    SystemMessage(content=PLAN_VALIDATOR_SYSTEM_PROMPT),
                    HumanMessage(content=PLAN_VALIDATOR_CONTEXT_PROMPT.format(
                        objective=describe_objective(state, config),
                        plan=format_plan_summary(plan),
                    )),
                ],
                schema=ValidatorVerdict,
            )

        if verdict.success:
            message = AIMessage(
                content=f"Plan validated: {verdict.result}",
                additional_kwargs={"from": node, "final": False, "validated": True, "result": verdict.result},
            )
            updates = {"messages": [message], "last_node": node, "retry": 0}
        else:
            LOGGER.warning(f"Plan rejected (retry {state.retry + 1}/{config.max_retries}): {verdict.result}")
            message = AIMessage(
                content=f"Plan rejected: {verdict.result}",
                additional_kwargs={"from": node, "final": False, "validated": False, "reason": verdict.result},
            )
            updates = {"messages": [message], "last_node": node, "retry": state.retry + 1}

        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(PlannerNode.GET_PLANNER_STATUS.value)
    async def get_planner_status(state: SessionState) -> Continue:
        node = PlannerNode.GET_PLANNER_STATUS.value
        log_node_entry(LOGGER, node, state)

        try:
            verdict = await validator_model.invoke(
                [
                    SystemMessage(content=PLANNER_STATUS_SYSTEM_PROMPT),
                    HumanMessage(content=describe_objective(state, config)),
                ],
                schema=PlannerStatusVerdict,
            )
        except ConfigurationError:
            raise
        except AgentCycleError as e:
            # Fail safe: never loop into planning on a detection error.
            LOGGER.warning(f"Planner status detection failed, planning disabled: {e}")
            verdict = PlannerStatusVerdict(activated=False, reason=f"Detection failed: {e.user_message}")

        message = AIMessage(
            content=f"Planning {'activated' if verdict.activated else 'disabled'}: {verdict.reason}",
            additional_kwargs={"from": node, "final": False, "activated": verdict.activated},
        )
        updates = {"messages": [message], "last_node": node}
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def create_initial_history(state: SessionState) -> Continue:
        node = PlannerNode.CREATE_INITIAL_HISTORY.value
        log_node_entry(LOGGER, node, state)
        updates = {
            "last_node": node,
            "plans_or_histories": History.create_empty(),
            "current_step_index": 0,
            "retry": 0,
        }
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def planner_end(state: SessionState) -> Continue:
        return Continue({"last_node": PlannerNode.END.value})

    return {
        PlannerNode.CREATE_INITIAL_PLAN.value: create_initial_plan,
        PlannerNode.CREATE_INITIAL_HISTORY.value: create_initial_history,
        PlannerNode.PLAN_REVISION.value: plan_revision,
        PlannerNode.EVOLVE_FROM_HISTORY.value: evolve_from_history,
        PlannerNode.PLANNER_VALIDATOR.value: planner_validator,
        PlannerNode.GET_PLANNER_STATUS.value: get_planner_status,
        PlannerNode.END.value: planner_end,
        PlannerNode.END_PLANNER_GRAPH.value: build_terminal_exit(PlannerNode.END_PLANNER_GRAPH, config, "Planner"),
    }
