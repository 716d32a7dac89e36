"""Executor nodes: reasoning, tool execution, step validation and human input."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from agentcycle.config.agent_config import AgentMode
from agentcycle.graph.machine import AwaitingExternalInput, Continue, NodeFn, NodeResult
from agentcycle.graph.message_utils import (
    describe_objective,
    estimate_tokens,
    format_execution_message,
    format_ltm_for_context,
    format_validator_input,
    has_tool_calls,
    is_replan_request,
    is_terminal_message,
    latest_rejection_reason,
    stringify_content,
    trailing_tool_messages,
)
from agentcycle.graph.node_ids import ExecutorNode, GraphNode
from agentcycle.graph.nodes.orchestrator import build_terminal_exit
from agentcycle.graph.plan import (
    History,
    HistoryItem,
    HistoryToolRecord,
    MessageResult,
    Plan,
    Step,
    StepStatus,
    TaskStatus,
    ToolSpec,
    ValidatorVerdict,
)
from agentcycle.graph.prompts import (
    STEP_VALIDATOR_CONTEXT_PROMPT,
    STEP_VALIDATOR_SYSTEM_PROMPT,
    build_agent_identity,
    get_current_datetime_tag,
    select_executor_prompt,
)
from agentcycle.graph.state import ABORTED_RETRY, SessionState, SkipValidation
from agentcycle.tools.invoker import timeout_tool_messages, truncate_tool_message
from agentcycle.utils.error_handler import (
    ConfigurationError,
    ToolExecutionError,
    ToolExecutionTimeout,
    ValidationFailure,
    with_error_boundary,
)
from agentcycle.utils.logging_utils import log_error, log_node_entry, log_node_exit, log_step_execution

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.models.client import ModelClient
    from agentcycle.tools.invoker import ToolInvoker

LOGGER = logging.getLogger("agentcycle.executor")

UNPLANNED_CALL = "Call not listed in the plan"


def _replace_step(plan: Plan, index: int, step: Step) -> Plan:
    steps = list(plan.steps)
    steps[index] = step
    return plan.model_copy(update={"steps": steps})


def _append_history_item(history: History, item: HistoryItem) -> History:
    return history.model_copy(update={"items": [*history.items, item]})


def _replace_latest_history_item(history: History, item: HistoryItem) -> History:
    return history.model_copy(update={"items": [*history.items[:-1], item]})


def _token_count(message: AIMessage) -> int:
    usage = getattr(message, "usage_metadata", None)
    if usage and usage.get("output_tokens"):
        return int(usage["output_tokens"])
    return estimate_tokens(stringify_content(message.content))


def _record_tool_calls_on_step(step: Step, tool_calls: List[dict]) -> Step:
    # Each attempt rebinds the planned tools to the new calls.
    specs = [
        spec.model_copy(update={
            "metadata": {k: v for k, v in spec.metadata.items() if k not in ("tool_call_id", "args")},
            "result": None,
        })
        for spec in step.tools
        if spec.description != UNPLANNED_CALL
    ]
    for call in tool_calls:
        target = next(
            (spec for spec in specs if spec.name == call["name"] and "tool_call_id" not in spec.metadata),
            None,
        )
        if target is None:
            target = ToolSpec(name=call["name"], description=UNPLANNED_CALL, inputs=call.get("args", {}))
            specs.append(target)
        target.metadata["tool_call_id"] = call.get("id")
        target.metadata["args"] = call.get("args", {})
    return step.model_copy(update={"tools": specs})


def _record_tool_results_on_step(step: Step, results: List[ToolMessage]) -> Step:
    by_id = {message.tool_call_id: message for message in results}
    specs = []
    for spec in step.tools:
        message = by_id.get(spec.metadata.get("tool_call_id"))
        if message is not None:
            spec = spec.model_copy(update={"result": stringify_content(message.content)})
        specs.append(spec)
    return step.model_copy(update={"tools": specs})


def _record_tool_results_on_history(history: History, results: List[ToolMessage]) -> History:
    latest = history.latest()
    if latest is None or latest.type != "tools":
        return history
    by_id = {message.tool_call_id: message for message in results}
    records = []
    for record in latest.tools:
        message = by_id.get(record.tool_call_id)
        if message is not None:
            record = record.model_copy(update={
                "result": stringify_content(message.content),
                "status": message.status,
            })
        records.append(record)
    return _replace_latest_history_item(history, latest.model_copy(update={"tools": records}))


def build_executor_nodes(
    *,
    model: "ModelClient",
    tools: "ToolInvoker",
    config: "AgentConfig",
    validator_model: Optional["ModelClient"] = None,
) -> Dict[str, NodeFn]:
    """Create the executor nodes bound to their models and tools."""

    validator_model = validator_model or model
    identity = build_agent_identity(config)

    @with_error_boundary(ExecutorNode.REASONING_EXECUTOR.value)
    async def reasoning_executor(state: SessionState) -> Continue:
        node = ExecutorNode.REASONING_EXECUTOR.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        history = state.active_history()
        step = state.current_step()
        if plan is not None and step is None:
            raise ValidationFailure(
                f"No step at index {state.current_step_index} of plan {plan.id[:8]}",
                user_message="The plan has no step left to execute",
            )

        is_retry = state.retry > 0
        prompt = select_executor_prompt(config, step.type if step else None, is_retry)
        if step is not None:
            log_step_execution(LOGGER, step, state.retry, config.max_retries)

        stm = state.memories.stm
        context = prompt.context.format(
            objective=describe_objective(state, config),
            step=format_execution_message(step) if step else "",
            stm=stm.render(),
            redundancy=(stm.redundancy_warning() or "") + "\n",
            ltm=format_ltm_for_context(state.memories.ltm.items) or "None.",
            rejection_reason=(latest_rejection_reason(state.messages) or "Not given") if is_retry else "",
            attempt=state.retry + 1,
        )
        system = f"{prompt.system.format(identity=identity)}\n\n{get_current_datetime_tag()}"

        response = await model.invoke(
            [SystemMessage(content=system), HumanMessage(content=context)],
            tools=tools.list_tools(),
        )

        updates = {"last_node": node}
        reactive = plan is None

        # Reactive turns need a container even on the first call of a session.
        if reactive and history is None:
            LOGGER.info("No active history, starting a new one")
            history = History.create_empty()

        if has_tool_calls(response):
            calls = list(response.tool_calls)
            if reactive:
                history = _append_history_item(history, HistoryItem(
                    type="tools",
                    tools=[
                        HistoryToolRecord(name=call["name"], args=call.get("args", {}), tool_call_id=call.get("id") or "")
                        for call in calls
                    ],
                ))
                updates["plans_or_histories"] = history
            else:
                updates["plans_or_histories"] = _replace_step(
                    plan, state.current_step_index, _record_tool_calls_on_step(step, calls)
                )
            final = False
        else:
            content = stringify_content(response.content)
            result = MessageResult(content=content, tokens=_token_count(response))
            if reactive:
                history = _append_history_item(history, HistoryItem(type="message", message=result))
                updates["plans_or_histories"] = history
                final = True
            else:
                updates["plans_or_histories"] = _replace_step(
                    plan, state.current_step_index, step.model_copy(update={"message": result})
                )
                final = is_terminal_message(response)

        updates["messages"] = [
            response.model_copy(update={
                "additional_kwargs": {**response.additional_kwargs, "from": node, "final": final},
            })
        ]
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    @with_error_boundary(ExecutorNode.TOOL_EXECUTOR.value)
    async def tool_executor(state: SessionState) -> Continue:
        node = ExecutorNode.TOOL_EXECUTOR.value
        log_node_entry(LOGGER, node, state)

        last_message = state.last_message
        if not has_tool_calls(last_message):
            raise ToolExecutionError("Tool executor entered without pending tool calls")
        calls = list(last_message.tool_calls)

        try:
            raw_results = await tools.invoke(calls)
        except ToolExecutionTimeout as e:
            LOGGER.warning(f"Tool timeout counted as a failed attempt: {e}")
            raw_results = timeout_tool_messages(calls, e)

        results: List[ToolMessage] = []
        for message in raw_results:
            try:
                message = truncate_tool_message(message, config.tool_output_max_chars)
            except Exception as e:
                log_error(LOGGER, e, f"Processing result of tool {message.name}")
                message = ToolMessage(
                    content=f"Tool execution completed but result processing failed: {e}",
                    tool_call_id=message.tool_call_id,
                    name=message.name,
                    status="error",
                )
            results.append(message.model_copy(update={
                "additional_kwargs": {**message.additional_kwargs, "from": "tools", "final": False},
            }))

        updates = {"messages": results, "last_node": node}
        plan = state.active_plan()
        history = state.active_history()
        if plan is not None:
            step = state.current_step()
            if step is not None:
                updates["plans_or_histories"] = _replace_step(
                    plan, state.current_step_index, _record_tool_results_on_step(step, results)
                )
        elif history is not None:
            updates["plans_or_histories"] = _record_tool_results_on_history(history, results)

        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def _judge(item: Union[Step, HistoryItem]) -> ValidatorVerdict:
        return await validator_model.invoke(
            [
                SystemMessage(content=STEP_VALIDATOR_SYSTEM_PROMPT),
                HumanMessage(content=STEP_VALIDATOR_CONTEXT_PROMPT.format(item=format_validator_input(item))),
            ],
            schema=ValidatorVerdict,
        )

    async def executor_validator(state: SessionState) -> Continue:
        node = ExecutorNode.EXECUTOR_VALIDATOR.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        history = state.active_history()
        step = state.current_step()

        try:
            timed_out = [m for m in trailing_tool_messages(state.messages) if m.additional_kwargs.get("timeout")]
            if timed_out:
                names = ", ".join(m.name or "tool" for m in timed_out)
                verdict = ValidatorVerdict(success=False, result=f"{names} timed out before returning a result")
            elif step is not None:
                verdict = await _judge(step)
            elif history is not None and history.latest() is not None:
                verdict = await _judge(history.latest())
            else:
                raise ValidationFailure("Nothing to validate: no active step or history item")
        except ConfigurationError:
            raise
        except Exception as e:
            log_error(LOGGER, e, "Step validation aborted")
            updates = {
                "messages": [
                    AIMessage(
                        content=f"Step validation aborted: {e}",
                        additional_kwargs={"from": node, "final": False, "validated": False, "reason": str(e)},
                    )
                ],
                "last_node": node,
                "retry": ABORTED_RETRY,
            }
            if plan is not None and step is not None:
                updates["plans_or_histories"] = _replace_step(
                    plan, state.current_step_index, step.model_copy(update={"status": StepStatus.FAILED})
                )
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        if not verdict.success:
            LOGGER.warning(f"Step rejected (retry {state.retry + 1}/{config.max_retries}): {verdict.result}")
            updates = {
                "messages": [
                    AIMessage(
                        content=f"Step validation failed: {verdict.result}",
                        additional_kwargs={"from": node, "final": False, "validated": False, "reason": verdict.result},
                    )
                ],
                "last_node": node,
                "retry": state.retry + 1,
            }
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        updates = {"last_node": node, "retry": 0}
        if plan is not None:
            # Only plans advance; reactive histories have no index to move.
            is_final = plan.is_last_index(state.current_step_index)
            updates["plans_or_histories"] = _replace_step(
                plan, state.current_step_index, step.model_copy(update={"status": StepStatus.COMPLETED})
            )
            updates["current_step_index"] = state.current_step_index + 1
            content = f"Step {step.step_number} validated: {verdict.result}"
        else:
            is_final = False
            content = f"Turn validated: {verdict.result}"
        updates["messages"] = [
            AIMessage(
                content=content,
                additional_kwargs={"from": node, "final": is_final, "validated": True, "result": verdict.result},
            )
        ]
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def human(state: SessionState) -> NodeResult:
        node = ExecutorNode.HUMAN.value
        log_node_entry(LOGGER, node, state)
        step = state.current_step()

        if state.external_input is None:
            prompt = step.description if step is not None else "Input required to continue"
            LOGGER.info(f"Waiting for human input: {prompt}")
            return AwaitingExternalInput(prompt=prompt, update={"last_node": node, "interrupted_at": node})

        reply = state.external_input
        updates = {
            "messages": [HumanMessage(content=reply, additional_kwargs={"from": node})],
            "last_node": node,
            "external_input": None,
            "interrupted_at": None,
        }
        plan = state.active_plan()
        if plan is not None and step is not None:
            updates["plans_or_histories"] = _replace_step(
                plan,
                state.current_step_index,
                step.model_copy(update={"message": MessageResult(content=reply, tokens=estimate_tokens(reply))}),
            )
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    async def executor_end(state: SessionState) -> Continue:
        node = ExecutorNode.END.value
        log_node_entry(LOGGER, node, state)

        plan = state.active_plan()
        last_message = state.last_message
        updates = {"last_node": node}

        if plan is not None and is_replan_request(last_message):
            LOGGER.info("Executor requested a replan")
            updates["skip_validation"] = SkipValidation(
                skip_validation=True, goto=GraphNode.PLANNING_ORCHESTRATOR.value
            )
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        finished = plan is not None and plan.is_finished(state.current_step_index)
        if not (is_terminal_message(last_message) or finished):
            log_node_exit(LOGGER, node, updates)
            return Continue(updates)

        if config.mode == AgentMode.INTERACTIVE or plan is None:
            updates["messages"] = [
                AIMessage(
                    content=_final_answer(state),
                    additional_kwargs={"from": node, "final": True, "termination": "completed"},
                )
            ]
            updates["skip_validation"] = SkipValidation(skip_validation=True, goto=GraphNode.END_GRAPH.value)
        else:
            updates["plans_or_histories"] = plan.model_copy(update={"status": TaskStatus.WAITING_VALIDATION})
        log_node_exit(LOGGER, node, updates)
        return Continue(updates)

    return {
        ExecutorNode.REASONING_EXECUTOR.value: reasoning_executor,
        ExecutorNode.TOOL_EXECUTOR.value: tool_executor,
        ExecutorNode.EXECUTOR_VALIDATOR.value: executor_validator,
        ExecutorNode.HUMAN.value: human,
        ExecutorNode.END.value: executor_end,
        ExecutorNode.END_EXECUTOR_GRAPH.value: build_terminal_exit(ExecutorNode.END_EXECUTOR_GRAPH, config, "Executor"),
    }


def _final_answer(state: SessionState) -> str:
    """Text of the last substantive answer: a step or turn result, else the last AI message."""
    plan = state.active_plan()
    if plan is not None:
        for step in reversed(plan.steps):
            if step.message is not None:
                return step.message.content
    history = state.active_history()
    if history is not None:
        for item in reversed(history.items):
            if item.message is not None:
                return item.message.content
    last_ai = state.last_ai_message()
    return stringify_content(last_ai.content) if last_ai else "Task completed."
