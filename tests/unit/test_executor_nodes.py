"""
Unit tests for executor nodes: reasoning, tool execution, step validation,
human input and the executor exit.
"""

import asyncio
import time
from unittest.mock import patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langchain_core.tools import tool

from agentcycle.config.agent_config import AgentMode, ExecutionMode
from agentcycle.graph.machine import AwaitingExternalInput, Continue
from agentcycle.graph.nodes.executor import build_executor_nodes
from agentcycle.graph.plan import (
    History,
    HistoryItem,
    HistoryToolRecord,
    MessageResult,
    Plan,
    Step,
    StepStatus,
    StepType,
    TaskStatus,
    ValidatorVerdict,
)
from agentcycle.graph.state import ABORTED_RETRY
from agentcycle.tools.invoker import ToolInvoker
from agentcycle.utils.error_handler import StructuredOutputError


@tool
async def slow(query: str) -> str:
    """Sleep far longer than any test timeout."""
    await asyncio.sleep(5)
    return "late"


def _tool_call_message(name="lookup", args=None, call_id="call_1"):
    return AIMessage(content="", tool_calls=[{"name": name, "args": args or {"query": "Paris"}, "id": call_id}])


def _with_message(plan, index, content):
    steps = list(plan.steps)
    steps[index] = steps[index].model_copy(update={"message": MessageResult(content=content)})
    return plan.model_copy(update={"steps": steps})


class TestReasoningExecutor:
    """Model turn for the current step or reactive turn"""

    @pytest.mark.asyncio
    async def test_message_result_is_recorded_on_step(self, make_state, config, invoker, fake_model, two_step_plan):
        response = AIMessage(
            content="Paris has 2.1M inhabitants",
            usage_metadata={"input_tokens": 10, "output_tokens": 7, "total_tokens": 17},
        )
        nodes = build_executor_nodes(model=fake_model(response), tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state(plans_or_histories=two_step_plan))

        step = result.update["plans_or_histories"].steps[0]
        assert step.message.content == "Paris has 2.1M inhabitants"
        assert step.message.tokens == 7
        message = result.update["messages"][0]
        assert message.additional_kwargs == {"from": "reasoning_executor", "final": False}

    @pytest.mark.asyncio
    async def test_tool_calls_are_bound_to_planned_tools(self, make_state, config, invoker, fake_model, tools_step_plan):
        nodes = build_executor_nodes(model=fake_model(_tool_call_message()), tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state(plans_or_histories=tools_step_plan))

        tools = result.update["plans_or_histories"].steps[0].tools
        assert len(tools) == 1
        assert tools[0].metadata["tool_call_id"] == "call_1"
        assert tools[0].metadata["args"] == {"query": "Paris"}

    @pytest.mark.asyncio
    async def test_unplanned_calls_are_recorded(self, make_state, config, invoker, fake_model, tools_step_plan):
        response = AIMessage(content="", tool_calls=[
            {"name": "lookup", "args": {"query": "Paris"}, "id": "call_1"},
            {"name": "add", "args": {"a": 1, "b": 2}, "id": "call_2"},
        ])
        nodes = build_executor_nodes(model=fake_model(response), tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state(plans_or_histories=tools_step_plan))

        names = [spec.name for spec in result.update["plans_or_histories"].steps[0].tools]
        assert names == ["lookup", "add"]

    @pytest.mark.asyncio
    async def test_retry_prompt_carries_reason_and_attempt(self, make_state, config, invoker, fake_model, two_step_plan):
        model = fake_model(AIMessage(content="second try"))
        nodes = build_executor_nodes(model=model, tools=invoker, config=config)
        state = make_state(plans_or_histories=two_step_plan, retry=1)
        state.messages.append(AIMessage(content="Step validation failed", additional_kwargs={"reason": "too vague"}))

        await nodes["reasoning_executor"](state)

        context = model.invoke.call_args.args[0][1].content
        assert "attempt 2" in context
        assert "too vague" in context

    @pytest.mark.asyncio
    async def test_reactive_turn_creates_history(self, make_state, make_config, invoker, fake_model):
        config = make_config(execution_mode=ExecutionMode.REACTIVE)
        nodes = build_executor_nodes(model=fake_model(AIMessage(content="42")), tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state())

        history = result.update["plans_or_histories"]
        assert isinstance(history, History)
        assert history.latest().message.content == "42"
        assert result.update["messages"][0].additional_kwargs["final"] is True

    @pytest.mark.asyncio
    async def test_reactive_tool_turn_is_not_final(self, make_state, make_config, invoker, fake_model):
        config = make_config(execution_mode=ExecutionMode.REACTIVE)
        nodes = build_executor_nodes(model=fake_model(_tool_call_message()), tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state(plans_or_histories=History.create_empty()))

        item = result.update["plans_or_histories"].latest()
        assert item.type == "tools"
        assert item.tools[0].tool_call_id == "call_1"
        assert result.update["messages"][0].additional_kwargs["final"] is False

    @pytest.mark.asyncio
    async def test_exhausted_plan_fails_the_run(self, make_state, config, invoker, fake_model, two_step_plan):
        model = fake_model()
        nodes = build_executor_nodes(model=model, tools=invoker, config=config)

        result = await nodes["reasoning_executor"](make_state(plans_or_histories=two_step_plan, current_step_index=2))

        model.invoke.assert_not_called()
        assert result.update["error"].type == "validation_error"


class TestToolExecutor:
    """Tool turn execution, timeouts and truncation"""

    @pytest.mark.asyncio
    async def test_results_are_recorded_on_step(self, make_state, config, invoker, fake_model, tools_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        plan = tools_step_plan.model_copy(update={"steps": [
            tools_step_plan.steps[0].model_copy(update={"tools": [
                tools_step_plan.steps[0].tools[0].model_copy(update={"metadata": {"tool_call_id": "call_1"}})
            ]})
        ]})
        state = make_state(plans_or_histories=plan)
        state.messages.append(_tool_call_message())

        result = await nodes["tool_executor"](state)

        message = result.update["messages"][0]
        assert isinstance(message, ToolMessage)
        assert message.content == "Fact about Paris"
        assert message.additional_kwargs["from"] == "tools"
        assert result.update["plans_or_histories"].steps[0].tools[0].result == "Fact about Paris"

    @pytest.mark.asyncio
    async def test_results_are_recorded_on_history(self, make_state, config, invoker, fake_model):
        history = History(items=[HistoryItem(
            type="tools", tools=[HistoryToolRecord(name="lookup", tool_call_id="call_1")]
        )])
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=history)
        state.messages.append(_tool_call_message())

        result = await nodes["tool_executor"](state)

        record = result.update["plans_or_histories"].latest().tools[0]
        assert record.result == "Fact about Paris"
        assert record.status == "success"

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_results(self, make_state, config, fake_model, tools_step_plan):
        invoker = ToolInvoker([slow], timeout=0.05)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=tools_step_plan)
        state.messages.append(_tool_call_message(name="slow"))

        started = time.monotonic()
        result = await nodes["tool_executor"](state)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        message = result.update["messages"][0]
        assert message.status == "error"
        assert message.additional_kwargs["timeout"] is True
        assert "error" not in result.update

    @pytest.mark.asyncio
    async def test_oversized_output_is_truncated(self, make_state, make_config, invoker, fake_model, tools_step_plan):
        config = make_config(tool_output_max_chars=10)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=tools_step_plan)
        state.messages.append(_tool_call_message())

        result = await nodes["tool_executor"](state)

        content = result.update["messages"][0].content
        assert content.startswith("Fact about")
        assert "[Output truncated: showing 10 of 16 characters]" in content

    @pytest.mark.asyncio
    async def test_result_processing_failure_is_reported(self, make_state, config, invoker, fake_model, tools_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=tools_step_plan)
        state.messages.append(_tool_call_message())

        with patch("agentcycle.graph.nodes.executor.truncate_tool_message", side_effect=RuntimeError("bad bytes")):
            result = await nodes["tool_executor"](state)

        message = result.update["messages"][0]
        assert message.content == "Tool execution completed but result processing failed: bad bytes"
        assert message.status == "error"
        assert message.tool_call_id == "call_1"

    @pytest.mark.asyncio
    async def test_missing_tool_calls_fail_the_run(self, make_state, config, invoker, fake_model):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        result = await nodes["tool_executor"](make_state())
        assert result.update["error"].type == "tool_error"


class TestExecutorValidator:
    """Step acceptance, retries and aborts"""

    @pytest.mark.asyncio
    async def test_success_advances_step(self, make_state, config, invoker, fake_model, two_step_plan):
        validator = fake_model(ValidatorVerdict(success=True, result="complete"))
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)
        state = make_state(plans_or_histories=_with_message(two_step_plan, 0, "facts"), retry=1)

        result = await nodes["executor_validator"](state)

        assert result.update["current_step_index"] == 1
        assert result.update["retry"] == 0
        assert result.update["plans_or_histories"].steps[0].status == StepStatus.COMPLETED
        assert result.update["messages"][0].additional_kwargs["final"] is False

    @pytest.mark.asyncio
    async def test_last_step_success_is_final(self, make_state, config, invoker, fake_model, two_step_plan):
        validator = fake_model(ValidatorVerdict(success=True, result="done"))
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)
        state = make_state(plans_or_histories=_with_message(two_step_plan, 1, "Paris"), current_step_index=1)

        result = await nodes["executor_validator"](state)

        assert result.update["current_step_index"] == 2
        assert result.update["messages"][0].additional_kwargs["final"] is True

    @pytest.mark.asyncio
    async def test_failure_increments_retry(self, make_state, config, invoker, fake_model, two_step_plan):
        validator = fake_model(ValidatorVerdict(success=False, result="no source cited"))
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)

        result = await nodes["executor_validator"](make_state(plans_or_histories=two_step_plan, retry=1))

        assert result.update["retry"] == 2
        assert "current_step_index" not in result.update
        assert result.update["messages"][0].additional_kwargs["reason"] == "no source cited"

    @pytest.mark.asyncio
    async def test_validator_error_aborts(self, make_state, config, invoker, fake_model, two_step_plan):
        validator = fake_model(StructuredOutputError("unparseable verdict"))
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)

        result = await nodes["executor_validator"](make_state(plans_or_histories=two_step_plan))

        assert result.update["retry"] == ABORTED_RETRY
        assert result.update["plans_or_histories"].steps[0].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_timed_out_tools_fail_without_model(self, make_state, config, invoker, fake_model, tools_step_plan):
        validator = fake_model()
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)
        state = make_state(plans_or_histories=tools_step_plan)
        state.messages.append(ToolMessage(
            content="Tool slow timed out after 0.05s",
            tool_call_id="call_1",
            name="slow",
            status="error",
            additional_kwargs={"from": "tools", "timeout": True},
        ))

        result = await nodes["executor_validator"](state)

        validator.invoke.assert_not_called()
        assert result.update["retry"] == 1
        assert "timed out" in result.update["messages"][0].additional_kwargs["reason"]

    @pytest.mark.asyncio
    async def test_history_success_does_not_move_index(self, make_state, config, invoker, fake_model):
        validator = fake_model(ValidatorVerdict(success=True, result="ok"))
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config, validator_model=validator)
        history = History(items=[HistoryItem(type="message", message=MessageResult(content="hi"))])

        result = await nodes["executor_validator"](make_state(plans_or_histories=history, current_step_index=0))

        assert result.update["retry"] == 0
        assert "current_step_index" not in result.update
        assert "plans_or_histories" not in result.update


class TestHuman:
    """Suspension for human input and resumption"""

    def _plan(self):
        return Plan(steps=[Step(
            step_number=1, step_name="Confirm", description="Which city should I book?",
            type=StepType.HUMAN_IN_THE_LOOP,
        )])

    @pytest.mark.asyncio
    async def test_suspends_without_input(self, make_state, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.HYBRID, human_in_the_loop=True)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)

        result = await nodes["human"](make_state(plans_or_histories=self._plan()))

        assert isinstance(result, AwaitingExternalInput)
        assert result.prompt == "Which city should I book?"
        assert result.update["interrupted_at"] == "human"

    @pytest.mark.asyncio
    async def test_consumes_external_input(self, make_state, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.HYBRID, human_in_the_loop=True)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=self._plan(), external_input="Lisbon", interrupted_at="human")

        result = await nodes["human"](state)

        assert isinstance(result, Continue)
        assert isinstance(result.update["messages"][0], HumanMessage)
        assert result.update["external_input"] is None
        assert result.update["interrupted_at"] is None
        assert result.update["plans_or_histories"].steps[0].message.content == "Lisbon"


class TestExecutorEnd:
    """Executor exit: replan, pass-through, completion or task verification"""

    @pytest.mark.asyncio
    async def test_replan_request_forces_planner(self, make_state, config, invoker, fake_model, two_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=two_step_plan)
        state.messages.append(AIMessage(content="REQUEST_REPLAN: source is gone"))

        result = await nodes["executor_end"](state)
        assert result.update["skip_validation"].goto == "planning_orchestrator"

    @pytest.mark.asyncio
    async def test_unfinished_plan_passes_through(self, make_state, config, invoker, fake_model, two_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=two_step_plan, current_step_index=1)
        state.messages.append(AIMessage(content="Step 1 validated", additional_kwargs={"final": False}))

        result = await nodes["executor_end"](state)
        assert result.update == {"last_node": "executor_end"}

    @pytest.mark.asyncio
    async def test_interactive_finished_plan_completes(self, make_state, config, invoker, fake_model, two_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        plan = _with_message(two_step_plan, 1, "The capital is Paris")
        state = make_state(plans_or_histories=plan, current_step_index=2)

        result = await nodes["executor_end"](state)

        message = result.update["messages"][0]
        assert message.content == "The capital is Paris"
        assert message.additional_kwargs["termination"] == "completed"
        assert result.update["skip_validation"].goto == "end_graph"

    @pytest.mark.asyncio
    async def test_autonomous_finished_plan_awaits_verification(
        self, make_state, make_config, invoker, fake_model, two_step_plan
    ):
        config = make_config(mode=AgentMode.AUTONOMOUS)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)

        result = await nodes["executor_end"](make_state(plans_or_histories=two_step_plan, current_step_index=2))

        assert result.update["plans_or_histories"].status == TaskStatus.WAITING_VALIDATION
        assert "messages" not in result.update

    @pytest.mark.asyncio
    async def test_reactive_final_turn_completes(self, make_state, make_config, invoker, fake_model):
        config = make_config(execution_mode=ExecutionMode.REACTIVE)
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        history = History(items=[HistoryItem(type="message", message=MessageResult(content="42"))])
        state = make_state(plans_or_histories=history)
        state.messages.append(AIMessage(content="42", additional_kwargs={"final": True}))

        result = await nodes["executor_end"](state)
        assert result.update["messages"][0].content == "42"
        assert result.update["messages"][0].additional_kwargs["termination"] == "completed"


class TestEndExecutorGraph:
    """Failure exit explains the stop"""

    @pytest.mark.asyncio
    async def test_exit_reports_last_rejection(self, make_state, config, invoker, fake_model, two_step_plan):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state(plans_or_histories=two_step_plan, retry=3)
        state.messages.append(AIMessage(content="Step validation failed", additional_kwargs={"reason": "no sources"}))

        result = await nodes["end_executor_graph"](state)

        message = result.update["messages"][0]
        assert message.content == "Executor could not complete the task: no sources"
        assert message.additional_kwargs["termination"] == "failed"
        assert result.update["skip_validation"].goto == "end_graph"

    @pytest.mark.asyncio
    async def test_exit_keeps_existing_termination(self, make_state, config, invoker, fake_model):
        nodes = build_executor_nodes(model=fake_model(), tools=invoker, config=config)
        state = make_state()
        state.messages.append(AIMessage(content="Model failed", additional_kwargs={"termination": "error"}))

        result = await nodes["end_executor_graph"](state)
        assert "messages" not in result.update
