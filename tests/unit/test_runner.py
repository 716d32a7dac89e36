"""
Tests for the session runner driving the full state machine with scripted models.
"""

import pytest
from langchain_core.messages import AIMessage

from agentcycle.config.agent_config import AgentMode, ExecutionMode
from agentcycle.graph.builder import build_state_machine
from agentcycle.graph.plan import (
    PlanDraft,
    StepDraft,
    StepStatus,
    StepType,
    TaskVerification,
    ValidatorVerdict,
)
from agentcycle.persistence import InMemoryCheckpointer
from agentcycle.runtime.runner import GraphRunner
from agentcycle.utils.error_handler import (
    AgentCycleError,
    ConfigurationError,
    IterationCeilingReached,
    ModelInvocationError,
)


def _plan(*names, step_type=StepType.MESSAGE):
    return PlanDraft(steps=[StepDraft(step_name=name, description=f"Do {name}", type=step_type) for name in names])


def _runner(config, invoker, model, validator, checkpointer=None):
    machine = build_state_machine(model=model, tools=invoker, config=config, validator_model=validator)
    return GraphRunner(machine, config, checkpointer=checkpointer)


pytestmark = pytest.mark.integration


class TestInteractivePlanning:
    """Plan, execute every step, answer"""

    @pytest.mark.asyncio
    async def test_two_step_plan_completes(self, make_config, invoker, fake_model):
        config = make_config()
        model = fake_model(
            _plan("Research", "Answer"),
            AIMessage(content="Paris is in France"),
            AIMessage(content="The capital of France is Paris"),
        )
        validator = fake_model(
            ValidatorVerdict(success=True, result="plan ok"),
            ValidatorVerdict(success=True, result="step 1 ok"),
            ValidatorVerdict(success=True, result="step 2 ok"),
        )

        result = await _runner(config, invoker, model, validator).run("What is the capital of France?")

        assert result.status == "completed"
        assert result.final_answer == "The capital of France is Paris"
        # end_graph clears per-run state.
        assert result.state.plans_or_histories is None
        assert result.state.current_step_index == 0
        assert result.state.last_node == "end_graph"
        assert len(result.state.memories.stm) == 1
        assert model.invoke.await_count == 3
        assert validator.invoke.await_count == 3

    @pytest.mark.asyncio
    async def test_step_rejected_until_retry_limit(self, make_config, invoker, fake_model):
        config = make_config(max_retries=3, plan_validation_enabled=False)
        model = fake_model(
            _plan("Research"),
            AIMessage(content="attempt 1"),
            AIMessage(content="attempt 2"),
            AIMessage(content="attempt 3"),
        )
        validator = fake_model(*[ValidatorVerdict(success=False, result="no source cited")] * 3)

        result = await _runner(config, invoker, model, validator).run("Find the population of Paris")

        assert result.status == "failed"
        assert result.final_answer == "Executor could not complete the task: no source cited"
        assert model.invoke.await_count == 4

    @pytest.mark.asyncio
    async def test_rejected_plans_end_planning(self, make_config, invoker, fake_model):
        config = make_config(max_retries=2)
        model = fake_model(_plan("Vague"), _plan("Still vague"))
        validator = fake_model(
            ValidatorVerdict(success=False, result="too vague"),
            ValidatorVerdict(success=False, result="still too vague"),
        )

        result = await _runner(config, invoker, model, validator).run("Plan a trip")

        assert result.status == "failed"
        assert result.final_answer == "Planner could not complete the task: still too vague"

    @pytest.mark.asyncio
    async def test_model_failure_ends_with_error(self, make_config, invoker, fake_model):
        config = make_config()
        model = fake_model(ModelInvocationError("503 from provider", user_message="provider unavailable"))

        result = await _runner(config, invoker, model, fake_model()).run("Plan a trip")

        assert result.status == "error"
        assert result.state.error.source == "create_initial_plan"
        assert "provider unavailable" in result.final_answer


class TestReactive:
    """Reactive loop: tool turn, validation, final answer"""

    @pytest.mark.asyncio
    async def test_tool_turn_then_answer(self, make_config, invoker, fake_model):
        config = make_config(execution_mode=ExecutionMode.REACTIVE)
        model = fake_model(
            AIMessage(content="", tool_calls=[{"name": "lookup", "args": {"query": "France"}, "id": "call_1"}]),
            AIMessage(content="The capital of France is Paris"),
        )
        validator = fake_model(ValidatorVerdict(success=True, result="lookup answered"))

        result = await _runner(config, invoker, model, validator).run("What is the capital of France?")

        assert result.status == "completed"
        assert result.final_answer == "The capital of France is Paris"
        tool_results = [m for m in result.state.messages if m.type == "tool"]
        assert tool_results[0].content == "Fact about France"
        assert "Tool: lookup->Fact about France" in result.state.memories.stm.render()


class TestCeiling:
    """The graph step ceiling always terminates the session"""

    @pytest.mark.asyncio
    async def test_ceiling_reports_iteration_ceiling(self, make_config, invoker, fake_model):
        config = make_config(max_graph_steps=6, max_retries=20, plan_validation_enabled=False)
        model = fake_model(_plan("Research"), *[AIMessage(content="again")] * 20)
        validator = fake_model(*[ValidatorVerdict(success=False, result="no")] * 20)

        runner = _runner(config, invoker, model, validator)

        result = await runner.run("Loop forever")

        assert result.status == "iteration_ceiling"
        assert "maximum of 6 graph steps" in result.final_answer
        assert result.state.current_graph_step < runner.hard_limit
        assert model.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_hard_limit_raises(self, make_config, invoker, fake_model):
        config = make_config(max_graph_steps=6)
        runner = _runner(config, invoker, fake_model(), fake_model())
        runner.hard_limit = 1

        with pytest.raises(IterationCeilingReached):
            await runner.run("anything")


class TestHybridSuspension:
    """Human steps suspend the session until resume"""

    @pytest.mark.asyncio
    async def test_suspend_and_resume(self, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.HYBRID, human_in_the_loop=True, plan_validation_enabled=False)
        model = fake_model(
            _plan("Pick city", step_type=StepType.HUMAN_IN_THE_LOOP),
            AIMessage(content="Booked a hotel in Lisbon"),
            PlanDraft(steps=[]),
        )
        validator = fake_model(
            ValidatorVerdict(success=True, result="booked"),
            TaskVerification(task_completed=True, confidence_score=90, reasoning="Hotel booked"),
        )
        checkpointer = InMemoryCheckpointer()
        runner = _runner(config, invoker, model, validator, checkpointer=checkpointer)

        suspended = await runner.run("Book a hotel")

        assert suspended.status == "awaiting_input"
        assert suspended.prompt == "Do Pick city"
        assert suspended.final_answer is None
        assert suspended.session_id in checkpointer
        assert model.invoke.await_count == 1

        result = await runner.resume(suspended.session_id, "Lisbon")

        assert result.status == "completed"
        assert result.final_answer.startswith("PLAN_COMPLETED")
        human_replies = [m for m in result.state.messages if m.type == "human" and m.content == "Lisbon"]
        assert len(human_replies) == 1
        assert result.state.interrupted_at is None
        reasoning_context = model.invoke.call_args_list[1].args[0][1].content
        assert "Human input: Lisbon" in reasoning_context

    def test_hybrid_requires_checkpointer(self, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.HYBRID, human_in_the_loop=True)
        machine = build_state_machine(model=fake_model(), tools=invoker, config=config)
        with pytest.raises(ConfigurationError):
            GraphRunner(machine, config)

    @pytest.mark.asyncio
    async def test_resume_unknown_session(self, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.HYBRID, human_in_the_loop=True)
        runner = _runner(config, invoker, fake_model(), fake_model(), checkpointer=InMemoryCheckpointer())
        with pytest.raises(AgentCycleError):
            await runner.resume("missing", "hello")


class TestAutonomousCycle:
    """Verification drives the next planning cycle"""

    @pytest.mark.asyncio
    async def test_verified_task_evolves_plan(self, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.AUTONOMOUS, plan_validation_enabled=False)
        model = fake_model(
            _plan("Collect"),
            AIMessage(content="Collected 3 prices"),
            _plan("Report"),
            AIMessage(content="Report written"),
            PlanDraft(steps=[]),
        )
        validator = fake_model(
            ValidatorVerdict(success=True, result="collected"),
            TaskVerification(task_completed=True, confidence_score=95, reasoning="Prices collected"),
            ValidatorVerdict(success=True, result="reported"),
            TaskVerification(task_completed=True, confidence_score=95, reasoning="Report done"),
        )

        result = await _runner(config, invoker, model, validator).run("Track prices")

        assert result.status == "completed"
        assert result.state.current_task_index == 2
        evolve_prompt = model.invoke.call_args_list[2].args[0][1].content
        assert "S1:Collect" in evolve_prompt
        assert StepStatus.COMPLETED.value in evolve_prompt

    @pytest.mark.asyncio
    async def test_early_final_answer_still_runs_pending_steps(self, make_config, invoker, fake_model):
        config = make_config(mode=AgentMode.AUTONOMOUS, plan_validation_enabled=False)
        model = fake_model(
            _plan("Collect", "Compare", "Report"),
            AIMessage(content="Collected 3 prices"),
            AIMessage(content="Compared prices"),
            AIMessage(content="Report written"),
            PlanDraft(steps=[]),
        )
        validator = fake_model(
            ValidatorVerdict(success=True, result="FINAL ANSWER: prices are known"),
            TaskVerification(task_completed=True, confidence_score=90, reasoning="Prices known"),
            ValidatorVerdict(success=True, result="compared"),
            ValidatorVerdict(success=True, result="reported"),
            TaskVerification(task_completed=True, confidence_score=95, reasoning="Report done"),
        )

        result = await _runner(config, invoker, model, validator).run("Track prices")

        assert result.status == "completed"
        answers = [m.content for m in result.state.messages if m.additional_kwargs.get("from") == "reasoning_executor"]
        assert answers == ["Collected 3 prices", "Compared prices", "Report written"]
        assert model.invoke.await_count == 5
        assert validator.invoke.await_count == 5
        # Planning resumes only once the last step has run.
        evolve_prompt = model.invoke.call_args_list[4].args[0][1].content
        assert "S3:Report" in evolve_prompt
