"""Prompt templates shared across nodes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from agentcycle.config.agent_config import AgentMode, ExecutionMode
from agentcycle.graph.plan import StepType
from agentcycle.utils.error_handler import ConfigurationError

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig


def get_current_datetime_tag() -> str:
    now = datetime.now(timezone.utc)
    return f"<current_datetime>{now.strftime('%Y-%m-%d %H:%M:%S UTC')}</current_datetime>"


def build_agent_identity(config: "AgentConfig") -> str:
    lines = [f"You are {config.name}."]
    if config.description:
        lines.append(config.description)
    if config.objectives:
        lines.append("Your objectives:")
        lines.extend(f"- {objective}" for objective in config.objectives)
    return "\n".join(lines)


# ========== Planner ==========

PLANNER_SYSTEM_PROMPT = """{identity}

You turn a goal into an ordered execution plan.
Rules:
- Every step is one of: "tools" (calls one or more tools), "message" (reasoning or writing), "human_in_the_loop" (needs a person).
- A "tools" step may only cite tools from the AVAILABLE TOOLS list, by exact name.
- Never use placeholder, example or mock input values. Every input must come from the goal or from an earlier step.
- Keep the plan as short as the goal allows."""

PLANNER_CONTEXT_PROMPT = """GOAL:
{objective}

AVAILABLE TOOLS:
{tools}

RECENT MEMORY:
{stm}

RELEVANT LONG-TERM MEMORY:
{ltm}"""

REPLAN_CONTEXT_PROMPT = """GOAL:
{objective}

PREVIOUS PLAN:
{previous_plan}

REJECTION REASON (the new plan must resolve it explicitly):
{rejection_reason}

AVAILABLE TOOLS:
{tools}"""

ADAPTIVE_PLANNER_CONTEXT_PROMPT = """GOAL:
{objective}

EXISTING PLAN (do not repeat, renumber or modify these steps):
{existing_plan}

RESULTS OF COMPLETED STEPS:
{completed}

AVAILABLE TOOLS:
{tools}

Propose ONLY the new steps that continue from the completed work. Return an empty list when the goal is already met."""

PLAN_VALIDATOR_SYSTEM_PROMPT = """You review execution plans.
Decide whether the plan fully and realistically achieves the goal with the available tools.
Answer success=true or success=false, with a short reason (max 300 chars) in result."""

PLAN_VALIDATOR_CONTEXT_PROMPT = """GOAL:
{objective}

PLAN:
{plan}"""

PLANNER_STATUS_SYSTEM_PROMPT = """Decide whether a request needs a multi-step plan.
Simple questions and single actions do not. Answer activated=true only when several dependent steps are required."""

# ========== Executor ==========

TOOLS_STEP_EXECUTOR_SYSTEM_PROMPT = """{identity}

You execute ONE step of a plan by calling the tools it needs.
Call tools with concrete arguments. Do not answer the whole goal, only this step.
If the plan can no longer work, reply with REQUEST_REPLAN and the reason.
When the entire goal is achieved, reply with FINAL ANSWER followed by the answer."""

MESSAGE_STEP_EXECUTOR_SYSTEM_PROMPT = """{identity}

You execute ONE reasoning step of a plan and reply with its result as text.
If the plan can no longer work, reply with REQUEST_REPLAN and the reason.
When the entire goal is achieved, reply with FINAL ANSWER followed by the answer."""

RETRY_TOOLS_STEP_EXECUTOR_SYSTEM_PROMPT = """{identity}

Your previous attempt at this tool step was rejected. Fix the cause given in the rejection reason.
Do not repeat the same tool call with the same arguments.
If the step cannot succeed, reply with REQUEST_REPLAN and the reason."""

RETRY_MESSAGE_STEP_EXECUTOR_SYSTEM_PROMPT = """{identity}

Your previous answer to this step was rejected. Address the rejection reason directly.
If the step cannot succeed, reply with REQUEST_REPLAN and the reason."""

STEP_EXECUTOR_CONTEXT_PROMPT = """GOAL:
{objective}

CURRENT STEP:
{step}

RECENT MEMORY (newest first):
{stm}
{redundancy}
RELEVANT LONG-TERM MEMORY:
{ltm}"""

RETRY_STEP_EXECUTOR_CONTEXT_PROMPT = """GOAL:
{objective}

CURRENT STEP (attempt {attempt}):
{step}

REJECTION REASON:
{rejection_reason}

RECENT MEMORY (newest first):
{stm}
{redundancy}
RELEVANT LONG-TERM MEMORY:
{ltm}"""

REACT_SYSTEM_PROMPT = """{identity}

Answer the user's request. Call tools when you need information or actions, then reply with the final answer as plain text."""

REACT_CONTEXT_PROMPT = """REQUEST:
{objective}

RECENT MEMORY (newest first):
{stm}
{redundancy}
RELEVANT LONG-TERM MEMORY:
{ltm}"""

REACT_RETRY_PROMPT = """REQUEST:
{objective}

Your previous turn was rejected:
{rejection_reason}

RECENT MEMORY (newest first):
{stm}
{redundancy}
RELEVANT LONG-TERM MEMORY:
{ltm}"""

STEP_VALIDATOR_SYSTEM_PROMPT = """You check whether a step was carried out.
Compare the result against the step description. Answer success=true only if the result satisfies it.
Give a short reason (max 300 chars) in result."""

STEP_VALIDATOR_CONTEXT_PROMPT = """STEP AND RESULT:
{item}"""

# ========== Memory and verification ==========

SUMMARIZE_MEMORY_PROMPT = """Summarize the following completed work in 2-4 sentences for future reference.
Keep names, numbers and conclusions; drop formatting.

{content}"""

TASK_VERIFIER_SYSTEM_PROMPT = """You verify whether a task was truly completed.
Judge the executed steps against the original task. Report missing elements and next actions when incomplete,
and a confidence score from 0 to 100."""

TASK_VERIFIER_CONTEXT_PROMPT = """ORIGINAL TASK:
{objective}

PLAN:
{plan}

EXECUTED STEPS (newest first):
{executed}"""


@dataclass(frozen=True)
class PromptPair:
    system: str
    context: str


def select_executor_prompt(
    config: "AgentConfig",
    step_type: Optional[StepType],
    is_retry: bool,
) -> PromptPair:
    """Pick the system/context prompt variant for the executor.

    Keyed by (execution mode, step type, retry). Reactive prompts are
    only valid for interactive agents.
    """
    if config.execution_mode == ExecutionMode.REACTIVE or step_type is None:
        if config.mode != AgentMode.INTERACTIVE:
            raise ConfigurationError(
                "Reactive execution currently supports only the interactive agent mode"
            )
        return PromptPair(
            system=REACT_SYSTEM_PROMPT,
            context=REACT_RETRY_PROMPT if is_retry else REACT_CONTEXT_PROMPT,
        )

    is_tools_step = step_type == StepType.TOOLS
    if is_retry:
        system = RETRY_TOOLS_STEP_EXECUTOR_SYSTEM_PROMPT if is_tools_step else RETRY_MESSAGE_STEP_EXECUTOR_SYSTEM_PROMPT
        return PromptPair(system=system, context=RETRY_STEP_EXECUTOR_CONTEXT_PROMPT)
    system = TOOLS_STEP_EXECUTOR_SYSTEM_PROMPT if is_tools_step else MESSAGE_STEP_EXECUTOR_SYSTEM_PROMPT
    return PromptPair(system=system, context=STEP_EXECUTOR_CONTEXT_PROMPT)
