"""Plan, Step and History schemas plus the structured outputs requested from models."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class StepType(str, Enum):
    TOOLS = "tools"
    MESSAGE = "message"
    HUMAN_IN_THE_LOOP = "human_in_the_loop"


class TaskStatus(str, Enum):
    PENDING = "pending"
    WAITING_VALIDATION = "waiting_validation"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolSpec(BaseModel):
    """Tool usage planned for a step, filled with its result after execution."""

    name: str = Field(min_length=1)
    description: str = ""
    required: str = ""
    expected_result: str = ""
    inputs: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageResult(BaseModel):
    content: str
    tokens: int = 0


class Step(BaseModel):
    """Single executable step."""

    step_number: int = Field(ge=1)
    step_name: str
    description: str
    status: StepStatus = StepStatus.PENDING
    type: StepType = StepType.MESSAGE
    tools: List[ToolSpec] = Field(default_factory=list)
    message: Optional[MessageResult] = None


class Plan(BaseModel):
    """Ordered steps produced by the planner."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: Literal["plan"] = "plan"
    steps: List[Step] = Field(default_factory=list)
    summary: str = ""
    status: TaskStatus = TaskStatus.PENDING

    def step_at(self, index: int) -> Optional[Step]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def is_last_index(self, index: int) -> bool:
        return index == len(self.steps) - 1

    def is_finished(self, index: int) -> bool:
        return index >= len(self.steps)


class HistoryToolRecord(BaseModel):
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    tool_call_id: str = ""
    result: Optional[str] = None
    status: str = "pending"


class HistoryItem(BaseModel):
    """One reactive turn: either tool invocations or a message."""

    type: Literal["tools", "message"]
    tools: List[HistoryToolRecord] = Field(default_factory=list)
    message: Optional[MessageResult] = None
    timestamp: float = Field(default_factory=time.time)


class History(BaseModel):
    """Append-only record of reactive turns."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: Literal["history"] = "history"
    items: List[HistoryItem] = Field(default_factory=list)

    @classmethod
    def create_empty(cls) -> "History":
        return cls()

    def latest(self) -> Optional[HistoryItem]:
        return self.items[-1] if self.items else None


PlanOrHistory = Annotated[Union[Plan, History], Field(discriminator="type")]
PLAN_OR_HISTORY_ADAPTER = TypeAdapter(PlanOrHistory)


# ========== Structured model outputs ==========

class ToolSpecDraft(BaseModel):
    name: str = Field(description="Exact name of an available tool")
    description: str = Field(description="What the tool call achieves")
    required: str = Field(default="", description="Inputs needed and where they come from")
    expected_result: str = Field(default="", description="What a successful result looks like")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Concrete argument values")


class StepDraft(BaseModel):
    step_name: str
    description: str
    type: StepType = StepType.MESSAGE
    tools: List[ToolSpecDraft] = Field(default_factory=list)


class PlanDraft(BaseModel):
    """Plan proposed by the model; numbering is assigned by the planner."""

    steps: List[StepDraft]
    summary: str = ""


class ValidatorVerdict(BaseModel):
    success: bool
    result: str = ""

    @field_validator("result")
    @classmethod
    def _clip_result(cls, value: str) -> str:
        return value[:300]


class PlannerStatusVerdict(BaseModel):
    activated: bool
    reason: str = ""


class TaskVerification(BaseModel):
    task_completed: bool
    confidence_score: int = Field(ge=0, le=100)
    reasoning: str
    missing_elements: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)


def steps_from_drafts(drafts: List[StepDraft], start_number: int = 1) -> List[Step]:
    """Number drafted steps sequentially from `start_number`."""
    steps = []
    for offset, draft in enumerate(drafts):
        steps.append(
            Step(
                step_number=start_number + offset,
                step_name=draft.step_name,
                description=draft.description,
                type=draft.type,
                tools=[ToolSpec(**tool.model_dump()) for tool in draft.tools],
            )
        )
    return steps
