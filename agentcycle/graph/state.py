"""Session state, its per-field merge policy and its serialized form."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypedDict, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, messages_from_dict, messages_to_dict

from agentcycle.graph.plan import PLAN_OR_HISTORY_ADAPTER, History, Plan, Step
from agentcycle.memory.ltm import LtmContext
from agentcycle.memory.stm import ShortTermMemory

# Retry value set on hard validator errors; distinct from "no retries used".
ABORTED_RETRY = -1


@dataclass(frozen=True)
class ErrorInfo:
    has_error: bool = False
    type: str = "execution_error"
    message: str = ""
    source: str = ""
    timestamp: float = 0.0


@dataclass(frozen=True)
class SkipValidation:
    """Forced route applied by the orchestrator before any other rule."""

    skip_validation: bool = False
    goto: str = ""


@dataclass
class Memories:
    stm: ShortTermMemory = field(default_factory=ShortTermMemory)
    ltm: LtmContext = field(default_factory=LtmContext)

    @classmethod
    def create(cls, capacity: int = 5) -> "Memories":
        return cls(stm=ShortTermMemory(capacity), ltm=LtmContext())

    def copy(self) -> "Memories":
        return Memories(
            stm=self.stm.copy(),
            ltm=LtmContext(items=list(self.ltm.items), last_stored_key=self.ltm.last_stored_key),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"stm": self.stm.to_dict(), "ltm": self.ltm.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memories":
        return cls(stm=ShortTermMemory.from_dict(data["stm"]), ltm=LtmContext.from_dict(data["ltm"]))


@dataclass
class SessionState:
    """State owned by exactly one session.

    Nodes never mutate it directly; they return a `StateUpdate` that is
    folded in with `merge_state`.
    """

    session_id: str
    objective: str = ""
    messages: List[BaseMessage] = field(default_factory=list)
    last_node: Optional[str] = None
    memories: Memories = field(default_factory=Memories)
    plans_or_histories: Optional[Union[Plan, History]] = None
    current_step_index: int = 0
    current_task_index: int = 0
    retry: int = 0
    current_graph_step: int = 0
    error: Optional[ErrorInfo] = None
    skip_validation: Optional[SkipValidation] = None
    external_input: Optional[str] = None
    interrupted_at: Optional[str] = None

    @classmethod
    def initial(cls, objective: str, stm_capacity: int = 5, session_id: Optional[str] = None) -> "SessionState":
        return cls(
            session_id=session_id or str(uuid.uuid4()),
            objective=objective,
            messages=[HumanMessage(content=objective)] if objective else [],
            memories=Memories.create(stm_capacity),
        )

    @property
    def last_message(self) -> Optional[BaseMessage]:
        return self.messages[-1] if self.messages else None

    def last_ai_message(self) -> Optional[AIMessage]:
        for message in reversed(self.messages):
            if isinstance(message, AIMessage):
                return message
        return None

    def active_plan(self) -> Optional[Plan]:
        return self.plans_or_histories if isinstance(self.plans_or_histories, Plan) else None

    def active_history(self) -> Optional[History]:
        return self.plans_or_histories if isinstance(self.plans_or_histories, History) else None

    def current_step(self) -> Optional[Step]:
        plan = self.active_plan()
        if plan is None:
            return None
        return plan.step_at(self.current_step_index)

    def to_dict(self) -> Dict[str, Any]:
        active = self.plans_or_histories
        return {
            "session_id": self.session_id,
            "objective": self.objective,
            "messages": messages_to_dict(self.messages),
            "last_node": self.last_node,
            "memories": self.memories.to_dict(),
            "plans_or_histories": active.model_dump(mode="json") if active is not None else None,
            "current_step_index": self.current_step_index,
            "current_task_index": self.current_task_index,
            "retry": self.retry,
            "current_graph_step": self.current_graph_step,
            "error": dataclasses.asdict(self.error) if self.error else None,
            "skip_validation": dataclasses.asdict(self.skip_validation) if self.skip_validation else None,
            "external_input": self.external_input,
            "interrupted_at": self.interrupted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionState":
        active = data.get("plans_or_histories")
        return cls(
            session_id=data["session_id"],
            objective=data.get("objective", ""),
            messages=messages_from_dict(data.get("messages", [])),
            last_node=data.get("last_node"),
            memories=Memories.from_dict(data["memories"]),
            plans_or_histories=PLAN_OR_HISTORY_ADAPTER.validate_python(active) if active else None,
            current_step_index=data.get("current_step_index", 0),
            current_task_index=data.get("current_task_index", 0),
            retry=data.get("retry", 0),
            current_graph_step=data.get("current_graph_step", 0),
            error=ErrorInfo(**data["error"]) if data.get("error") else None,
            skip_validation=SkipValidation(**data["skip_validation"]) if data.get("skip_validation") else None,
            external_input=data.get("external_input"),
            interrupted_at=data.get("interrupted_at"),
        )


class StateUpdate(TypedDict, total=False):
    """Partial update returned by a node. Absent keys are left untouched."""

    objective: str
    messages: List[BaseMessage]
    last_node: Optional[str]
    memories: Memories
    plans_or_histories: Optional[Union[Plan, History]]
    current_step_index: int
    current_task_index: int
    retry: int
    current_graph_step: int
    error: Optional[ErrorInfo]
    skip_validation: Optional[SkipValidation]
    external_input: Optional[str]
    interrupted_at: Optional[str]


def _replace(current: Any, new: Any) -> Any:
    return new


def _append_messages(current: List[BaseMessage], new: Any) -> List[BaseMessage]:
    if new is None:
        return current
    if isinstance(new, BaseMessage):
        new = [new]
    return [*current, *new]


def _monotonic(current: int, new: int) -> int:
    return max(current, new)


def _replace_active(current: Any, new: Any) -> Any:
    if new is not None and not isinstance(new, (Plan, History)):
        raise TypeError(f"plans_or_histories must be a Plan, a History or None, got {type(new).__name__}")
    return new


def _replace_node_id(current: Optional[str], new: Any) -> Optional[str]:
    return getattr(new, "value", new)


MERGE_POLICY: Dict[str, Callable[[Any, Any], Any]] = {
    "objective": _replace,
    "messages": _append_messages,
    "last_node": _replace_node_id,
    "memories": _replace,
    "plans_or_histories": _replace_active,
    "current_step_index": _replace,
    "current_task_index": _replace,
    "retry": _replace,
    "current_graph_step": _monotonic,
    "error": _replace,
    "skip_validation": _replace,
    "external_input": _replace,
    "interrupted_at": _replace_node_id,
}


def merge_state(state: SessionState, update: Optional[StateUpdate]) -> SessionState:
    """Fold a node update into the state and return the new state.

    messages are appended in arrival order, current_graph_step never moves
    backwards, every other field is replaced when present.
    """
    if not update:
        return state
    unknown = set(update) - set(MERGE_POLICY)
    if unknown:
        raise KeyError(f"Unknown state fields in update: {sorted(unknown)}")
    changes = {
        key: MERGE_POLICY[key](getattr(state, key), value)
        for key, value in update.items()
    }
    return dataclasses.replace(state, **changes)
