"""Explicit finite-state table driving the orchestration graph.

Each node id maps to an async node function and a transition. A transition
declares every target it may return, so the table can be checked once at
construction time instead of failing mid-session on a typo.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, FrozenSet, Iterable, Mapping, Union

from agentcycle.utils.error_handler import ConfigurationError

if TYPE_CHECKING:
    from agentcycle.config.agent_config import AgentConfig
    from agentcycle.graph.state import SessionState, StateUpdate

LOGGER = logging.getLogger("agentcycle.machine")


@dataclass(frozen=True)
class Continue:
    """Node finished; fold `update` into the state and route onward."""

    update: "StateUpdate" = field(default_factory=dict)


@dataclass(frozen=True)
class AwaitingExternalInput:
    """Node needs outside input; the driver persists and re-invokes it on resume."""

    prompt: str
    update: "StateUpdate" = field(default_factory=dict)


NodeResult = Union[Continue, AwaitingExternalInput]
NodeFn = Callable[["SessionState"], Awaitable[NodeResult]]
RouteFn = Callable[["SessionState", "AgentConfig"], str]


def _node_id(value) -> str:
    return getattr(value, "value", value)


@dataclass(frozen=True)
class Transition:
    route: RouteFn
    targets: FrozenSet[str]

    @classmethod
    def to(cls, target) -> "Transition":
        target_id = _node_id(target)
        return cls(route=lambda state, config: target_id, targets=frozenset({target_id}))

    @classmethod
    def conditional(cls, route: RouteFn, targets: Iterable) -> "Transition":
        return cls(route=route, targets=frozenset(_node_id(target) for target in targets))


class StateMachine:
    """Validated node/transition table.

    Args:
        nodes: node id -> async node function
        transitions: node id -> Transition (every node except `terminal`)
        entry: Transition used to pick the first node of a session
        terminal: node id after which the session ends
    """

    def __init__(
        self,
        nodes: Mapping[str, NodeFn],
        transitions: Mapping[str, Transition],
        entry: Transition,
        terminal: str,
    ):
        self.nodes: Dict[str, NodeFn] = {_node_id(key): fn for key, fn in nodes.items()}
        self.transitions: Dict[str, Transition] = {_node_id(key): t for key, t in transitions.items()}
        self.entry = entry
        self.terminal = _node_id(terminal)
        self.validate()

    def validate(self) -> None:
        """Fail fast on unknown targets, missing nodes or dangling transitions."""
        if self.terminal not in self.nodes:
            raise ConfigurationError(f"Terminal node '{self.terminal}' is not registered")

        unknown_sources = set(self.transitions) - set(self.nodes)
        if unknown_sources:
            raise ConfigurationError(f"Transitions defined for unknown nodes: {sorted(unknown_sources)}")

        missing = set(self.nodes) - set(self.transitions) - {self.terminal}
        if missing:
            raise ConfigurationError(f"Nodes without a transition: {sorted(missing)}")

        if self.terminal in self.transitions:
            raise ConfigurationError(f"Terminal node '{self.terminal}' must not have a transition")

        checks = [("__entry__", self.entry), *self.transitions.items()]
        for source, transition in checks:
            if not transition.targets:
                raise ConfigurationError(f"Transition from '{source}' declares no targets")
            unknown = transition.targets - set(self.nodes)
            if unknown:
                raise ConfigurationError(f"Transition from '{source}' targets unknown nodes: {sorted(unknown)}")

        LOGGER.debug(f"State machine validated: {len(self.nodes)} nodes, terminal '{self.terminal}'")

    def first_node(self, state: "SessionState", config: "AgentConfig") -> str:
        return self._resolve("__entry__", self.entry, state, config)

    def next_node(self, current: str, state: "SessionState", config: "AgentConfig") -> str:
        current = _node_id(current)
        if current == self.terminal:
            raise ConfigurationError(f"'{current}' is terminal and has no successor")
        return self._resolve(current, self.transitions[current], state, config)

    def is_terminal(self, node_id: str) -> bool:
        return _node_id(node_id) == self.terminal

    @staticmethod
    def _resolve(source: str, transition: Transition, state, config) -> str:
        target = _node_id(transition.route(state, config))
        if target not in transition.targets:
            raise ConfigurationError(
                f"Route from '{source}' returned undeclared target '{target}'"
            )
        return target
