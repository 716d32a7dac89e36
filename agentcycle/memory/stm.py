"""Short-term memory: a fixed-capacity ring buffer of formatted recent items."""

from __future__ import annotations

import re
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

TOOL_MARKER = re.compile(r"Tool: ([\w.\-]+)")


@dataclass
class StmEntry:
    content: str
    key: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class ShortTermMemory:
    """Ring buffer of the most recent formatted steps.

    `head` is the next write slot, so the newest entry lives at `head - 1`.
    Pushing into a full buffer silently overwrites the oldest entry.
    """

    def __init__(self, capacity: int = 5):
        if capacity <= 0:
            raise ValueError(f"STM capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.items: List[Optional[StmEntry]] = [None] * capacity
        self.head = 0
        self.size = 0

    def push(self, content: str, key: Optional[str] = None) -> StmEntry:
        entry = StmEntry(content=content, key=key)
        self.items[self.head] = entry
        self.head = (self.head + 1) % self.capacity
        self.size = min(self.size + 1, self.capacity)
        return entry

    def entries(self) -> List[StmEntry]:
        """Entries ordered newest to oldest."""
        ordered = []
        for i in range(self.size):
            index = (self.head - 1 - i + self.capacity) % self.capacity
            ordered.append(self.items[index])
        return ordered

    def format(self) -> List[str]:
        return [entry.content for entry in self.entries()]

    def render(self) -> str:
        lines = self.format()
        if not lines:
            return "No recent memory."
        return "\n".join(f"[{i + 1}] {line}" for i, line in enumerate(lines))

    def latest(self) -> Optional[StmEntry]:
        if self.size == 0:
            return None
        return self.items[(self.head - 1 + self.capacity) % self.capacity]

    def keys(self) -> List[str]:
        return [entry.key for entry in self.entries() if entry.key]

    def contains_key(self, key: str) -> bool:
        return key in self.keys()

    def redundancy_warning(self) -> Optional[str]:
        """Warn about tools that appear more than once in the current window."""
        counts: Counter = Counter()
        for line in self.format():
            counts.update(TOOL_MARKER.findall(line))
        redundant = [f"{name}({count}x)" for name, count in counts.items() if count > 1]
        if not redundant:
            return None
        return (
            f"Redundant tool calls in recent memory: {', '.join(redundant)}. "
            "Reuse the earlier results instead of calling these tools again."
        )

    def clear(self) -> None:
        self.items = [None] * self.capacity
        self.head = 0
        self.size = 0

    def copy(self) -> "ShortTermMemory":
        clone = ShortTermMemory(self.capacity)
        clone.items = list(self.items)
        clone.head = self.head
        clone.size = self.size
        return clone

    def validate(self) -> bool:
        return (
            0 <= self.size <= self.capacity
            and 0 <= self.head < self.capacity
            and len(self.items) == self.capacity
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "head": self.head,
            "size": self.size,
            "items": [asdict(item) if item is not None else None for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShortTermMemory":
        stm = cls(data["capacity"])
        stm.items = [StmEntry(**item) if item is not None else None for item in data["items"]]
        stm.head = data["head"]
        stm.size = data["size"]
        return stm

    def __len__(self) -> int:
        return self.size

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShortTermMemory):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"ShortTermMemory(capacity={self.capacity}, size={self.size}, head={self.head})"
