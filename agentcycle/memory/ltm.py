"""Long-term memory: summarize-and-store write path, similarity query read path."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import InMemoryVectorStore

LOGGER = logging.getLogger("agentcycle.memory.ltm")


@dataclass
class MemoryRecord:
    content: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "similarity": self.similarity, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        return cls(content=data["content"], similarity=data["similarity"], metadata=data.get("metadata", {}))


class LtmStore(Protocol):
    """Contract for an external similarity-searchable store."""

    async def append(self, content: str, metadata: Dict[str, Any]) -> str:
        ...

    def query(self, embedding: Sequence[float], k: int) -> List[MemoryRecord]:
        ...


class VectorStoreLtm:
    """LtmStore on a LangChain `InMemoryVectorStore`, dumped to JSON after each write.

    With `max_records` set, the oldest records are evicted once the store grows past it.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        path: Optional[Union[str, Path]] = None,
        max_records: Optional[int] = None,
    ):
        self.path = Path(path) if path else None
        self.max_records = max_records
        if self.path is not None and self.path.exists():
            self.vector_store = InMemoryVectorStore.load(str(self.path), embeddings)
            LOGGER.info(f"Loaded {len(self)} long-term memories from {self.path}")
        else:
            self.vector_store = InMemoryVectorStore(embeddings)

    async def append(self, content: str, metadata: Dict[str, Any]) -> str:
        record_id = str(uuid.uuid4())
        await self.vector_store.aadd_documents(
            [Document(page_content=content, metadata=dict(metadata or {}))], ids=[record_id]
        )
        self._evict()
        self._save()
        return record_id

    def query(self, embedding: Sequence[float], k: int) -> List[MemoryRecord]:
        if not len(self):
            return []
        pairs = self.vector_store.similarity_search_with_score_by_vector(list(embedding), k=k)
        return [
            MemoryRecord(
                content=document.page_content,
                similarity=float(score),
                metadata={**document.metadata, "id": document.id},
            )
            for document, score in pairs
        ]

    def _evict(self) -> None:
        if self.max_records is None:
            return
        # The backing dict keeps insertion order, oldest first.
        overflow = len(self) - self.max_records
        if overflow > 0:
            oldest = list(self.vector_store.store)[:overflow]
            self.vector_store.delete(ids=oldest)
            LOGGER.debug(f"Evicted {overflow} long-term memories (cap {self.max_records})")

    def _save(self) -> None:
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.vector_store.dump(str(self.path))

    def __len__(self) -> int:
        return len(self.vector_store.store)


@dataclass
class LtmContext:
    """Per-session handle on long-term memory: last retrieval and write cursor."""

    items: List[MemoryRecord] = field(default_factory=list)
    last_stored_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "last_stored_key": self.last_stored_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LtmContext":
        return cls(
            items=[MemoryRecord.from_dict(item) for item in data.get("items", [])],
            last_stored_key=data.get("last_stored_key"),
        )


class LongTermMemory:
    """Stores summaries and retrieves ranked context.

    The stores embed what they keep. The read path embeds the query once and
    merges the memory store results with a per-agent "iteration" query
    (previous question/answer pairs of the same agent).
    """

    def __init__(
        self,
        store: LtmStore,
        embeddings: Embeddings,
        *,
        agent_id: str,
        iteration_store: Optional[LtmStore] = None,
        top_k: int = 4,
        similarity_threshold: float = 0.0,
    ):
        self.store = store
        self.embeddings = embeddings
        self.agent_id = agent_id
        self.iteration_store = iteration_store
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold

    async def remember(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        record_metadata = {"agent_id": self.agent_id, **(metadata or {})}
        record_id = await self.store.append(content, record_metadata)
        LOGGER.info(f"Stored long-term memory {record_id[:8]} ({len(content)} chars)")
        return record_id

    async def record_iteration(self, question: str, answer: str) -> Optional[str]:
        if self.iteration_store is None:
            return None
        content = f"Question: {question}\nAnswer: {answer}"
        return await self.iteration_store.append(content, {"agent_id": self.agent_id, "kind": "iteration"})

    async def recall(self, query: str, exclude_keys: Iterable[str] = ()) -> List[MemoryRecord]:
        embedding = await self.embeddings.aembed_query(query)
        results = list(self.store.query(embedding, self.top_k))

        if self.iteration_store is not None:
            iterations = self.iteration_store.query(embedding, self.top_k)
            results.extend(
                record for record in iterations
                if record.metadata.get("agent_id") == self.agent_id
            )

        excluded = set(exclude_keys)
        filtered = [
            record for record in results
            if record.similarity >= self.similarity_threshold
            and record.metadata.get("step_key") not in excluded
        ]
        filtered.sort(key=lambda record: record.similarity, reverse=True)
        LOGGER.debug(f"Recalled {len(filtered)} of {len(results)} memories for query '{query[:60]}'")
        return filtered[: self.top_k]
