"""Short-term and long-term memory."""

from .ltm import LongTermMemory, LtmContext, LtmStore, MemoryRecord, VectorStoreLtm
from .stm import ShortTermMemory, StmEntry

__all__ = [
    "LongTermMemory",
    "LtmContext",
    "LtmStore",
    "MemoryRecord",
    "ShortTermMemory",
    "StmEntry",
    "VectorStoreLtm",
]
