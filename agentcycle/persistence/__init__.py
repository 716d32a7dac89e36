"""Persistence utilities."""

from .checkpointer import Checkpointer, InMemoryCheckpointer, SqliteCheckpointer, build_checkpointer

__all__ = ["Checkpointer", "InMemoryCheckpointer", "SqliteCheckpointer", "build_checkpointer"]
