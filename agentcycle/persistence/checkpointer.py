"""Session checkpoints taken around human-in-the-loop suspension."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from agentcycle.graph.state import SessionState

LOGGER = logging.getLogger("agentcycle.persistence")


class Checkpointer(Protocol):
    def snapshot(self, state: SessionState) -> None:
        ...

    def restore(self, session_id: str) -> Optional[SessionState]:
        ...


class InMemoryCheckpointer:
    """Process-local checkpoints. States are stored serialized so a restore never aliases live objects."""

    def __init__(self):
        self._snapshots: Dict[str, str] = {}

    def snapshot(self, state: SessionState) -> None:
        self._snapshots[state.session_id] = json.dumps(state.to_dict(), ensure_ascii=False)
        LOGGER.debug(f"Snapshot {state.session_id[:8]} at graph step {state.current_graph_step}")

    def restore(self, session_id: str) -> Optional[SessionState]:
        payload = self._snapshots.get(session_id)
        if payload is None:
            return None
        return SessionState.from_dict(json.loads(payload))

    def delete(self, session_id: str) -> None:
        self._snapshots.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._snapshots


class SqliteCheckpointer:
    """SQLite store keeping one row per session."""

    def __init__(self, db_path: str = "data/sessions.db"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    state_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    message_count INTEGER DEFAULT 0
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def snapshot(self, state: SessionState) -> None:
        """Insert or update the row of `state.session_id`."""
        state_json = json.dumps(state.to_dict(), ensure_ascii=False)
        now = datetime.now(timezone.utc).isoformat()

        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """INSERT INTO sessions (session_id, state_json, created_at, updated_at, message_count)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                       state_json = excluded.state_json,
                       updated_at = excluded.updated_at,
                       message_count = excluded.message_count""",
                (state.session_id, state_json, now, now, len(state.messages)),
            )
            conn.commit()
        finally:
            conn.close()
        LOGGER.debug(f"Snapshot {state.session_id[:8]} written to {self.db_path}")

    def restore(self, session_id: str) -> Optional[SessionState]:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute("SELECT state_json FROM sessions WHERE session_id = ?", (session_id,))
            row = cursor.fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return SessionState.from_dict(json.loads(row[0]))

    def list_sessions(self) -> List[tuple]:
        """List saved sessions.

        Returns:
            List of (session_id, created_at, updated_at, message_count) tuples, newest first
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(
                """SELECT session_id, created_at, updated_at, message_count
                   FROM sessions
                   ORDER BY updated_at DESC"""
            )
            return cursor.fetchall()
        finally:
            conn.close()

    def delete(self, session_id: str) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
            conn.commit()
        finally:
            conn.close()


def build_checkpointer(db_path: Optional[str] = None):
    """Build a checkpointer: SQLite when `db_path` is given, in-memory otherwise."""
    if db_path:
        LOGGER.info(f"Using SQLite checkpoints at {db_path}")
        return SqliteCheckpointer(db_path)
    return InMemoryCheckpointer()
