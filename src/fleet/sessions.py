"""SQLite-backed session and run stores.

Both stores live in <project>/.fleet/sessions.db. Connections run in WAL mode
with a busy timeout so several spawn processes can read and write the same
file at once. Every write is a single statement (or one IMMEDIATE
transaction), which gives atomic session upserts and an atomic per-run agent
counter without any file locking of our own.

Admission reads a snapshot with get_active() and decides on it. Two spawns
racing on the same name or task can both pass before either writes; that
narrow window is accepted.
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional

from fleet.logging import FleetLogger
from fleet.models import (
    RUN_ACTIVE,
    RUN_COMPLETED,
    TERMINAL_STATES,
    AgentSession,
    Run,
    utc_now_iso,
)
from fleet.path_utils import FLEET_DIR

logger = logging.getLogger(__name__)

SESSIONS_DB = "sessions.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  agent_name TEXT NOT NULL,
  capability TEXT NOT NULL,
  worktree_path TEXT NOT NULL,
  branch_name TEXT NOT NULL,
  task_id TEXT NOT NULL,
  tmux_session TEXT NOT NULL,
  state TEXT NOT NULL DEFAULT 'booting'
    CHECK(state IN ('booting', 'working', 'stalled', 'zombie', 'completed')),
  pid INTEGER,
  parent_agent TEXT,
  depth INTEGER NOT NULL DEFAULT 0,
  run_id TEXT,
  started_at TEXT NOT NULL,
  last_activity TEXT NOT NULL,
  escalation_level INTEGER NOT NULL DEFAULT 0,
  stalled_since TEXT,
  transcript_path TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_agent_name ON sessions(agent_name);
CREATE INDEX IF NOT EXISTS idx_sessions_state ON sessions(state);
CREATE INDEX IF NOT EXISTS idx_sessions_run_id ON sessions(run_id);

CREATE TABLE IF NOT EXISTS runs (
  id TEXT PRIMARY KEY,
  started_at TEXT NOT NULL,
  coordinator_session_id TEXT,
  status TEXT NOT NULL DEFAULT 'active'
    CHECK(status IN ('active', 'completed')),
  agent_count INTEGER NOT NULL DEFAULT 0,
  completed_at TEXT
);
"""

_SESSION_COLUMNS = (
    "id",
    "agent_name",
    "capability",
    "worktree_path",
    "branch_name",
    "task_id",
    "tmux_session",
    "state",
    "pid",
    "parent_agent",
    "depth",
    "run_id",
    "started_at",
    "last_activity",
    "escalation_level",
    "stalled_since",
    "transcript_path",
)


def get_sessions_db_path(project_root: Path) -> Path:
    return Path(project_root) / FLEET_DIR / SESSIONS_DB


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=10000;")
    conn.executescript(_SCHEMA)
    return conn


class _Store:
    def __init__(self, db_path: Path, fleet_logger: Optional[FleetLogger] = None):
        self.db_path = Path(db_path)
        self.fleet_logger = fleet_logger
        self._conn = _connect(self.db_path)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _log(self, message: str, data: dict) -> None:
        if self.fleet_logger is not None:
            self.fleet_logger.log_event("store", message, data, level="DEBUG")


class SessionStore(_Store):
    """Durable table of agent sessions.

    Rows are never deleted. Terminal sessions (zombie, completed) stay in the
    table and are filtered out of get_active().
    """

    def upsert(self, session: AgentSession) -> None:
        """Insert or replace the row with session.id in a single statement."""
        columns = ", ".join(_SESSION_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _SESSION_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _SESSION_COLUMNS if c != "id")
        self._conn.execute(
            f"INSERT INTO sessions ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            session.to_dict(),
        )
        logger.debug("Upserted session %s (%s)", session.id, session.agent_name)
        self._log(f"Session upserted: {session.agent_name}", {
            "session_id": session.id,
            "agent_name": session.agent_name,
            "state": session.state,
        })

    def get_by_name(self, agent_name: str) -> Optional[AgentSession]:
        """Most recent session for agent_name, terminal or not."""
        row = self._conn.execute(
            "SELECT * FROM sessions WHERE agent_name = ? "
            "ORDER BY started_at DESC, rowid DESC LIMIT 1",
            (agent_name,),
        ).fetchone()
        return AgentSession.from_row(row) if row else None

    def get_by_id(self, session_id: str) -> Optional[AgentSession]:
        row = self._conn.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return AgentSession.from_row(row) if row else None

    def get_active(self) -> List[AgentSession]:
        """Snapshot of sessions whose state is not zombie or completed."""
        terminal = tuple(sorted(TERMINAL_STATES))
        rows = self._conn.execute(
            "SELECT * FROM sessions WHERE state NOT IN (?, ?) ORDER BY started_at",
            terminal,
        ).fetchall()
        return [AgentSession.from_row(row) for row in rows]

    def get_all(self) -> List[AgentSession]:
        rows = self._conn.execute("SELECT * FROM sessions ORDER BY started_at").fetchall()
        return [AgentSession.from_row(row) for row in rows]

    def get_by_run(self, run_id: str) -> List[AgentSession]:
        rows = self._conn.execute(
            "SELECT * FROM sessions WHERE run_id = ? ORDER BY started_at", (run_id,)
        ).fetchall()
        return [AgentSession.from_row(row) for row in rows]

    def update_state(self, agent_name: str, state: str) -> bool:
        """Set state on the agent's active session. Returns False if none matched."""
        terminal = tuple(sorted(TERMINAL_STATES))
        cursor = self._conn.execute(
            "UPDATE sessions SET state = ? "
            "WHERE agent_name = ? AND state NOT IN (?, ?)",
            (state, agent_name, *terminal),
        )
        self._log(f"Session state: {agent_name} -> {state}", {
            "agent_name": agent_name,
            "state": state,
            "updated": cursor.rowcount,
        })
        return cursor.rowcount > 0

    def update_last_activity(self, agent_name: str) -> bool:
        """Record activity; a booting session is promoted to working."""
        terminal = tuple(sorted(TERMINAL_STATES))
        cursor = self._conn.execute(
            "UPDATE sessions SET last_activity = ?, "
            "state = CASE WHEN state = 'booting' THEN 'working' ELSE state END "
            "WHERE agent_name = ? AND state NOT IN (?, ?)",
            (utc_now_iso(), agent_name, *terminal),
        )
        return cursor.rowcount > 0


class RunStore(_Store):
    """Durable table of runs with an atomic agent counter."""

    def create_run(self, run: Run) -> None:
        self._conn.execute(
            "INSERT INTO runs (id, started_at, coordinator_session_id, status, agent_count) "
            "VALUES (?, ?, ?, ?, ?)",
            (run.id, run.started_at, run.coordinator_session_id, run.status, run.agent_count),
        )
        self._log(f"Run created: {run.id}", {"run_id": run.id})

    def get_run(self, run_id: str) -> Optional[Run]:
        row = self._conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        return Run.from_row(row) if row else None

    def get_active_run(self) -> Optional[Run]:
        row = self._conn.execute(
            "SELECT * FROM runs WHERE status = ? ORDER BY started_at DESC LIMIT 1",
            (RUN_ACTIVE,),
        ).fetchone()
        return Run.from_row(row) if row else None

    def increment_agent_count(self, run_id: str) -> int:
        """Atomically add one to agent_count and return the new value.

        Returns 0 when the run does not exist.
        """
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            self._conn.execute(
                "UPDATE runs SET agent_count = agent_count + 1 WHERE id = ?", (run_id,)
            )
            row = self._conn.execute(
                "SELECT agent_count FROM runs WHERE id = ?", (run_id,)
            ).fetchone()
            self._conn.execute("COMMIT")
        except sqlite3.Error:
            self._conn.execute("ROLLBACK")
            raise

        count = int(row["agent_count"]) if row else 0
        self._log(f"Run agent count: {run_id} = {count}", {"run_id": run_id, "agent_count": count})
        return count

    def complete_run(self, run_id: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE runs SET status = ?, completed_at = ? WHERE id = ?",
            (RUN_COMPLETED, utc_now_iso(), run_id),
        )
        return cursor.rowcount > 0
