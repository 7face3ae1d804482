"""Persisted records: agent sessions and runs."""

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SESSION_STATES = ("booting", "working", "stalled", "zombie", "completed")
TERMINAL_STATES = frozenset({"zombie", "completed"})

RUN_ACTIVE = "active"
RUN_COMPLETED = "completed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class AgentSession:
    """One worker instance, as stored in the sessions table."""

    id: str
    agent_name: str
    capability: str
    worktree_path: str
    branch_name: str
    task_id: str
    tmux_session: str
    state: str = "booting"
    pid: Optional[int] = None
    parent_agent: Optional[str] = None
    depth: int = 0
    run_id: Optional[str] = None
    started_at: str = ""
    last_activity: str = ""
    escalation_level: int = 0
    stalled_since: Optional[str] = None
    transcript_path: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "AgentSession":
        names = {f.name for f in fields(cls)}
        return cls(**{key: row[key] for key in row.keys() if key in names})


@dataclass
class Run:
    """A batch of spawns sharing an id and an agent counter."""

    id: str
    started_at: str
    coordinator_session_id: Optional[str] = None
    status: str = RUN_ACTIVE
    agent_count: int = 0
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "Run":
        names = {f.name for f in fields(cls)}
        return cls(**{key: row[key] for key in row.keys() if key in names})
