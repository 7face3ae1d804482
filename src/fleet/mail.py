"""Agent mailbox backed by <project>/.fleet/mail.db."""

import sqlite3
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from fleet.errors import MailError
from fleet.models import utc_now_iso
from fleet.path_utils import FLEET_DIR

MAIL_DB = "mail.db"

MESSAGE_TYPES = frozenset({
    "status", "question", "result", "error", "dispatch", "worker_done", "escalation",
})
PRIORITIES = ("low", "normal", "high", "urgent")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
  id TEXT PRIMARY KEY,
  from_agent TEXT NOT NULL,
  to_agent TEXT NOT NULL,
  subject TEXT NOT NULL,
  body TEXT NOT NULL,
  type TEXT NOT NULL DEFAULT 'status',
  priority TEXT NOT NULL DEFAULT 'normal',
  thread_id TEXT,
  read INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_inbox ON messages(to_agent, read);
"""


@dataclass
class MailMessage:
    id: str
    from_agent: str
    to_agent: str
    subject: str
    body: str
    type: str = "status"
    priority: str = "normal"
    thread_id: Optional[str] = None
    read: bool = False
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def get_mail_db_path(project_root: Path) -> Path:
    return Path(project_root) / FLEET_DIR / MAIL_DB


class MailStore:
    """SQLite message table; WAL mode so agents can poll while others send."""

    def __init__(self, db_path: Path):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), timeout=10, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA busy_timeout=10000;")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def insert(self, message: MailMessage) -> None:
        data = message.to_dict()
        data["read"] = int(message.read)
        self._conn.execute(
            "INSERT INTO messages (id, from_agent, to_agent, subject, body, type, priority, "
            "thread_id, read, created_at) VALUES (:id, :from_agent, :to_agent, :subject, :body, "
            ":type, :priority, :thread_id, :read, :created_at)",
            data,
        )

    def get_unread(self, agent_name: str) -> List[MailMessage]:
        rows = self._conn.execute(
            "SELECT * FROM messages WHERE to_agent = ? AND read = 0 ORDER BY created_at, rowid",
            (agent_name,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_all(self, agent_name: Optional[str] = None) -> List[MailMessage]:
        if agent_name is None:
            rows = self._conn.execute("SELECT * FROM messages ORDER BY created_at, rowid").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM messages WHERE to_agent = ? ORDER BY created_at, rowid",
                (agent_name,),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def mark_read(self, message_id: str) -> None:
        self._conn.execute("UPDATE messages SET read = 1 WHERE id = ?", (message_id,))

    @staticmethod
    def _from_row(row: sqlite3.Row) -> MailMessage:
        data = dict(row)
        data["read"] = bool(data["read"])
        return MailMessage(**data)


class MailClient:
    """Send and read agent mail."""

    def __init__(self, store: MailStore):
        self.store = store

    def send(
        self,
        from_agent: str,
        to: str,
        subject: str,
        body: str,
        type: str = "status",
        priority: str = "normal",
        thread_id: Optional[str] = None,
    ) -> str:
        """
        Enqueue a message and return its id.

        Raises:
            MailError: If type or priority is unknown, or the write fails
        """
        if type not in MESSAGE_TYPES:
            raise MailError(f"Unknown message type: {type}")
        if priority not in PRIORITIES:
            raise MailError(f"Unknown priority: {priority}")

        message = MailMessage(
            id=f"msg-{uuid.uuid4().hex[:12]}",
            from_agent=from_agent,
            to_agent=to,
            subject=subject,
            body=body,
            type=type,
            priority=priority,
            thread_id=thread_id,
            created_at=utc_now_iso(),
        )
        try:
            self.store.insert(message)
        except sqlite3.Error as e:
            raise MailError(f"Failed to send mail to {to}: {e}")
        return message.id

    def check(self, agent_name: str) -> List[MailMessage]:
        """Unread messages for agent_name, marked read as they are returned."""
        messages = self.store.get_unread(agent_name)
        for message in messages:
            self.store.mark_read(message.id)
        return messages


def format_for_injection(messages: List[MailMessage]) -> str:
    """Render unread mail as text a hook can inject into the agent's prompt."""
    if not messages:
        return ""
    lines = [f"You have {len(messages)} new message(s):", ""]
    for message in messages:
        lines.append(
            f"--- From: {message.from_agent} | {message.type} | {message.priority} "
            f"| {message.subject}"
        )
        lines.append(message.body)
        lines.append("")
    return "\n".join(lines)
