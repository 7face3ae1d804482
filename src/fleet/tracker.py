"""Issue tracker integration for fleet.

Wraps the beads (`bd`) and seeds (`sd`) CLIs behind one TrackerClient
interface. Spawning looks an issue up with show() and claims it with claim().
"""

import json
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from fleet.errors import TrackerCLINotFoundError, TrackerError, TrackerIssueNotFoundError

# Statuses an agent may be spawned against.
WORKABLE_STATUSES = frozenset({"open", "in_progress"})


@dataclass
class TrackerIssue:
    """An issue, normalized across tracker backends."""

    id: str
    title: str
    status: str
    priority: int = 0
    type: str = "unknown"
    assignee: Optional[str] = None
    description: Optional[str] = None
    blocks: List[str] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)

    @property
    def is_workable(self) -> bool:
        return self.status in WORKABLE_STATUSES


class TrackerClient(ABC):
    """Base wrapper around a tracker CLI."""

    cli_name = ""

    def __init__(self, cwd: Optional[Path] = None, cli_path: Optional[str] = None):
        """
        Args:
            cwd: Directory commands run in (the project root)
            cli_path: Override for the CLI executable
        """
        self.cwd = cwd
        self.cli_path = cli_path or self.cli_name

    def _run(self, *args: str, issue_id: Optional[str] = None) -> str:
        """Run the CLI and return stdout.

        Raises:
            TrackerCLINotFoundError: If the CLI is not installed
            TrackerIssueNotFoundError: If issue_id is given (a lookup) and the command fails
            TrackerError: If the command fails otherwise
        """
        try:
            result = subprocess.run(
                [self.cli_path, *args],
                cwd=str(self.cwd) if self.cwd else None,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise TrackerCLINotFoundError(self.cli_name)

        if result.returncode != 0:
            if issue_id is not None:
                raise TrackerIssueNotFoundError(issue_id)
            raise TrackerError(
                f"{self.cli_name} {' '.join(args[:1])} failed (exit {result.returncode}): "
                f"{result.stderr.strip()}"
            )
        return result.stdout

    def _parse_json(self, stdout: str, context: str) -> Any:
        """Parse JSON output, skipping any non-JSON preamble lines."""
        trimmed = stdout.strip()
        if not trimmed:
            raise TrackerError(f"Empty output from {self.cli_name} {context}")
        starts = [i for i in (trimmed.find("{"), trimmed.find("[")) if i >= 0]
        json_str = trimmed[min(starts):] if starts else trimmed
        try:
            return json.loads(json_str)
        except json.JSONDecodeError:
            raise TrackerError(
                f"Failed to parse JSON output from {self.cli_name} {context}: {trimmed[:200]}"
            )

    @staticmethod
    def _normalize(raw: Dict[str, Any]) -> TrackerIssue:
        return TrackerIssue(
            id=raw.get("id", ""),
            title=raw.get("title", ""),
            status=raw.get("status", ""),
            priority=raw.get("priority", 0) or 0,
            type=raw.get("type") or raw.get("issue_type") or "unknown",
            assignee=raw.get("assignee"),
            description=raw.get("description"),
            blocks=list(raw.get("blocks") or []),
            blocked_by=list(raw.get("blockedBy") or raw.get("blocked_by") or []),
        )

    @abstractmethod
    def _issues_from(self, data: Any) -> List[Dict[str, Any]]:
        """Extract raw issue dicts from a parsed JSON response."""

    def show(self, issue_id: str) -> TrackerIssue:
        """
        Raises:
            TrackerCLINotFoundError: If the CLI is not installed
            TrackerIssueNotFoundError: If the issue doesn't exist
        """
        stdout = self._run("show", issue_id, "--json", issue_id=issue_id)
        try:
            issues = self._issues_from(self._parse_json(stdout, f"show {issue_id}"))
        except TrackerError:
            raise TrackerIssueNotFoundError(issue_id)
        if not issues:
            raise TrackerIssueNotFoundError(issue_id)
        return self._normalize(issues[0])

    def claim(self, issue_id: str) -> None:
        self._run("update", issue_id, "--status", "in_progress")


class BeadsTracker(TrackerClient):
    """beads: `bd show --json` prints a list of issues."""

    cli_name = "bd"

    def _issues_from(self, data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return [d for d in data if isinstance(d, dict)]
        if isinstance(data, dict):
            return [data]
        return []


class SeedsTracker(TrackerClient):
    """seeds: responses are envelopes with an `issue` or `issues` key."""

    cli_name = "sd"

    def _issues_from(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        if isinstance(data.get("issue"), dict):
            return [data["issue"]]
        return [d for d in data.get("issues") or [] if isinstance(d, dict)]


TRACKER_BACKENDS = {
    "beads": BeadsTracker,
    "seeds": SeedsTracker,
}


def resolve_backend(backend: str, project_root: Path) -> str:
    """'auto' picks beads when a .beads/ directory exists, else seeds."""
    if backend != "auto":
        return backend
    if (Path(project_root) / ".beads").is_dir():
        return "beads"
    return "seeds"


def create_tracker_client(backend: str, project_root: Path) -> TrackerClient:
    """
    Raises:
        TrackerError: If backend is not a known tracker
    """
    resolved = resolve_backend(backend, project_root)
    client_cls = TRACKER_BACKENDS.get(resolved)
    if client_cls is None:
        raise TrackerError(f"Unknown tracker backend: {backend}")
    return client_cls(cwd=Path(project_root))
