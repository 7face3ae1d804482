"""Error types for fleet.

Every error carries a short machine-readable ``code`` so the CLI can print
``Error [CODE]: message`` and the JSON envelope can report it.
"""

from typing import Any, Optional


class FleetError(Exception):
    """Base class for all fleet errors."""

    code = "FLEET_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(FleetError):
    """Malformed or missing input (task id, name, numeric options, task status)."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field is not None:
            data["field"] = self.field
        if self.value is not None:
            data["value"] = str(self.value)
        return data


class HierarchyError(FleetError):
    """Parent/capability rule violated."""

    code = "HIERARCHY_VIOLATION"

    def __init__(
        self,
        message: str,
        agent_name: Optional[str] = None,
        requested_capability: Optional[str] = None,
    ):
        super().__init__(message)
        self.agent_name = agent_name
        self.requested_capability = requested_capability


class AgentError(FleetError):
    """Admission-policy violation or agent provisioning failure."""

    code = "AGENT_ERROR"

    def __init__(self, message: str, agent_name: Optional[str] = None):
        super().__init__(message)
        self.agent_name = agent_name


class WorktreeError(AgentError):
    """git worktree add/remove failed."""

    code = "WORKTREE_ERROR"


class TmuxError(AgentError):
    """tmux is unavailable or a tmux command failed."""

    code = "TMUX_ERROR"


class ConfigError(FleetError):
    """Configuration file could not be parsed."""

    code = "CONFIG_ERROR"


class TrackerError(FleetError):
    """Issue tracker command failed."""

    code = "TRACKER_ERROR"


class TrackerCLINotFoundError(TrackerError):
    """Raised when the tracker CLI (bd or sd) is not installed or not in PATH."""

    def __init__(self, cli_name: str = "bd"):
        super().__init__(f"{cli_name} CLI not found. Install it or check PATH.")
        self.cli_name = cli_name


class TrackerIssueNotFoundError(TrackerError):
    """Raised when a tracker issue is not found."""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue '{issue_id}' not found")
        self.issue_id = issue_id


class MailError(FleetError):
    """Mail store read or write failed."""

    code = "MAIL_ERROR"


class MulchError(FleetError):
    """Expertise priming via the ml CLI failed."""

    code = "MULCH_ERROR"
