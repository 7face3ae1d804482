"""Command log for fleet.

Each event is one line with a readable prefix and a JSON payload:

    2026-01-05 10:00:00 INFO  [spawn] Starting command: builder-1 | {"task_id": "t-1"}

The prefix is for people tailing the file, the payload for `fleet logs` and
other tools. Files rotate monthly (fleet-YYYY-MM.log).
"""
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_SEPARATOR = " | "
LEVEL_WIDTH = 5


def default_log_dir() -> Path:
    """Return FLEET_LOG_DIR when set, else ~/.fleet/logs."""
    env_dir = os.getenv("FLEET_LOG_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".fleet" / "logs"


def _with_agent(prefix: str, data: Dict[str, Any], suffix: str = "") -> str:
    agent_name = data.get("agent_name")
    head = f"{prefix}: {agent_name}" if agent_name else prefix
    return f"{head} {suffix}" if suffix else head


class FleetLogger:
    """Append-only event log shared by every fleet command."""

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Args:
            log_dir: Where monthly log files live. Defaults to default_log_dir();
                created if missing.
        """
        self.log_dir = Path(log_dir) if log_dir is not None else default_log_dir()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _get_log_file(self) -> Path:
        return self.log_dir / f"fleet-{datetime.now():%Y-%m}.log"

    def _format_log_line(
        self,
        level: str,
        command: str,
        message: str,
        data: Dict[str, Any]
    ) -> str:
        """
        Render one event.

        Values json can't encode (paths, datetimes) are written as strings.
        """
        payload = json.dumps(data, ensure_ascii=False, default=str)
        prefix = f"{datetime.now():%Y-%m-%d %H:%M:%S} {level:<{LEVEL_WIDTH}} [{command}] {message}"
        return f"{prefix}{LOG_SEPARATOR}{payload}\n"

    def log_event(
        self,
        command: str,
        message: str,
        data: Dict[str, Any],
        level: str = "INFO"
    ) -> None:
        """Append one event to the current month's log file."""
        with open(self._get_log_file(), "a") as f:
            f.write(self._format_log_line(level, command, message, data))

    def log_command_start(self, command: str, data: Dict[str, Any]) -> None:
        self.log_event(command, _with_agent("Starting command", data), data)

    def log_command_complete(
        self,
        command: str,
        duration_ms: int,
        data: Dict[str, Any]
    ) -> None:
        """
        Record a successful command.

        duration_ms is added to the payload unless data already carries it.
        """
        message = _with_agent("Command complete", data, f"({duration_ms}ms)")
        payload = dict(data)
        payload.setdefault("duration_ms", duration_ms)
        self.log_event(command, message, payload)

    def log_warning(self, command: str, message: str, data: Dict[str, Any]) -> None:
        self.log_event(command, message, data, level="WARN")

    def log_error(
        self,
        command: str,
        message: str,
        data: Dict[str, Any]
    ) -> None:
        """Log error event, appending data['reason'] to the message when present."""
        if data.get("reason"):
            message = f"{message}: {data['reason']}"
        self.log_event(command, message, data, level="ERROR")

    def get_log_files(self, months_back: int = 6) -> List[Path]:
        """Return log files, newest month first."""
        newest_first = sorted(self.log_dir.glob("fleet-*.log"), reverse=True)
        return newest_first[:months_back]

    def read_logs(
        self,
        limit: int = 50,
        command_filter: Optional[str] = None,
        level_filter: Optional[str] = None
    ) -> List[dict]:
        """
        Parsed entries, newest first.

        Args:
            limit: Stop after this many matching entries
            command_filter: Keep only entries logged by this command
            level_filter: Keep only entries at this level

        Returns:
            Dicts with timestamp, level, command, message and data keys.
            Lines that are not in the hybrid format are skipped.
        """
        entries: List[dict] = []

        for log_file in self.get_log_files():
            lines = log_file.read_text().splitlines()
            for parsed in filter(None, map(self._parse_log_line, reversed(lines))):
                if command_filter and parsed["command"] != command_filter:
                    continue
                if level_filter and parsed["level"] != level_filter:
                    continue
                entries.append(parsed)
                if len(entries) >= limit:
                    return entries

        return entries

    def _parse_log_line(self, line: str) -> Optional[dict]:
        if LOG_SEPARATOR not in line:
            return None
        prefix, payload = line.split(LOG_SEPARATOR, 1)

        parts = prefix.split(None, 3)
        if len(parts) < 4 or not parts[3].startswith("["):
            return None
        date_part, time_part, level, rest = parts

        close = rest.find("]")
        if close < 0:
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            return None

        return {
            "timestamp": f"{date_part} {time_part}",
            "level": level,
            "command": rest[1:close],
            "message": rest[close + 1:].strip(),
            "data": data,
        }
