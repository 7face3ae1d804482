"""Abstract base class for agent runtimes (Claude Code, Codex CLI, Pi, Copilot)."""

import json
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fleet.config import ResolvedModel

PHASE_LOADING = "loading"
PHASE_DIALOG = "dialog"
PHASE_READY = "ready"


@dataclass
class SpawnOpts:
    """Abstract launch options; each runtime maps them to its own flags."""

    model: str
    cwd: str
    permission_mode: str = "bypass"  # "bypass" or "ask"
    append_system_prompt: Optional[str] = None
    append_system_prompt_file: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class ReadyState:
    """Readiness of a TUI, classified from captured pane text.

    phase is loading, dialog or ready. For dialog, action is the key that
    dismisses it (e.g. "Enter" for a trust-folder prompt).
    """

    phase: str
    action: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.phase == PHASE_READY


@dataclass
class HooksDef:
    """What a runtime needs to generate guard configuration for one agent."""

    agent_name: str
    capability: str
    worktree_path: str
    quality_gates: Optional[List[str]] = None


@dataclass
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TranscriptSummary:
    """Token totals for a transcript, overall and per model."""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    by_model: Dict[str, ModelUsage] = field(default_factory=dict)

    def add(self, model: str, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        usage = self.by_model.setdefault(model or "unknown", ModelUsage())
        usage.input_tokens += input_tokens
        usage.output_tokens += output_tokens


def iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield JSON objects from a JSONL file, skipping blank and malformed lines.

    Transcripts are appended to while agents run, so a partial trailing
    line is normal.
    """
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                yield entry


def as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def quote(value: str) -> str:
    """POSIX single-quote a value for the launch command line."""
    return shlex.quote(value)


class AgentRuntime(ABC):
    """
    Interface every agent runtime implements so the spawn engine can drive
    any of them the same way.

    Options a runtime does not support are ignored rather than rejected.
    None of the methods raise on a missing target: detect_ready treats empty
    text as loading, parse_transcript returns None for a missing file, and
    deploy_config creates directories as needed.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Runtime identifier used for selection ("claude", "codex", ...)."""

    @property
    @abstractmethod
    def instruction_path(self) -> str:
        """Worktree-relative path the agent reads its overlay from."""

    @abstractmethod
    def build_spawn_command(self, opts: SpawnOpts) -> str:
        """Shell command that starts the interactive agent in its tmux session."""

    @abstractmethod
    def build_print_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        """argv for a headless one-shot invocation that prints a reply and exits."""

    @abstractmethod
    def deploy_config(
        self,
        worktree_path: Path,
        overlay: Optional[str],
        hooks: HooksDef,
    ) -> None:
        """
        Write runtime-specific files into the worktree.

        Args:
            worktree_path: Agent worktree
            overlay: Overlay text to place at instruction_path, or None when
                it has already been written
            hooks: Agent identity used to generate guards
        """

    @abstractmethod
    def detect_ready(self, pane_content: Optional[str]) -> ReadyState:
        """Classify captured pane text. Never raises."""

    @abstractmethod
    def parse_transcript(self, path: Path) -> Optional[TranscriptSummary]:
        """Aggregate token usage from a transcript file, or None if it does not exist."""

    def build_env(self, model: ResolvedModel) -> Dict[str, str]:
        """Environment variables for the agent process (provider credentials etc.)."""
        return dict(model.env)

    def requires_beacon_verification(self) -> bool:
        """Whether the handshake must confirm the beacon left the input line.

        Runtimes whose idle and busy panes look the same opt out.
        """
        return True
