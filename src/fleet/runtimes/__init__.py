"""Runtime abstraction layer for multi-runtime support (Claude Code, Codex, Pi, Copilot)."""

from .base import AgentRuntime, HooksDef, ReadyState, SpawnOpts, TranscriptSummary
from .claude import ClaudeRuntime
from .codex import CodexRuntime
from .copilot import CopilotRuntime
from .pi import PiRuntime
from .registry import RUNTIMES, get_runtime

__all__ = [
    "AgentRuntime",
    "ClaudeRuntime",
    "CodexRuntime",
    "CopilotRuntime",
    "HooksDef",
    "PiRuntime",
    "RUNTIMES",
    "ReadyState",
    "SpawnOpts",
    "TranscriptSummary",
    "get_runtime",
]
