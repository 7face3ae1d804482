"""ClaudeRuntime implementation for the Claude Code CLI."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import (
    PHASE_DIALOG,
    PHASE_LOADING,
    PHASE_READY,
    AgentRuntime,
    HooksDef,
    ReadyState,
    SpawnOpts,
    TranscriptSummary,
    as_int,
    iter_jsonl,
    quote,
    write_text,
)

# Prompt markers shown by an idle Claude Code TUI.
PROMPT_MARKERS = ("❯", 'Try "')
# Status bar hints that only render once input handling is live.
STATUS_MARKERS = ("bypass permissions", "shift+tab")
TRUST_DIALOG_MARKER = "trust this folder"


def _hook(command: str, matcher: str = "") -> Dict[str, Any]:
    return {"matcher": matcher, "hooks": [{"type": "command", "command": command}]}


def build_claude_settings(hooks: HooksDef) -> Dict[str, Any]:
    """
    settings.local.json content for one agent.

    Every tool call goes through `fleet guard`; every tool result reports
    activity so a booting session is promoted to working; every user prompt
    injects unread mail.
    """
    name = quote(hooks.agent_name)
    guard = (
        f"fleet guard --agent {name} --capability {quote(hooks.capability)} "
        f"--worktree {quote(hooks.worktree_path)}"
    )
    return {
        "hooks": {
            "PreToolUse": [_hook(guard)],
            "PostToolUse": [_hook(f"fleet activity --agent {name}")],
            "UserPromptSubmit": [_hook(f"fleet mail check --inject --agent {name}")],
            "Stop": [_hook(f"fleet activity --agent {name}")],
        }
    }


class ClaudeRuntime(AgentRuntime):
    """Runtime adapter for Claude Code."""

    @property
    def name(self) -> str:
        return "claude"

    @property
    def instruction_path(self) -> str:
        return ".claude/CLAUDE.md"

    def build_spawn_command(self, opts: SpawnOpts) -> str:
        """
        Build the interactive launch command.

        Example:
            claude --model sonnet --permission-mode bypassPermissions
        """
        cmd = f"claude --model {opts.model}"
        if opts.permission_mode == "bypass":
            cmd += " --permission-mode bypassPermissions"

        if opts.append_system_prompt_file:
            cmd += f' --append-system-prompt "$(cat {quote(opts.append_system_prompt_file)})"'
        elif opts.append_system_prompt:
            cmd += f" --append-system-prompt {quote(opts.append_system_prompt)}"

        return cmd

    def build_print_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        cmd = ["claude", "--print", "-p", prompt]
        if model is not None:
            cmd += ["--model", model]
        return cmd

    def deploy_config(
        self,
        worktree_path: Path,
        overlay: Optional[str],
        hooks: HooksDef,
    ) -> None:
        worktree_path = Path(worktree_path)
        if overlay is not None:
            write_text(worktree_path / self.instruction_path, overlay)

        settings = build_claude_settings(hooks)
        write_text(
            worktree_path / ".claude" / "settings.local.json",
            json.dumps(settings, indent=2) + "\n",
        )

    def detect_ready(self, pane_content: Optional[str]) -> ReadyState:
        """
        Classify a Claude Code pane.

        The trust-folder prompt wins over everything else. Otherwise the TUI
        is ready once both a prompt marker and a status bar hint are visible.
        """
        if not pane_content:
            return ReadyState(PHASE_LOADING)

        if TRUST_DIALOG_MARKER in pane_content:
            return ReadyState(PHASE_DIALOG, action="Enter")

        has_prompt = any(marker in pane_content for marker in PROMPT_MARKERS)
        lower = pane_content.lower()
        has_status = any(marker in lower for marker in STATUS_MARKERS)
        if has_prompt and has_status:
            return ReadyState(PHASE_READY)

        return ReadyState(PHASE_LOADING)

    def parse_transcript(self, path: Path) -> Optional[TranscriptSummary]:
        """Sum usage from assistant entries; the first model seen is the session model."""
        path = Path(path)
        if not path.is_file():
            return None

        summary = TranscriptSummary()
        for entry in iter_jsonl(path):
            if entry.get("type") != "assistant":
                continue
            message = entry.get("message")
            if not isinstance(message, dict):
                continue
            usage = message.get("usage")
            if not isinstance(usage, dict):
                continue

            model = message.get("model") if isinstance(message.get("model"), str) else ""
            if model and not summary.model:
                summary.model = model
            summary.add(model, as_int(usage.get("input_tokens")), as_int(usage.get("output_tokens")))

        return summary
