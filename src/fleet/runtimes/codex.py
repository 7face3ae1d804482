"""CodexRuntime implementation for the OpenAI Codex CLI.

Codex runs headless (`codex exec --json`): there is no TUI to wait for and
no way to tell idle from busy in the pane, so it reports ready immediately
and opts out of beacon verification. The overlay goes to AGENTS.md, which
Codex reads on its own.
"""

from pathlib import Path
from typing import List, Optional

from .base import (
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

START_PROMPT = "Read AGENTS.md for your task assignment and begin immediately."


class CodexRuntime(AgentRuntime):
    """Runtime adapter for Codex CLI."""

    @property
    def name(self) -> str:
        return "codex"

    @property
    def instruction_path(self) -> str:
        return "AGENTS.md"

    def build_spawn_command(self, opts: SpawnOpts) -> str:
        # --full-auto replaces permission modes; hooks do not exist here.
        cmd = f"codex exec --full-auto --json --model {opts.model}"

        if opts.append_system_prompt_file:
            cmd += f' "$(cat {quote(opts.append_system_prompt_file)})"{quote(" " + START_PROMPT)}'
        elif opts.append_system_prompt:
            cmd += " " + quote(f"{opts.append_system_prompt}\n\n{START_PROMPT}")
        else:
            cmd += " " + quote(START_PROMPT)

        return cmd

    def build_print_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        cmd = ["codex", "exec", "--full-auto", "--ephemeral"]
        if model is not None:
            cmd += ["--model", model]
        cmd.append(prompt)
        return cmd

    def deploy_config(
        self,
        worktree_path: Path,
        overlay: Optional[str],
        hooks: HooksDef,
    ) -> None:
        if overlay is None:
            return
        write_text(Path(worktree_path) / self.instruction_path, overlay)

    def detect_ready(self, pane_content: Optional[str]) -> ReadyState:
        return ReadyState(PHASE_READY)

    def requires_beacon_verification(self) -> bool:
        return False

    def parse_transcript(self, path: Path) -> Optional[TranscriptSummary]:
        """Sum turn.completed usage; the last model field seen wins."""
        path = Path(path)
        if not path.is_file():
            return None

        summary = TranscriptSummary()
        current_model = ""
        for event in iter_jsonl(path):
            if isinstance(event.get("model"), str):
                current_model = event["model"]
                summary.model = current_model

            if event.get("type") == "turn.completed":
                usage = event.get("usage")
                if isinstance(usage, dict):
                    summary.add(
                        current_model,
                        as_int(usage.get("input_tokens")),
                        as_int(usage.get("output_tokens")),
                    )

        return summary
