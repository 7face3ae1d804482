"""CopilotRuntime implementation for the GitHub Copilot CLI."""

from pathlib import Path
from typing import List, Optional

from .base import (
    PHASE_LOADING,
    PHASE_READY,
    AgentRuntime,
    HooksDef,
    ReadyState,
    SpawnOpts,
    TranscriptSummary,
    as_int,
    iter_jsonl,
    write_text,
)


class CopilotRuntime(AgentRuntime):
    """Runtime adapter for Copilot CLI. It has no hooks and no system-prompt flag."""

    @property
    def name(self) -> str:
        return "copilot"

    @property
    def instruction_path(self) -> str:
        return ".github/copilot-instructions.md"

    def build_spawn_command(self, opts: SpawnOpts) -> str:
        cmd = f"copilot --model {opts.model}"
        if opts.permission_mode == "bypass":
            cmd += " --allow-all-tools"
        return cmd

    def build_print_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        cmd = ["copilot", "-p", prompt, "--allow-all-tools"]
        if model is not None:
            cmd += ["--model", model]
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
        if not pane_content:
            return ReadyState(PHASE_LOADING)

        lower = pane_content.lower()
        has_prompt = "❯" in pane_content or "copilot" in lower
        has_status = "shift+tab" in lower or "esc" in lower
        if has_prompt and has_status:
            return ReadyState(PHASE_READY)
        return ReadyState(PHASE_LOADING)

    def parse_transcript(self, path: Path) -> Optional[TranscriptSummary]:
        """Accepts both Claude-style assistant entries and Pi-style message_end entries."""
        path = Path(path)
        if not path.is_file():
            return None

        summary = TranscriptSummary()
        for entry in iter_jsonl(path):
            if isinstance(entry.get("model"), str):
                summary.model = entry["model"]

            if entry.get("type") == "assistant" and isinstance(entry.get("message"), dict):
                message = entry["message"]
                if isinstance(message.get("model"), str):
                    summary.model = message["model"]
                usage = message.get("usage")
                if isinstance(usage, dict):
                    summary.add(
                        summary.model,
                        as_int(usage.get("input_tokens")),
                        as_int(usage.get("output_tokens")),
                    )
            elif entry.get("type") == "message_end":
                summary.add(
                    summary.model,
                    as_int(entry.get("inputTokens")),
                    as_int(entry.get("outputTokens")),
                )

        return summary
