"""PiRuntime implementation for the Pi coding agent."""

import json
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
    quote,
    write_text,
)

GUARD_EXTENSION_NAME = "fleet-guard.ts"

# Pi extensions intercept tool_call events. The extension defers the
# decision to `fleet guard` so Pi and Claude agents share one policy.
_GUARD_EXTENSION_TEMPLATE = """\
// Generated by fleet for agent {agent_name}. Do not edit.
import {{ spawnSync }} from "node:child_process";

const GUARD_ARGS = {guard_args};

export default function (pi: any) {{
\tpi.on("tool_call", (event: any) => {{
\t\tconst payload = JSON.stringify({{ tool_name: event.toolName, tool_input: event.input ?? {{}} }});
\t\tconst result = spawnSync("fleet", GUARD_ARGS, {{ input: payload, encoding: "utf8" }});
\t\tif (result.status !== 0 || !result.stdout) {{
\t\t\treturn {{ type: "allow" }};
\t\t}}
\t\ttry {{
\t\t\tconst out = JSON.parse(result.stdout).hookSpecificOutput;
\t\t\tif (out && out.permissionDecision === "deny") {{
\t\t\t\treturn {{ type: "block", reason: out.permissionDecisionReason }};
\t\t\t}}
\t\t}} catch {{
\t\t\treturn {{ type: "allow" }};
\t\t}}
\t\treturn {{ type: "allow" }};
\t}});
}}
"""


def generate_guard_extension(hooks: HooksDef) -> str:
    """TypeScript source for .pi/extensions/fleet-guard.ts."""
    guard_args = [
        "guard",
        "--agent", hooks.agent_name,
        "--capability", hooks.capability,
        "--worktree", hooks.worktree_path,
    ]
    return _GUARD_EXTENSION_TEMPLATE.format(
        agent_name=hooks.agent_name,
        guard_args=json.dumps(guard_args),
    )


class PiRuntime(AgentRuntime):
    """Runtime adapter for Pi."""

    @property
    def name(self) -> str:
        return "pi"

    @property
    def instruction_path(self) -> str:
        return ".claude/CLAUDE.md"

    def build_spawn_command(self, opts: SpawnOpts) -> str:
        # Pi has no permission modes and no prompt-file flag.
        cmd = f"pi --model {opts.model}"
        if opts.append_system_prompt:
            cmd += f" --append-system-prompt {quote(opts.append_system_prompt)}"
        return cmd

    def build_print_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        cmd = ["pi", "--print"]
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
        worktree_path = Path(worktree_path)
        if overlay is not None:
            write_text(worktree_path / self.instruction_path, overlay)

        pi_dir = worktree_path / ".pi"
        write_text(pi_dir / "extensions" / GUARD_EXTENSION_NAME, generate_guard_extension(hooks))
        write_text(
            pi_dir / "settings.json",
            json.dumps({"extensions": ["./extensions"]}, indent=2) + "\n",
        )

    def detect_ready(self, pane_content: Optional[str]) -> ReadyState:
        # Pi's header shows "pi" and "model:" once the editor is live.
        if pane_content and "pi" in pane_content and "model:" in pane_content:
            return ReadyState(PHASE_READY)
        return ReadyState(PHASE_LOADING)

    def requires_beacon_verification(self) -> bool:
        return False

    def parse_transcript(self, path: Path) -> Optional[TranscriptSummary]:
        """Sum message_end token counts; model_change events set the model."""
        path = Path(path)
        if not path.is_file():
            return None

        summary = TranscriptSummary()
        for entry in iter_jsonl(path):
            entry_type = entry.get("type")
            if entry_type == "model_change" and isinstance(entry.get("model"), str):
                summary.model = entry["model"]
            elif entry_type == "message_end":
                summary.add(
                    summary.model,
                    as_int(entry.get("inputTokens")),
                    as_int(entry.get("outputTokens")),
                )

        return summary
