"""Tests for runtime selection and the Copilot runtime."""

import json

import pytest

from fleet.errors import ValidationError
from fleet.runtimes import (
    RUNTIMES,
    ClaudeRuntime,
    CodexRuntime,
    CopilotRuntime,
    HooksDef,
    SpawnOpts,
    get_runtime,
)


class TestGetRuntime:

    def test_default_is_claude(self):
        assert isinstance(get_runtime(), ClaudeRuntime)

    def test_config_default(self):
        assert isinstance(get_runtime(config={"runtime": {"default": "codex"}}), CodexRuntime)

    def test_explicit_name_beats_config(self):
        runtime = get_runtime("copilot", config={"runtime": {"default": "codex"}})
        assert isinstance(runtime, CopilotRuntime)

    def test_unknown_name(self):
        with pytest.raises(ValidationError) as exc_info:
            get_runtime("vim")
        assert exc_info.value.field == "runtime"
        assert "Available: claude, codex, copilot, pi" in exc_info.value.message

    def test_every_registered_runtime_names_itself(self):
        for name in RUNTIMES:
            assert get_runtime(name).name == name


class TestCopilotRuntime:

    def test_launch_command(self):
        runtime = CopilotRuntime()
        assert runtime.build_spawn_command(SpawnOpts(model="gpt-5", cwd="/w")) == "copilot --model gpt-5 --allow-all-tools"
        assert runtime.build_spawn_command(SpawnOpts(model="gpt-5", cwd="/w", permission_mode="ask")) == "copilot --model gpt-5"

    def test_ready_detection(self):
        runtime = CopilotRuntime()
        assert runtime.detect_ready("❯ \n shift+tab to cycle modes").is_ready
        assert not runtime.detect_ready("❯ ").is_ready
        assert not runtime.detect_ready("").is_ready

    def test_deploy_writes_copilot_instructions(self, tmp_path):
        runtime = CopilotRuntime()
        runtime.deploy_config(tmp_path, "# Task", HooksDef("b", "builder", str(tmp_path)))
        assert (tmp_path / ".github" / "copilot-instructions.md").read_text() == "# Task"

    def test_transcript_accepts_both_formats(self, tmp_path):
        path = tmp_path / "copilot.jsonl"
        path.write_text("\n".join([
            json.dumps({"type": "assistant", "message": {"model": "gpt-5", "usage": {"input_tokens": 4, "output_tokens": 2}}}),
            json.dumps({"type": "message_end", "inputTokens": 6, "outputTokens": 1}),
        ]))
        summary = CopilotRuntime().parse_transcript(path)
        assert summary.input_tokens == 10
        assert summary.output_tokens == 3
        assert summary.model == "gpt-5"
