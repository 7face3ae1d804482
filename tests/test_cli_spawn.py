"""Tests for the `fleet spawn` command."""

import json
from unittest.mock import patch

from fleet.cli import cli
from fleet.errors import AgentError, HierarchyError
from fleet.spawn import SpawnResult


def make_result(**overrides):
    values = dict(
        agent_name="builder-1",
        capability="builder",
        task_id="task-1",
        branch_name="fleet/builder-1/task-1",
        worktree_path="/repo/.fleet/worktrees/builder-1",
        tmux_session="fleet-repo-builder-1",
        pid=4242,
        run_id="run-1",
        session_id="session-1-builder-1",
        runtime="claude",
    )
    values.update(overrides)
    return SpawnResult(**values)


class TestSpawnCommand:

    def test_options_forwarded(self, cli_runner):
        with patch("fleet.spawn_commands.spawn_agent", return_value=make_result()) as spawn:
            result = cli_runner.invoke(cli, [
                "spawn", "task-1",
                "--name", "builder-1",
                "--capability", "builder",
                "--parent", "lead-1",
                "--depth", "1",
                "--files", "src/a.py,src/b.py",
                "--max-agents", "3",
                "--runtime", "pi",
                "--skip-scout",
                "--force-depth",
            ])

        assert result.exit_code == 0, result.output
        task_id, options = spawn.call_args.args
        assert task_id == "task-1"
        assert options.parent == "lead-1"
        assert options.depth == "1"
        assert options.files == "src/a.py,src/b.py"
        assert options.max_agents == "3"
        assert options.runtime == "pi"
        assert options.skip_scout is True
        assert options.force_depth is True
        assert options.force_hierarchy is False

    def test_human_summary(self, cli_runner):
        with patch("fleet.spawn_commands.spawn_agent", return_value=make_result()):
            result = cli_runner.invoke(cli, ["spawn", "task-1", "--name", "builder-1", "--parent", "lead-1"])

        assert result.exit_code == 0
        assert "builder-1" in result.output
        assert "fleet/builder-1/task-1" in result.output
        assert "4242" in result.output

    def test_json_envelope(self, cli_runner):
        with patch("fleet.spawn_commands.spawn_agent", return_value=make_result()):
            result = cli_runner.invoke(cli, ["spawn", "task-1", "--name", "builder-1", "--json"])

        data = json.loads(result.output)
        assert data["success"] is True
        assert data["command"] == "spawn"
        assert data["agent_name"] == "builder-1"
        assert data["pid"] == 4242
        assert "schema_version" in data

    def test_error_exits_1_with_code(self, cli_runner):
        error = HierarchyError("Coordinator cannot spawn \"builder\" directly.", requested_capability="builder")
        with patch("fleet.spawn_commands.spawn_agent", side_effect=error):
            result = cli_runner.invoke(cli, ["spawn", "task-1", "--name", "b1"])

        assert result.exit_code == 1
        assert "Error [HIERARCHY_VIOLATION]: Coordinator cannot spawn" in result.output

    def test_error_json_envelope(self, cli_runner):
        with patch("fleet.spawn_commands.spawn_agent", side_effect=AgentError("Max concurrent agent limit reached: 2/2 active agents")):
            result = cli_runner.invoke(cli, ["spawn", "task-1", "--name", "b1", "--json"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["success"] is False
        assert data["error"]["code"] == "AGENT_ERROR"
        assert "2/2" in data["error"]["message"]

    def test_name_is_required(self, cli_runner):
        result = cli_runner.invoke(cli, ["spawn", "task-1"])
        assert result.exit_code == 2
        assert "--name" in result.output

    def test_unknown_runtime_rejected_by_click(self, cli_runner):
        result = cli_runner.invoke(cli, ["spawn", "task-1", "--name", "b1", "--runtime", "vim"])
        assert result.exit_code == 2


class TestVersion:

    def test_version(self, cli_runner):
        from fleet import __version__

        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
