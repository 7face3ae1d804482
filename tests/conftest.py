"""
Shared pytest fixtures for fleet tests.

Every test runs with its own log directory and an empty config cache. Stores
are real sqlite files under tmp_path; git and tmux are mocked per test.
"""

from pathlib import Path
from typing import Optional
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from fleet.config import clear_config_cache
from fleet.models import AgentSession
from fleet.sessions import RunStore, SessionStore, get_sessions_db_path


# =============================================================================
# ENVIRONMENT ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_fleet_env(tmp_path, monkeypatch):
    """
    Keep every test away from ~/.fleet and from cached config.

    FleetLogger() writes to FLEET_LOG_DIR, and get_config() caches per root.
    """
    monkeypatch.setenv("FLEET_LOG_DIR", str(tmp_path / "fleet-logs"))
    monkeypatch.delenv("FLEET_SPAWN_TIMEOUT", raising=False)
    monkeypatch.delenv("FLEET_AGENT_NAME", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


# =============================================================================
# SUBPROCESS MOCK HELPERS
# =============================================================================

def create_subprocess_mock(pane_pid="4242\n", pane_content="❯ \n  ⏵⏵ bypass permissions on (shift+tab to cycle)\n"):
    """
    Create a mock for subprocess.run that handles git and tmux commands.

    Args:
        pane_pid: Output for `tmux list-panes -F '#{pane_pid}'`
        pane_content: Output for `tmux capture-pane`

    Returns:
        side_effect callable: pane queries get the canned output, anything else succeeds silently.
    """
    def side_effect(args, **kwargs):
        cmd = args if isinstance(args, list) else [args]

        if len(cmd) >= 2 and cmd[:2] == ['tmux', 'list-panes']:
            return Mock(returncode=0, stdout=pane_pid, stderr="")

        if len(cmd) >= 2 and cmd[:2] == ['tmux', 'capture-pane']:
            return Mock(returncode=0, stdout=pane_content, stderr="")

        # Default for other commands (git worktree add, tmux new-session, ...)
        return Mock(returncode=0, stdout="", stderr="")

    return side_effect


# =============================================================================
# SESSION HELPERS
# =============================================================================

def make_session(
    agent_name: str,
    capability: str = "builder",
    task_id: str = "task-1",
    state: str = "working",
    parent_agent: Optional[str] = None,
    started_at: str = "2026-01-05T10:00:00+00:00",
    depth: int = 1,
    run_id: Optional[str] = None,
) -> AgentSession:
    """Build an AgentSession with sensible defaults for admission tests."""
    return AgentSession(
        id=f"session-1-{agent_name}",
        agent_name=agent_name,
        capability=capability,
        worktree_path=f"/repo/.fleet/worktrees/{agent_name}",
        branch_name=f"fleet/{agent_name}/{task_id}",
        task_id=task_id,
        tmux_session=f"fleet-repo-{agent_name}",
        state=state,
        pid=1000,
        parent_agent=parent_agent,
        depth=depth,
        run_id=run_id,
        started_at=started_at,
        last_activity=started_at,
    )


@pytest.fixture
def session_factory():
    """make_session as a fixture, so test modules need not import conftest."""
    return make_session


@pytest.fixture
def subprocess_mock():
    """create_subprocess_mock as a fixture."""
    return create_subprocess_mock


# =============================================================================
# CLI FIXTURES
# =============================================================================

@pytest.fixture
def cli_runner():
    """click CliRunner for invoking `fleet.cli.cli` in-process."""
    return CliRunner()


# =============================================================================
# PROJECT FIXTURES
# =============================================================================

@pytest.fixture
def project_dir(tmp_path):
    """
    Create a project directory with a .fleet/ directory.

    Returns the project root. No git repository is initialized; tests that
    need git patch subprocess.run or the worktree functions.
    """
    root = tmp_path / "project"
    (root / ".fleet").mkdir(parents=True)
    return root


@pytest.fixture
def fleet_config(project_dir):
    """
    Write .fleet/config.yaml with small limits and return a writer.

    Usage:
        def test_x(fleet_config):
            fleet_config("agents:\\n  max_concurrent: 1\\n")
    """
    def write(text: str) -> Path:
        path = project_dir / ".fleet" / "config.yaml"
        path.write_text(text)
        clear_config_cache()
        return path

    return write


@pytest.fixture
def session_store(project_dir):
    """Real SessionStore on a temporary sessions.db."""
    store = SessionStore(get_sessions_db_path(project_dir))
    yield store
    store.close()


@pytest.fixture
def run_store(project_dir):
    """Real RunStore on the same temporary sessions.db."""
    store = RunStore(get_sessions_db_path(project_dir))
    yield store
    store.close()
