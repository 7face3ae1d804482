"""
Pytest fixtures for E2E tests.

Provides a real git repository with a .fleet/ directory and cleans up any
tmux sessions and worktrees a test creates.
"""

import os
import subprocess

import pytest


@pytest.fixture
def e2e_repo(tmp_path, monkeypatch):
    """
    Provide an isolated project repository.

    Returns the repo root. A config.yaml with no stagger and no external
    CLIs (tracker, mulch) is written to .fleet/.
    """
    repo = tmp_path / f"e2e{os.getpid()}"
    repo.mkdir()
    subprocess.run(["git", "init", "-q", "-b", "main"], cwd=repo, check=True)
    subprocess.run(
        ["git", "-c", "user.name=e2e", "-c", "user.email=e2e@example.com",
         "commit", "-q", "--allow-empty", "-m", "init"],
        cwd=repo,
        check=True,
    )
    (repo / ".fleet").mkdir()
    (repo / ".fleet" / "config.yaml").write_text(
        "agents:\n  stagger_delay_ms: 0\ntask_tracker:\n  enabled: false\nmulch:\n  enabled: false\n"
    )
    monkeypatch.chdir(repo)

    created_sessions = []
    yield repo, created_sessions

    for session_name in created_sessions:
        subprocess.run(["tmux", "kill-session", "-t", session_name], capture_output=True)
    subprocess.run(["git", "worktree", "prune"], cwd=repo, capture_output=True)
