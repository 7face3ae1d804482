"""Git worktree management for agent workspaces.

Each agent works in its own worktree on its own branch:
    <repo>/<worktrees base_dir>/<agent-name>   on   fleet/<agent-name>/<task-id>
"""

import logging
import subprocess
from pathlib import Path
from typing import Tuple, Union

from fleet.errors import WorktreeError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "fleet"


def branch_name_for(agent_name: str, task_id: str) -> str:
    return f"{BRANCH_PREFIX}/{agent_name}/{task_id}"


def _git(repo_root: Path, *args: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=str(repo_root),
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise WorktreeError("git not found. Install git or check PATH.")


def create_worktree(
    repo_root: Union[str, Path],
    base_dir: Union[str, Path],
    agent_name: str,
    base_branch: str,
    task_id: str,
) -> Tuple[Path, str]:
    """
    Create a worktree for agent_name on a new branch from base_branch.

    Args:
        repo_root: Canonical repository root
        base_dir: Directory that holds all agent worktrees
        agent_name: Agent name, used as the worktree directory name
        base_branch: Branch to start from (project canonical branch)
        task_id: Task id, part of the branch name

    Returns:
        (worktree path, branch name)

    Raises:
        WorktreeError: If the path already exists or git fails
    """
    repo_root = Path(repo_root)
    worktree_path = Path(base_dir) / agent_name
    branch = branch_name_for(agent_name, task_id)

    if worktree_path.exists():
        raise WorktreeError(
            f"Worktree path already exists: {worktree_path}",
            agent_name=agent_name,
        )

    worktree_path.parent.mkdir(parents=True, exist_ok=True)
    result = _git(repo_root, "worktree", "add", "-b", branch, str(worktree_path), base_branch)
    if result.returncode != 0:
        raise WorktreeError(
            f"git worktree add failed for {agent_name}: {result.stderr.strip()}",
            agent_name=agent_name,
        )

    logger.debug("Created worktree %s on %s", worktree_path, branch)
    return worktree_path, branch


def remove_worktree(repo_root: Union[str, Path], worktree_path: Union[str, Path], force: bool = True) -> None:
    """
    Remove a worktree.

    Raises:
        WorktreeError: If git refuses to remove it
    """
    args = ["worktree", "remove"]
    if force:
        args.append("--force")
    args.append(str(worktree_path))

    result = _git(Path(repo_root), *args)
    if result.returncode != 0:
        raise WorktreeError(f"git worktree remove failed for {worktree_path}: {result.stderr.strip()}")


def is_canonical_root(path: Union[str, Path], canonical_root: Union[str, Path]) -> bool:
    """True when path is the main checkout rather than an agent worktree."""
    return Path(path).resolve() == Path(canonical_root).resolve()
