"""
Path utilities for fleet.

Kept free of CLI imports so config, spawn and the stores can all find the
project root without importing cli.py.
"""

import os
import subprocess
from pathlib import Path
from typing import Optional

FLEET_DIR = ".fleet"


def get_git_root(start_path: Optional[str] = None) -> Optional[str]:
    """Top level of the working tree containing start_path (default: cwd).

    Inside a linked worktree this is the worktree itself, not the main
    checkout; see get_canonical_root. None outside git or without git.
    """
    if start_path is None:
        start_path = os.getcwd()

    try:
        result = subprocess.run(
            ['git', 'rev-parse', '--show-toplevel'],
            cwd=start_path,
            capture_output=True,
            text=True,
            check=True
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def get_canonical_root(start_path: Optional[str] = None) -> Optional[str]:
    """Return the main checkout's root, even when called from inside a worktree.

    A linked worktree shares the main repository's common git dir, whose
    parent is the canonical project root.
    """
    if start_path is None:
        start_path = os.getcwd()

    try:
        result = subprocess.run(
            ['git', 'rev-parse', '--path-format=absolute', '--git-common-dir'],
            cwd=start_path,
            capture_output=True,
            text=True,
            check=True
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None

    common_dir = Path(result.stdout.strip())
    if common_dir.name != '.git':
        return None
    return str(common_dir.parent)


def find_fleet_root(start_path: Optional[str] = None) -> Optional[str]:
    """Find the directory containing .fleet/ by walking up from start_path.

    Stops at the git root so ~/.fleet (global logs) is never mistaken for a
    project. When nothing is found inside a linked worktree, the canonical
    checkout is checked as well.

    Args:
        start_path: Directory to start search from (default: cwd)

    Returns:
        Path to directory containing .fleet/, or None if not found
    """
    if start_path is None:
        start_path = os.getcwd()

    current = Path(start_path).resolve()

    git_root = get_git_root(start_path)
    git_root_path = Path(git_root).resolve() if git_root else None

    while current != current.parent:
        if (current / FLEET_DIR).is_dir():
            return str(current)
        if git_root_path and current == git_root_path:
            break
        current = current.parent

    canonical = get_canonical_root(start_path)
    if canonical and (Path(canonical) / FLEET_DIR).is_dir():
        return canonical

    return None


def resolve_project_root(start_path: Optional[str] = None) -> Path:
    """Project root for fleet state: the .fleet/ owner, else git root, else cwd."""
    root = find_fleet_root(start_path) or get_git_root(start_path)
    if root:
        return Path(root)
    return Path(start_path or os.getcwd()).resolve()
