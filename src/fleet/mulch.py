"""Expertise priming through the mulch (`ml`) CLI."""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from fleet.errors import MulchError

# Top-level directories that say nothing about the domain of a file.
_GENERIC_DIRS = frozenset({"src", "lib", "app", "pkg", "packages", "tests", "test"})


def infer_domain(file_path: str) -> Optional[str]:
    """
    Expertise domain for a path: the first directory below any generic
    top-level directory.

    Examples:
        src/fleet/spawn.py -> fleet
        tests/runtimes/test_claude.py -> runtimes
        docs/guide.md -> docs
        setup.cfg -> None
    """
    parts = [p for p in Path(file_path).parts[:-1] if p not in (".", "/")]
    for part in parts:
        if part not in _GENERIC_DIRS:
            return part
    return None


def infer_domains_from_files(files: Sequence[str]) -> List[str]:
    """Unique domains for files, in first-seen order."""
    domains: List[str] = []
    for file_path in files:
        domain = infer_domain(file_path)
        if domain and domain not in domains:
            domains.append(domain)
    return domains


class MulchClient:
    """Wrapper around `ml prime`."""

    def __init__(self, cwd: Path, cli_path: str = "ml"):
        self.cwd = Path(cwd)
        self.cli_path = cli_path

    def prime(self, files: Optional[Sequence[str]] = None, domains: Optional[Sequence[str]] = None) -> str:
        """
        Return primed expertise text for the given files or domains.

        Raises:
            MulchError: If ml is missing or exits non-zero
        """
        cmd = [self.cli_path, "prime"]
        if domains:
            cmd += list(domains)
        if files:
            cmd += ["--files", *files]

        try:
            result = subprocess.run(cmd, cwd=str(self.cwd), capture_output=True, text=True)
        except FileNotFoundError:
            raise MulchError("ml CLI not found. Install mulch or check PATH.")

        if result.returncode != 0:
            raise MulchError(f"ml prime failed (exit {result.returncode}): {result.stderr.strip()}")
        return result.stdout
