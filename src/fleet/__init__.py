"""fleet: spawn and coordinate coding agents in isolated worktrees."""

__version__ = "0.4.0"
