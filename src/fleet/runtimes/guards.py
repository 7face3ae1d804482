"""Tool-call guard rules shared by every runtime.

Runtimes with a hook mechanism route each tool call through
``fleet guard`` (see guard_commands.py), which calls evaluate_tool_call().
Keeping the decision in Python means Claude hooks and the Pi extension
enforce exactly the same policy.
"""

import re
import shlex
from typing import Any, Dict, Iterable, List, Optional

from fleet.config import DEFAULT_QUALITY_GATES

# Native team/task tools bypass fleet delegation; agents spawn via `fleet spawn`.
NATIVE_TEAM_TOOLS = [
    "Task",
    "TeamCreate",
    "TeamDelete",
    "SendMessage",
    "TaskCreate",
    "TaskUpdate",
    "TaskList",
    "TaskGet",
    "TaskOutput",
    "TaskStop",
]

# Tools that wait for a human and hang forever in a detached tmux session.
INTERACTIVE_TOOLS = ["AskUserQuestion", "EnterPlanMode", "EnterWorktree"]

WRITE_TOOLS = ["Write", "Edit", "NotebookEdit"]

# Regex fragments for Bash commands that modify files or repository state.
DANGEROUS_BASH_PATTERNS = [
    r"sed\s+-i",
    r"sed\s+--in-place",
    r"echo\s+.*>",
    r"printf\s+.*>",
    r"cat\s+.*>",
    r"tee\s",
    r"\bvim\b",
    r"\bnano\b",
    r"\bvi\b",
    r"\bmv\s",
    r"\bcp\s",
    r"\brm\s",
    r"\bmkdir\s",
    r"\btouch\s",
    r"\bchmod\s",
    r"\bchown\s",
    r">>",
    r"\bgit\s+add\b",
    r"\bgit\s+commit\b",
    r"\bgit\s+merge\b",
    r"\bgit\s+push\b",
    r"\bgit\s+reset\b",
    r"\bgit\s+checkout\b",
    r"\bgit\s+rebase\b",
    r"\bgit\s+stash\b",
    r"\bnpm\s+install\b",
    r"\bpip\s+install\b",
    r"\bnode\s+-e\b",
    r"\bnode\s+--eval\b",
    r"\bpython3?\s+-c\b",
    r"\bperl\s+-e\b",
    r"\bruby\s+-e\b",
]

# File-modifying commands an implementation agent may only aim inside its worktree.
FILE_MODIFYING_BASH_PATTERNS = [
    r"sed\s+-i",
    r"sed\s+--in-place",
    r"echo\s+.*>",
    r"printf\s+.*>",
    r"cat\s+.*>",
    r"tee\s",
    r"\bmv\s",
    r"\bcp\s",
    r"\brm\s",
    r"\bmkdir\s",
    r"\btouch\s",
    r"\bchmod\s",
    r"\bchown\s",
    r">>",
    r"\binstall\s",
    r"\brsync\s",
]

# Checked before the blocklist: read-only or coordination commands.
SAFE_BASH_PREFIXES = [
    "fleet ",
    "bd ",
    "sd ",
    "ml ",
    "git status",
    "git log",
    "git diff",
    "git show",
    "git blame",
    "git branch",
]

# Patterns blocked for every capability, implementation agents included.
UNIVERSAL_BASH_PATTERNS = [
    r"\bgit\s+push\b",
    r"\bgit\s+reset\s+--hard\b",
]

NON_IMPLEMENTATION_CAPABILITIES = frozenset(
    {"scout", "reviewer", "lead", "coordinator", "supervisor", "monitor"}
)

# Coordination agents commit metadata (mail, tracker sync) themselves.
COORDINATION_CAPABILITIES = frozenset({"coordinator", "supervisor", "monitor"})

DEFAULT_GATE_COMMANDS = [gate["command"] for gate in DEFAULT_QUALITY_GATES]


def is_non_implementation(capability: str) -> bool:
    return capability in NON_IMPLEMENTATION_CAPABILITIES


def quality_gate_prefixes(quality_gates: Iterable[str]) -> List[str]:
    """First word of each quality gate command, as a safe prefix."""
    prefixes = []
    for gate in quality_gates:
        words = gate.split()
        if words:
            prefixes.append(f"{words[0]} ")
    return prefixes


def blocked_tools(capability: str) -> List[str]:
    tools = NATIVE_TEAM_TOOLS + INTERACTIVE_TOOLS
    if is_non_implementation(capability):
        tools = tools + WRITE_TOOLS
    return tools


def safe_prefixes(capability: str, quality_gates: Optional[Iterable[str]] = None) -> List[str]:
    prefixes = list(SAFE_BASH_PREFIXES)
    if capability in COORDINATION_CAPABILITIES:
        prefixes += ["git add", "git commit"]
    gates = DEFAULT_GATE_COMMANDS if quality_gates is None else quality_gates
    return prefixes + quality_gate_prefixes(gates)


def _outside_worktree(path: str, worktree_path: str) -> bool:
    root = worktree_path.rstrip("/")
    return not (path == root or path.startswith(root + "/"))


def evaluate_tool_call(
    tool_name: str,
    tool_input: Dict[str, Any],
    capability: str,
    worktree_path: Optional[str] = None,
    quality_gates: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Decide whether an agent may run a tool call.

    Args:
        tool_name: Tool being invoked (Bash, Write, Task, ...)
        tool_input: Tool arguments from the runtime's hook payload
        capability: Capability of the calling agent
        worktree_path: Agent worktree; file writes outside it are blocked
        quality_gates: Project quality gate commands, whitelisted for Bash

    Returns:
        None when allowed, otherwise the reason the call is blocked
    """
    if tool_name in blocked_tools(capability):
        if tool_name in WRITE_TOOLS:
            return f"{capability} agents cannot modify files"
        if tool_name in INTERACTIVE_TOOLS:
            return f"{tool_name} blocks in a detached session; send mail to your parent instead"
        return f"{tool_name} bypasses fleet; use `fleet spawn` and `fleet mail` to delegate"

    if tool_name in WRITE_TOOLS and worktree_path:
        file_path = str(tool_input.get("file_path") or tool_input.get("notebook_path") or "")
        if file_path.startswith("/") and _outside_worktree(file_path, worktree_path):
            return f"Write outside worktree is not allowed: {file_path}"

    if tool_name != "Bash":
        return None

    command = str(tool_input.get("command") or "").strip()

    for pattern in UNIVERSAL_BASH_PATTERNS:
        if re.search(pattern, command):
            return "git push and git reset --hard are reserved for the merge process"

    if is_non_implementation(capability):
        if any(command.startswith(p) for p in safe_prefixes(capability, quality_gates)):
            return None
        for pattern in DANGEROUS_BASH_PATTERNS:
            if re.search(pattern, command):
                return f"{capability} agents cannot modify files; this command is not allowed"
        return None

    if worktree_path and any(re.search(p, command) for p in FILE_MODIFYING_BASH_PATTERNS):
        try:
            tokens = shlex.split(command)
        except ValueError:
            tokens = command.split()
        for token in tokens:
            path = token.rstrip('";>')
            if not path.startswith("/") or path.startswith(("/tmp/", "/dev/")):
                continue
            if _outside_worktree(path, worktree_path):
                return f"File modification outside worktree is not allowed: {path}"

    return None
