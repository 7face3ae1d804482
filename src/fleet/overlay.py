"""Per-agent instruction overlay.

The overlay is the markdown file an agent reads first (CLAUDE.md, AGENTS.md,
...). It combines the capability's base definition with this spawn's
assignment: task, branch, worktree, file scope, quality gates, constraints.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from fleet.config import DEFAULT_QUALITY_GATES
from fleet.errors import AgentError
from fleet.worktree import is_canonical_root

READ_ONLY_CAPABILITIES = frozenset({"scout", "reviewer"})


@dataclass
class OverlayConfig:
    agent_name: str
    capability: str
    task_id: str
    branch_name: str
    worktree_path: str
    depth: int = 0
    parent_agent: Optional[str] = None
    spec_path: Optional[str] = None
    file_scope: List[str] = field(default_factory=list)
    mulch_domains: List[str] = field(default_factory=list)
    mulch_expertise: Optional[str] = None
    can_spawn: bool = False
    skip_scout: bool = False
    skip_review: bool = False
    max_agents_override: Optional[int] = None
    quality_gates: List[Dict[str, str]] = field(default_factory=list)
    base_definition: str = ""
    tracker_cli: str = "sd"


OVERLAY_TEMPLATE = """{base_definition}

# Assignment

- **Agent:** {agent_name} ({capability})
- **Task:** {task_id}
- **Spec:** {spec_path}
- **Branch:** {branch_name}
- **Worktree:** {worktree_path}
- **Parent:** {parent_agent}
- **Depth:** {depth}

{spec_instruction}

## File Scope

{file_scope}

## Expertise

{mulch_domains}

{mulch_expertise}
{skip_scout}
{dispatch_overrides}

## Spawning

{can_spawn}

{quality_gates}

{constraints}

## Communication

- Check mail: `fleet mail check --agent {agent_name}`
- Ask your parent: `fleet mail send --to {parent_agent} --subject "..." --body "..." --type question --agent {agent_name}`
"""

SKIP_SCOUT_SECTION = """
## Skip Scout Mode

Go straight to building: write specs from what you already know and the
expertise above, then spawn builders. Do NOT spawn scouts. Your parent has
already gathered the context you need.
"""


def _gates(config: OverlayConfig) -> List[Dict[str, str]]:
    return config.quality_gates or DEFAULT_QUALITY_GATES


def format_file_scope(file_scope: List[str]) -> str:
    if not file_scope:
        return "No file scope restrictions"
    return "\n".join(f"- `{f}`" for f in file_scope)


def format_mulch_domains(domains: List[str]) -> str:
    if not domains:
        return "No specific expertise domains configured"
    return f"```bash\nml prime {' '.join(domains)}\n```"


def format_mulch_expertise(expertise: Optional[str]) -> str:
    if not expertise or not expertise.strip():
        return ""
    return "\n".join([
        "### Pre-loaded Expertise",
        "",
        "Loaded at spawn time from your file scope:",
        "",
        expertise,
    ])


def format_dispatch_overrides(config: OverlayConfig) -> str:
    if config.capability != "lead":
        return ""

    lines = []
    if config.skip_review:
        lines.append(
            "- **SKIP REVIEW**: do not spawn a reviewer. Read the diff and run the "
            "quality gates yourself."
        )
    if config.max_agents_override is not None and config.max_agents_override > 0:
        lines.append(
            f"- **MAX AGENTS**: spawn at most **{config.max_agents_override}** sub-workers."
        )
    if not lines:
        return ""
    return "\n".join(["## Dispatch Overrides", "", *lines])


def format_can_spawn(config: OverlayConfig) -> str:
    if not config.can_spawn:
        return "You may NOT spawn sub-workers."
    return "\n".join([
        "You may spawn sub-workers with `fleet spawn`:",
        "",
        "```bash",
        "fleet spawn <task-id> --capability builder --name <worker-name> \\",
        f"  --parent {config.agent_name} --depth {config.depth + 1}",
        "```",
    ])


def format_quality_gates(config: OverlayConfig) -> str:
    parent = config.parent_agent or "coordinator"

    if config.capability in READ_ONLY_CAPABILITIES:
        return "\n".join([
            "## Completion",
            "",
            f"1. Close the issue: `{config.tracker_cli} close {config.task_id} --reason \"summary\"`",
            f"2. Send results: `fleet mail send --to {parent} --subject \"done\" "
            f"--body \"Summary\" --type result --agent {config.agent_name}`",
            "",
            "You are a read-only agent. Do NOT commit, modify files, or run quality gates.",
        ])

    gate_lines = [
        f"{i}. **{gate.get('name', gate['command'])}:** `{gate['command']}` ({gate.get('description', '')})"
        for i, gate in enumerate(_gates(config), start=1)
    ]
    n = len(gate_lines)
    return "\n".join([
        "## Quality Gates",
        "",
        "Before reporting completion you MUST pass every gate:",
        "",
        *gate_lines,
        f"{n + 1}. **Commit:** all changes committed to `{config.branch_name}`",
        f"{n + 2}. **Signal completion:** `fleet mail send --to {parent} "
        f"--subject \"Worker done: {config.task_id}\" --body \"Quality gates passed.\" "
        f"--type worker_done --agent {config.agent_name}`",
        f"{n + 3}. **Close issue:** `{config.tracker_cli} close {config.task_id} --reason \"summary\"`",
        "",
        "Do NOT push to the canonical branch.",
    ])


def format_constraints(config: OverlayConfig) -> str:
    if config.capability in READ_ONLY_CAPABILITIES:
        return "\n".join([
            "## Constraints",
            "",
            "- You are **read-only**: do NOT modify, create, or delete any files",
            "- Do NOT commit, push, or change git state",
            "- If you are blocked, send mail with `--priority urgent --type error`",
        ])
    return "\n".join([
        "## Constraints",
        "",
        f"- All writes MUST target files inside your worktree at `{config.worktree_path}`",
        "- Only modify files in your File Scope",
        f"- Commit only to your branch: {config.branch_name}",
        "- Never push to the canonical branch",
        "- If you are blocked, send mail with `--priority urgent --type error`",
    ])


def generate_overlay(config: OverlayConfig) -> str:
    """Render the overlay markdown for one agent."""
    if config.spec_path:
        spec_instruction = "Read your task spec at the path above. It describes what to build or review."
    else:
        spec_instruction = "No task spec was provided. Check your mail or ask your parent agent."

    return OVERLAY_TEMPLATE.format(
        base_definition=config.base_definition.strip(),
        agent_name=config.agent_name,
        capability=config.capability,
        task_id=config.task_id,
        spec_path=config.spec_path or "No spec file provided",
        branch_name=config.branch_name,
        worktree_path=config.worktree_path,
        parent_agent=config.parent_agent or "coordinator",
        depth=config.depth,
        spec_instruction=spec_instruction,
        file_scope=format_file_scope(config.file_scope),
        mulch_domains=format_mulch_domains(config.mulch_domains),
        mulch_expertise=format_mulch_expertise(config.mulch_expertise),
        skip_scout=SKIP_SCOUT_SECTION if config.skip_scout else "",
        dispatch_overrides=format_dispatch_overrides(config),
        can_spawn=format_can_spawn(config),
        quality_gates=format_quality_gates(config),
        constraints=format_constraints(config),
    ).lstrip()


def write_overlay(
    worktree_path: Path,
    config: OverlayConfig,
    canonical_root: Path,
    instruction_path: str = ".claude/CLAUDE.md",
) -> Path:
    """
    Render and write the overlay into the agent's worktree.

    Raises:
        AgentError: If worktree_path is the canonical project root (the
            overlay would overwrite the orchestrator's own instructions) or
            the file cannot be written
    """
    if is_canonical_root(worktree_path, canonical_root):
        raise AgentError(
            f"Refusing to write overlay to the canonical project root: {worktree_path}",
            agent_name=config.agent_name,
        )

    target = Path(worktree_path) / instruction_path
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(generate_overlay(config))
    except OSError as e:
        raise AgentError(f"Failed to write overlay to {target}: {e}", agent_name=config.agent_name)
    return target
