"""Spawn an agent into its own worktree and tmux session.

spawn_agent() runs the whole sequence:

    validate -> run -> admission -> task check -> worktree -> overlay ->
    runtime config -> dispatch mail -> claim -> identity -> tmux ->
    session row -> run counter -> handshake

Admission and task checks run before anything is created. From worktree
creation up to the session row, a failure removes the worktree again, so a
failed spawn before that point leaves nothing in sessions.db. Once the row
is written in `booting`, later failures leave it for the watchdog to reap.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import click
import yaml

from fleet.admission import (
    calculate_stagger_delay,
    check_concurrency_limit,
    check_depth_limit,
    check_duplicate_lead,
    check_name_available,
    check_parent_agent_limit,
    check_run_session_limit,
    check_task_lock,
    filter_active,
    is_running_as_root,
    is_task_lock_permitted,
    parent_has_scouts,
    validate_hierarchy,
)
from fleet.config import (
    CAPABILITIES,
    can_spawn,
    get_config,
    resolve_model,
    resolve_quality_gates,
)
from fleet.errors import AgentError, MailError, MulchError, TrackerError, ValidationError
from fleet.handshake import BeaconOptions, HandshakeResult, run_handshake
from fleet.identity import create_identity, load_identity, new_identity
from fleet.logging import FleetLogger
from fleet.mail import MailClient, MailStore, get_mail_db_path
from fleet.models import RUN_ACTIVE, AgentSession, Run, utc_now, utc_now_iso
from fleet.mulch import MulchClient, infer_domains_from_files
from fleet.overlay import OverlayConfig, write_overlay
from fleet.path_utils import FLEET_DIR, get_canonical_root, resolve_project_root
from fleet.runtimes import HooksDef, SpawnOpts, get_runtime
from fleet.sessions import RunStore, SessionStore, get_sessions_db_path
from fleet.tmux_utils import create_session, ensure_tmux_available, session_name_for
from fleet.tracker import TrackerClient, create_tracker_client
from fleet.worktree import create_worktree, remove_worktree

logger = logging.getLogger(__name__)

CURRENT_RUN_FILE = "current-run.txt"
IDENTITY_DIR = "agents"


@dataclass
class SpawnOptions:
    """Options for one spawn, as given on the `fleet spawn` command line."""

    name: str
    capability: str = "builder"
    spec: Optional[str] = None
    files: Optional[str] = None  # comma-separated file scope
    parent: Optional[str] = None
    depth: Union[int, str] = 0
    force_depth: bool = False
    skip_task_check: bool = False
    force_hierarchy: bool = False
    json: bool = False
    max_agents: Optional[Union[int, str]] = None  # per-parent ceiling override
    runtime: Optional[str] = None
    # Dispatch overrides written into a lead's overlay
    skip_scout: bool = False
    skip_review: bool = False
    dispatch_max_agents: Optional[Union[int, str]] = None


@dataclass
class SpawnResult:
    agent_name: str
    capability: str
    task_id: str
    branch_name: str
    worktree_path: str
    tmux_session: str
    pid: int
    run_id: str
    session_id: str
    runtime: str
    warnings: List[str] = field(default_factory=list)
    handshake: Optional[HandshakeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.handshake is not None:
            data["handshake"] = {
                "verified": self.handshake.verified,
                "attempts": self.handshake.attempts,
                "resends": self.handshake.resends,
            }
        return data


def _parse_non_negative_int(value: Any, field_name: str) -> Optional[int]:
    """
    Raises:
        ValidationError: If value is not a non-negative integer
    """
    if value is None:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"--{field_name.replace('_', '-')} must be a non-negative integer, got {value!r}",
            field=field_name,
            value=value,
        )
    if parsed < 0:
        raise ValidationError(
            f"--{field_name.replace('_', '-')} must be a non-negative integer, got {value!r}",
            field=field_name,
            value=value,
        )
    return parsed


def split_files(files: Optional[str]) -> List[str]:
    """'a.py, b.py,' -> ['a.py', 'b.py']"""
    if not files:
        return []
    return [f.strip() for f in files.split(",") if f.strip()]


def _warn(message: str, warnings: List[str], fleet_logger: FleetLogger, data: Dict[str, Any]) -> None:
    warnings.append(message)
    click.echo(f"Warning: {message}", err=True)
    fleet_logger.log_warning("spawn", message, data)


def build_auto_dispatch(
    agent_name: str,
    capability: str,
    task_id: str,
    spec_path: Optional[str],
    parent_agent: Optional[str],
    instruction_path: str,
) -> Dict[str, str]:
    """Mail sent to a new agent before launch so its first mail check has work."""
    if spec_path:
        spec_line = f"Spec file: {spec_path}"
    else:
        spec_line = "No spec file provided. Check your overlay for task details."

    body = "\n".join([
        f"You have been assigned task {task_id} as a {capability} agent.",
        spec_line,
        f"Read your overlay at {instruction_path} and begin immediately.",
    ])
    return {
        "from_agent": parent_agent or "orchestrator",
        "to": agent_name,
        "subject": f"Dispatch: {task_id}",
        "body": body,
        "type": "dispatch",
        "priority": "normal",
    }


def new_run_id() -> str:
    return "run-" + utc_now().isoformat().replace(":", "-").replace(".", "-").replace("+", "-")


def resolve_run(fleet_dir: Path, run_store: RunStore) -> Run:
    """
    Current run from .fleet/current-run.txt, created lazily.

    A missing file, an unknown id, or a completed run starts a new run and
    points the file at it.
    """
    run_file = Path(fleet_dir) / CURRENT_RUN_FILE
    if run_file.exists():
        run_id = run_file.read_text().strip()
        if run_id:
            run = run_store.get_run(run_id)
            if run is not None and run.status == RUN_ACTIVE:
                return run

    run = Run(id=new_run_id(), started_at=utc_now_iso())
    run_store.create_run(run)
    run_file.parent.mkdir(parents=True, exist_ok=True)
    run_file.write_text(run.id + "\n")
    logger.debug("Started run %s", run.id)
    return run


def _load_base_definition(project_root: Path, config: Dict[str, Any], capability: str) -> str:
    path = project_root / config["agents"]["base_dir"] / f"{capability}.md"
    if path.is_file():
        return path.read_text()
    return ""


def _admit(
    task_id: str,
    options: SpawnOptions,
    config: Dict[str, Any],
    session_store: SessionStore,
    max_agents: Optional[int],
    warnings: List[str],
    fleet_logger: FleetLogger,
) -> None:
    """Session admission against one snapshot of active sessions."""
    agents_cfg = config["agents"]
    name = options.name
    active = session_store.get_active()

    check_concurrency_limit(active, int(agents_cfg["max_concurrent"]), agent_name=name)
    check_name_available(active, name)

    holder = check_task_lock(active, task_id)
    if not is_task_lock_permitted(holder, options.parent):
        raise AgentError(
            f'Task "{task_id}" is already being worked by "{holder}". '
            f'Only "{holder}" may delegate it to a child (--parent {holder}).',
            agent_name=name,
        )

    delay_ms = calculate_stagger_delay(int(agents_cfg["stagger_delay_ms"]), active)
    if delay_ms > 0:
        logger.debug("Staggering spawn of %s by %dms", name, delay_ms)
        time.sleep(delay_ms / 1000)

    if options.parent:
        limit = max_agents if max_agents is not None else int(agents_cfg["max_agents_per_lead"])
        if check_parent_agent_limit(active, options.parent, limit):
            children = sum(1 for s in filter_active(active) if s.parent_agent == options.parent)
            raise AgentError(
                f'Per-lead agent limit reached: "{options.parent}" has {children}/{limit} '
                f"active agents. Wait for one to finish, or raise --max-agents.",
                agent_name=name,
            )

    if agents_cfg.get("prevent_duplicate_leads") and options.capability == "lead":
        lead = check_duplicate_lead(active, task_id)
        if lead is not None:
            raise AgentError(
                f'Task "{task_id}" already has an active lead: "{lead}"',
                agent_name=name,
            )

    if (
        options.capability == "builder"
        and options.parent
        and not options.skip_scout
        and not parent_has_scouts(session_store.get_all(), options.parent)
    ):
        _warn(
            f'"{options.parent}" is spawning builder "{name}" without any scouts. '
            f"Consider scouting first, or pass --skip-scout.",
            warnings,
            fleet_logger,
            {"agent_name": name, "parent_agent": options.parent},
        )


def _check_task(tracker: TrackerClient, task_id: str, agent_name: str) -> None:
    """
    Raises:
        AgentError: If the tracker cannot show the task
        ValidationError: If the task is not open or in progress
    """
    try:
        issue = tracker.show(task_id)
    except TrackerError as e:
        raise AgentError(
            f'Task "{task_id}" not found or inaccessible: {e}',
            agent_name=agent_name,
        )
    if not issue.is_workable:
        raise ValidationError(
            f'Task "{task_id}" is not workable (status: {issue.status}). '
            f"Only open or in_progress tasks can be assigned.",
            field="task_id",
            value=issue.status,
        )


def _prime_expertise(
    project_root: Path,
    file_scope: List[str],
    warnings: List[str],
    fleet_logger: FleetLogger,
    agent_name: str,
) -> Optional[str]:
    if not file_scope:
        return None
    try:
        return MulchClient(project_root).prime(files=file_scope)
    except MulchError as e:
        _warn(f"Expertise priming skipped: {e}", warnings, fleet_logger, {"agent_name": agent_name})
        return None


@contextmanager
def _release_worktree_on_error(
    project_root: Path,
    worktree_path: Path,
    agent_name: str,
    fleet_logger: FleetLogger,
) -> Iterator[None]:
    """
    Remove worktree_path if the block raises, then re-raise.

    Covers provisioning up to the session row. A failed removal is logged and
    never replaces the original error.
    """
    try:
        yield
    except Exception as e:
        fleet_logger.log_error("spawn", "Provisioning failed, removing worktree", {
            "agent_name": agent_name,
            "worktree_path": str(worktree_path),
            "reason": str(e),
        })
        try:
            remove_worktree(project_root, worktree_path, force=True)
        except Exception as cleanup_error:
            logger.warning("Could not remove worktree %s: %s", worktree_path, cleanup_error)
            fleet_logger.log_warning("spawn", "Worktree cleanup failed", {
                "agent_name": agent_name,
                "worktree_path": str(worktree_path),
                "reason": str(cleanup_error),
            })
        raise


def _spawn(
    task_id: str,
    options: SpawnOptions,
    project_root: Path,
    fleet_logger: FleetLogger,
) -> SpawnResult:
    name = options.name
    warnings: List[str] = []

    if not task_id or not task_id.strip():
        raise ValidationError("Task ID is required", field="task_id", value=task_id)
    if not name or not name.strip():
        raise ValidationError("--name is required", field="name", value=name)

    if is_running_as_root():
        raise AgentError(
            "Refusing to spawn agents as root: agent CLIs reject permission bypass for uid 0. "
            "Run fleet as a regular user.",
            agent_name=name,
        )

    depth = _parse_non_negative_int(options.depth, "depth") or 0
    max_agents = _parse_non_negative_int(options.max_agents, "max_agents")
    dispatch_max_agents = _parse_non_negative_int(options.dispatch_max_agents, "dispatch_max_agents")

    if options.capability not in CAPABILITIES:
        raise ValidationError(
            f'Unknown capability: "{options.capability}". Available: {", ".join(CAPABILITIES)}',
            field="capability",
            value=options.capability,
        )

    spec_path: Optional[str] = None
    if options.spec:
        spec = Path(options.spec)
        if not spec.is_absolute():
            spec = project_root / spec
        if not spec.exists():
            raise ValidationError(f"Spec file not found: {options.spec}", field="spec", value=options.spec)
        spec_path = str(spec.resolve())

    config = get_config(project_root)
    check_depth_limit(depth, int(config["agents"]["max_depth"]), force=options.force_depth, agent_name=name)
    validate_hierarchy(options.parent, options.capability, options.force_hierarchy, agent_name=name)

    runtime = get_runtime(options.runtime, config)
    fleet_dir = project_root / FLEET_DIR
    db_path = get_sessions_db_path(project_root)

    with SessionStore(db_path, fleet_logger) as session_store, RunStore(db_path, fleet_logger) as run_store:
        run = resolve_run(fleet_dir, run_store)

        max_per_run = int(config["agents"]["max_sessions_per_run"])
        if check_run_session_limit(max_per_run, run.agent_count):
            raise AgentError(
                f"Run session limit reached: {run.agent_count}/{max_per_run} agents spawned in "
                f"{run.id}. Raise agents.max_sessions_per_run or start a new run.",
                agent_name=name,
            )

        _admit(task_id, options, config, session_store, max_agents, warnings, fleet_logger)

        tracker: Optional[TrackerClient] = None
        if config["task_tracker"]["enabled"]:
            tracker = create_tracker_client(config["task_tracker"]["backend"], project_root)
            if not options.skip_task_check:
                _check_task(tracker, task_id, name)

        canonical_root = Path(get_canonical_root(str(project_root)) or project_root)
        worktree_path, branch_name = create_worktree(
            project_root,
            project_root / config["worktrees"]["base_dir"],
            name,
            config["project"]["canonical_branch"],
            task_id,
        )

        with _release_worktree_on_error(project_root, worktree_path, name, fleet_logger):
            file_scope = split_files(options.files)
            quality_gates = resolve_quality_gates(config)
            expertise = None
            if config["mulch"]["enabled"]:
                expertise = _prime_expertise(project_root, file_scope, warnings, fleet_logger, name)

            overlay_config = OverlayConfig(
                agent_name=name,
                capability=options.capability,
                task_id=task_id,
                branch_name=branch_name,
                worktree_path=str(worktree_path),
                depth=depth,
                parent_agent=options.parent,
                spec_path=spec_path,
                file_scope=file_scope,
                mulch_domains=infer_domains_from_files(file_scope),
                mulch_expertise=expertise,
                can_spawn=can_spawn(options.capability),
                skip_scout=options.skip_scout,
                skip_review=options.skip_review,
                max_agents_override=dispatch_max_agents,
                quality_gates=quality_gates,
                base_definition=_load_base_definition(project_root, config, options.capability),
                tracker_cli=tracker.cli_name if tracker is not None else "sd",
            )
            write_overlay(worktree_path, overlay_config, canonical_root, runtime.instruction_path)

            runtime.deploy_config(
                worktree_path,
                None,
                HooksDef(
                    agent_name=name,
                    capability=options.capability,
                    worktree_path=str(worktree_path),
                    quality_gates=[gate["command"] for gate in quality_gates],
                ),
            )

            dispatch = build_auto_dispatch(
                name, options.capability, task_id, spec_path, options.parent, runtime.instruction_path
            )
            try:
                with MailStore(get_mail_db_path(project_root)) as mail_store:
                    MailClient(mail_store).send(**dispatch)
            except MailError as e:
                _warn(f"Dispatch mail not sent: {e}", warnings, fleet_logger, {"agent_name": name})

            if tracker is not None and not options.skip_task_check:
                try:
                    tracker.claim(task_id)
                except TrackerError as e:
                    _warn(f"Could not claim {task_id}: {e}", warnings, fleet_logger, {"agent_name": name})

            identity_dir = fleet_dir / IDENTITY_DIR
            try:
                if load_identity(identity_dir, name) is None:
                    create_identity(
                        identity_dir,
                        new_identity(name, options.capability, overlay_config.mulch_domains),
                    )
            except (yaml.YAMLError, OSError) as e:
                _warn(
                    f"Agent identity not recorded: {e}", warnings, fleet_logger, {"agent_name": name}
                )

            ensure_tmux_available()

            model = resolve_model(config, options.capability)
            env = runtime.build_env(model)
            env["FLEET_AGENT_NAME"] = name
            env["FLEET_WORKTREE_PATH"] = str(worktree_path)
            command = runtime.build_spawn_command(
                SpawnOpts(model=model.model, cwd=str(worktree_path), env=env)
            )

            tmux_session = session_name_for(config["project"]["name"], name)
            pid = create_session(tmux_session, str(worktree_path), command, env)

            now = utc_now_iso()
            session = AgentSession(
                id=f"session-{int(time.time() * 1000)}-{name}",
                agent_name=name,
                capability=options.capability,
                worktree_path=str(worktree_path),
                branch_name=branch_name,
                task_id=task_id,
                tmux_session=tmux_session,
                state="booting",
                pid=pid,
                parent_agent=options.parent,
                depth=depth,
                run_id=run.id,
                started_at=now,
                last_activity=now,
            )
            session_store.upsert(session)
        run_store.increment_agent_count(run.id)

    handshake = run_handshake(
        tmux_session,
        runtime,
        BeaconOptions(
            agent_name=name,
            capability=options.capability,
            task_id=task_id,
            depth=depth,
            instruction_path=runtime.instruction_path,
            parent_agent=options.parent,
        ),
        fleet_logger=fleet_logger,
    )
    if handshake.verified is False:
        _warn(
            f"{name} did not visibly pick up its beacon after {handshake.attempts} checks; "
            f"it may still be starting",
            warnings,
            fleet_logger,
            {"agent_name": name, "tmux_session": tmux_session},
        )

    return SpawnResult(
        agent_name=name,
        capability=options.capability,
        task_id=task_id,
        branch_name=branch_name,
        worktree_path=str(worktree_path),
        tmux_session=tmux_session,
        pid=pid,
        run_id=run.id,
        session_id=session.id,
        runtime=runtime.name,
        warnings=warnings,
        handshake=handshake,
    )


def spawn_agent(
    task_id: str,
    options: SpawnOptions,
    project_root: Optional[Path] = None,
    fleet_logger: Optional[FleetLogger] = None,
) -> SpawnResult:
    """
    Spawn one agent for task_id.

    Args:
        task_id: Tracker task the agent works on
        options: Spawn options (name, capability, parent, depth, ...)
        project_root: Project root (default: resolved from cwd)
        fleet_logger: Event log (default: FleetLogger())

    Returns:
        SpawnResult describing the launched agent

    Raises:
        ValidationError: Bad input, unknown capability or runtime, task not workable
        HierarchyError: Coordinator spawning a non-lead without --force-hierarchy
        AgentError: Admission refused, task not found, or launch failed
    """
    if fleet_logger is None:
        fleet_logger = FleetLogger()
    root = Path(project_root) if project_root is not None else resolve_project_root()

    start_time = time.time()
    fleet_logger.log_command_start("spawn", {
        "agent_name": options.name,
        "task_id": task_id,
        "capability": options.capability,
        "parent_agent": options.parent,
        "depth": options.depth,
        "runtime": options.runtime or "default",
        "project_root": str(root),
    })

    try:
        result = _spawn(task_id, options, root, fleet_logger)
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        fleet_logger.log_error("spawn", f"Spawn failed: {str(e)}", {
            "error_type": type(e).__name__,
            "agent_name": options.name,
            "task_id": task_id,
            "duration_ms": duration_ms,
        })
        raise

    duration_ms = int((time.time() - start_time) * 1000)
    fleet_logger.log_command_complete("spawn", duration_ms, {
        "agent_name": result.agent_name,
        "task_id": task_id,
        "tmux_session": result.tmux_session,
        "pid": result.pid,
        "run_id": result.run_id,
    })
    return result
