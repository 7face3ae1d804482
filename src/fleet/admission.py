"""Admission checks for spawning agents.

Every function here is pure: it decides from its arguments alone (a snapshot
of sessions, configured limits, a clock value) and never touches the stores.
The spawn orchestrator takes one snapshot right before admission and runs
these checks against it.
"""

import os
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from fleet.errors import AgentError, HierarchyError
from fleet.models import AgentSession, parse_timestamp, utc_now


def filter_active(sessions: Iterable[AgentSession]) -> List[AgentSession]:
    """Drop zombie and completed sessions."""
    return [s for s in sessions if s.is_active]


def is_running_as_root(getuid: Optional[Callable[[], int]] = None) -> bool:
    """True when the effective process uid is 0.

    Agent CLIs refuse to run permission-bypass modes as root and exit
    without output, so spawning as root is blocked up front.
    """
    if getuid is None:
        getuid = getattr(os, "getuid", None)
        if getuid is None:
            return False
    return getuid() == 0


def validate_hierarchy(
    parent_agent: Optional[str],
    capability: str,
    force_override: bool = False,
    agent_name: Optional[str] = None,
) -> None:
    """Only leads may be started without a parent.

    The coordinator (no parent) fans out through leads; leads spawn the other
    capabilities.

    Raises:
        HierarchyError: parent_agent is None, capability is not 'lead' and
            force_override is not set
    """
    if force_override or parent_agent is not None or capability == "lead":
        return

    raise HierarchyError(
        f'Coordinator cannot spawn "{capability}" directly. '
        f'Only "lead" is allowed without --parent. '
        f"Use a lead as intermediary, or pass --force-hierarchy to bypass.",
        agent_name=agent_name,
        requested_capability=capability,
    )


def check_depth_limit(
    depth: int,
    max_depth: int,
    force: bool = False,
    agent_name: Optional[str] = None,
) -> None:
    """Reject depth > max_depth. depth == max_depth is the deepest allowed leaf.

    Raises:
        AgentError: depth exceeds the configured ceiling and force is not set
    """
    if force or depth <= max_depth:
        return
    raise AgentError(
        f"Depth limit exceeded: depth {depth} > maxDepth {max_depth}",
        agent_name=agent_name,
    )


def check_run_session_limit(max_per_run: int, current_count: int) -> bool:
    """True (blocked) when a positive per-run limit has been reached. 0 is unlimited."""
    return max_per_run > 0 and current_count >= max_per_run


def check_parent_agent_limit(
    active_sessions: Sequence[AgentSession],
    parent_agent: Optional[str],
    max_per_parent: int,
) -> bool:
    """True (blocked) when parent_agent already has max_per_parent active children."""
    if max_per_parent <= 0:
        return False
    children = sum(1 for s in filter_active(active_sessions) if s.parent_agent == parent_agent)
    return children >= max_per_parent


def check_task_lock(active_sessions: Sequence[AgentSession], task_id: str) -> Optional[str]:
    """Name of the active session already working task_id, or None."""
    for session in filter_active(active_sessions):
        if session.task_id == task_id:
            return session.agent_name
    return None


def is_task_lock_permitted(holder: Optional[str], parent_agent: Optional[str]) -> bool:
    """A held task may only be delegated by its holder to a child."""
    return holder is None or holder == parent_agent


def check_duplicate_lead(active_sessions: Sequence[AgentSession], task_id: str) -> Optional[str]:
    """Name of an active lead already working task_id, or None."""
    for session in filter_active(active_sessions):
        if session.task_id == task_id and session.capability == "lead":
            return session.agent_name
    return None


def check_name_available(active_sessions: Sequence[AgentSession], agent_name: str) -> None:
    """
    Raises:
        AgentError: an active session already uses agent_name
    """
    for session in filter_active(active_sessions):
        if session.agent_name == agent_name:
            raise AgentError(
                f'Agent name "{agent_name}" is already in use (state: {session.state})',
                agent_name=agent_name,
            )


def check_concurrency_limit(
    active_sessions: Sequence[AgentSession],
    max_concurrent: int,
    agent_name: Optional[str] = None,
) -> None:
    """
    Raises:
        AgentError: the number of active sessions is already at max_concurrent
    """
    active_count = len(filter_active(active_sessions))
    if active_count >= max_concurrent:
        raise AgentError(
            f"Max concurrent agent limit reached: {active_count}/{max_concurrent} active agents",
            agent_name=agent_name,
        )


def calculate_stagger_delay(
    stagger_ms: int,
    active_sessions: Sequence[AgentSession],
    now: Optional[datetime] = None,
) -> int:
    """Milliseconds to wait so launches are at least stagger_ms apart.

    stagger_ms minus the time since the most recent active session started,
    floored at 0. Returns 0 when stagger_ms <= 0 or nothing is active.
    """
    if stagger_ms <= 0:
        return 0

    active = filter_active(active_sessions)
    if not active:
        return 0

    if now is None:
        now = utc_now()

    latest = max(parse_timestamp(s.started_at) for s in active)
    elapsed_ms = int((now - latest).total_seconds() * 1000)
    return max(0, min(stagger_ms, stagger_ms - elapsed_ms))


def parent_has_scouts(sessions: Sequence[AgentSession], parent_agent: Optional[str]) -> bool:
    """True if any session, in any state, is a scout spawned by parent_agent."""
    return any(s.capability == "scout" and s.parent_agent == parent_agent for s in sessions)
