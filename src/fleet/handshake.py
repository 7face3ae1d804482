"""Beacon handshake with a freshly launched agent TUI.

The TUI has no acknowledgement channel, so the handshake is:

1. wait until the runtime reports the TUI ready (bounded; fatal on timeout)
2. let input handling settle, then type the beacon
3. press Enter again at increasing delays, in case an early keystroke was
   swallowed while the TUI finished booting (Enter on an empty line is a
   no-op)
4. if the runtime needs it, capture the pane a few times; a pane that
   still looks idle means the beacon was lost, so send it again

Step 4 never raises. A worker that stays idle is left for the watchdog.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fleet.errors import AgentError, TmuxError
from fleet.logging import FleetLogger
from fleet.models import utc_now
from fleet.runtimes.base import AgentRuntime
from fleet.tmux_utils import capture_pane_content, send_keys, wait_for_tui_ready

logger = logging.getLogger(__name__)

BEACON_TAG = "[FLEET]"

READY_POLL_INTERVAL = 0.5
DEFAULT_READY_TIMEOUT = 30.0
STABILIZE_DELAY = 1.0
FOLLOW_UP_DELAYS = (1.0, 2.0, 3.0, 5.0)
VERIFY_ATTEMPTS = 5
VERIFY_DELAY = 2.0
RESEND_FOLLOW_UP_DELAY = 1.0


def get_ready_timeout() -> float:
    """Readiness timeout in seconds; FLEET_SPAWN_TIMEOUT overrides for slow machines."""
    return float(os.getenv("FLEET_SPAWN_TIMEOUT") or DEFAULT_READY_TIMEOUT)


@dataclass
class BeaconOptions:
    agent_name: str
    capability: str
    task_id: str
    depth: int
    instruction_path: str
    parent_agent: Optional[str] = None


@dataclass
class HandshakeResult:
    """What the handshake observed. verified is None when the runtime skips verification."""

    beacon: str
    verified: Optional[bool] = None
    attempts: int = 0
    resends: int = 0


def build_beacon(opts: BeaconOptions, now: Optional[datetime] = None) -> str:
    """
    Single-line startup message identifying the agent and its first steps.

    Example:
        [FLEET] builder-1 (builder) 2026-01-05T10:00:00+00:00 task:fleet-42 - Depth: 1 |
        Parent: lead-1 - Startup: 1. read .claude/CLAUDE.md 2. run ml prime
        3. check mail (fleet mail check --agent builder-1) 4. begin task fleet-42
    """
    timestamp = (now or utc_now()).isoformat()
    parts = [
        f"{BEACON_TAG} {opts.agent_name} ({opts.capability}) {timestamp} task:{opts.task_id}",
        f"Depth: {opts.depth} | Parent: {opts.parent_agent or 'none'}",
        (
            f"Startup: 1. read {opts.instruction_path} 2. run ml prime "
            f"3. check mail (fleet mail check --agent {opts.agent_name}) "
            f"4. begin task {opts.task_id}"
        ),
    ]
    return " - ".join(parts)


def send_beacon(session_name: str, beacon: str) -> None:
    """Type the beacon, then press Enter at each follow-up delay."""
    send_keys(session_name, beacon)
    for delay in FOLLOW_UP_DELAYS:
        time.sleep(delay)
        send_keys(session_name, "")


def verify_beacon(session_name: str, runtime: AgentRuntime, beacon: str) -> HandshakeResult:
    """
    Resend the beacon while the pane still looks idle.

    Up to VERIFY_ATTEMPTS captures, VERIFY_DELAY apart. A pane that is no
    longer ready means the agent is working and verification succeeds. A
    ready pane (or no capture at all) gets one beacon resend plus one Enter.
    If a resend fails (the session has exited) verification stops unverified.
    """
    result = HandshakeResult(beacon=beacon, verified=False)

    for attempt in range(1, VERIFY_ATTEMPTS + 1):
        time.sleep(VERIFY_DELAY)
        result.attempts = attempt

        content = capture_pane_content(session_name)
        if content is not None and not runtime.detect_ready(content).is_ready:
            result.verified = True
            return result

        logger.debug("Beacon not accepted by %s (attempt %d); resending", session_name, attempt)
        try:
            send_keys(session_name, beacon)
            result.resends += 1
            time.sleep(RESEND_FOLLOW_UP_DELAY)
            send_keys(session_name, "")
        except TmuxError as e:
            logger.warning("Stopping beacon verification for %s: %s", session_name, e.message)
            break

    return result


def run_handshake(
    session_name: str,
    runtime: AgentRuntime,
    beacon_opts: BeaconOptions,
    agent_name: Optional[str] = None,
    fleet_logger: Optional[FleetLogger] = None,
    ready_timeout: Optional[float] = None,
) -> HandshakeResult:
    """
    Run the full handshake for one launched agent.

    Raises:
        AgentError: If the TUI never becomes ready within the timeout
        TmuxError: If the initial beacon cannot be typed into the session
    """
    timeout = get_ready_timeout() if ready_timeout is None else ready_timeout

    if not wait_for_tui_ready(
        session_name,
        runtime.detect_ready,
        timeout=timeout,
        poll_interval=READY_POLL_INTERVAL,
    ):
        raise AgentError(
            f"{runtime.name} did not become ready in tmux session {session_name} within "
            f"{timeout:g} seconds. Check the session for errors, or set FLEET_SPAWN_TIMEOUT "
            f"to wait longer.",
            agent_name=agent_name or beacon_opts.agent_name,
        )

    time.sleep(STABILIZE_DELAY)

    beacon = build_beacon(beacon_opts)
    send_beacon(session_name, beacon)

    if runtime.requires_beacon_verification():
        result = verify_beacon(session_name, runtime, beacon)
    else:
        result = HandshakeResult(beacon=beacon)

    if fleet_logger is not None:
        level = "WARN" if result.verified is False else "INFO"
        fleet_logger.log_event("spawn", f"Handshake finished: {beacon_opts.agent_name}", {
            "agent_name": beacon_opts.agent_name,
            "tmux_session": session_name,
            "verified": result.verified,
            "attempts": result.attempts,
            "resends": result.resends,
        }, level=level)

    return result
