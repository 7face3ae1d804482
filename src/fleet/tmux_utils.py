import logging
import subprocess
import time
from typing import Callable, Dict, List, Optional

import libtmux

from fleet.errors import TmuxError

logger = logging.getLogger(__name__)

SESSION_PREFIX = "fleet"


def get_server():
    """Get libtmux server instance."""
    try:
        return libtmux.Server()
    except Exception:
        return None


def is_tmux_available() -> bool:
    """Check if tmux is installed and a server connection works."""
    server = get_server()
    if not server:
        return False
    try:
        _ = server.sessions
        return True
    except Exception:
        return False


def ensure_tmux_available() -> None:
    """
    Raises:
        TmuxError: If tmux is not installed or its server cannot be reached
    """
    if not is_tmux_available():
        raise TmuxError("tmux is not available. Install tmux and make sure it is on PATH.")


def session_name_for(project_name: str, agent_name: str) -> str:
    """Tmux session name for an agent, e.g. fleet-myproj-builder-1."""
    return f"{SESSION_PREFIX}-{project_name}-{agent_name}"


def session_exists(session_name: str) -> bool:
    result = subprocess.run(
        ["tmux", "has-session", "-t", session_name],
        capture_output=True,
        text=True,
    )
    return result.returncode == 0


def create_session(
    session_name: str,
    cwd: str,
    command: str,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """
    Create a detached tmux session running command and return its pane pid.

    Args:
        session_name: Session name (see session_name_for)
        cwd: Working directory for the session
        command: Shell command to run in the first pane
        env: Extra environment variables for the session

    Returns:
        PID of the pane's process

    Raises:
        TmuxError: If the session cannot be created or its pid read
    """
    create_cmd: List[str] = ["tmux", "new-session", "-d", "-s", session_name, "-c", cwd]
    for key, value in (env or {}).items():
        create_cmd += ["-e", f"{key}={value}"]
    create_cmd.append(command)

    result = subprocess.run(create_cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise TmuxError(f"Failed to create tmux session '{session_name}': {result.stderr.strip()}")

    result = subprocess.run(
        ["tmux", "list-panes", "-t", session_name, "-F", "#{pane_pid}"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise TmuxError(f"Failed to read pid for tmux session '{session_name}': {result.stderr.strip()}")

    first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    try:
        return int(first_line)
    except ValueError:
        raise TmuxError(f"Unexpected pane pid for tmux session '{session_name}': {first_line!r}")


def _run_send_keys(session_name: str, args: List[str]) -> None:
    try:
        subprocess.run(["tmux", "send-keys", "-t", session_name] + args, check=True)
    except subprocess.CalledProcessError as e:
        raise TmuxError(
            f"Failed to send keys to tmux session '{session_name}' (exit {e.returncode})"
        )


def send_key(session_name: str, key: str) -> None:
    """
    Send a named key (Enter, Escape, ...) without literal interpretation.

    Raises:
        TmuxError: If tmux rejects the keys, e.g. the session has exited
    """
    _run_send_keys(session_name, [key])


def send_keys(session_name: str, text: str) -> None:
    """Type text literally, then press Enter. Empty text just presses Enter."""
    if text:
        _run_send_keys(session_name, ["-l", text])
    send_key(session_name, "Enter")


def capture_pane_content(session_name: str, lines: int = 50) -> Optional[str]:
    """Visible text of the session's pane, or None if it cannot be captured."""
    try:
        result = subprocess.run(
            ["tmux", "capture-pane", "-p", "-t", session_name, "-S", f"-{lines}"],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def wait_for_tui_ready(
    session_name: str,
    detect_ready: Callable,
    timeout: float = 30.0,
    poll_interval: float = 0.5,
) -> bool:
    """
    Poll the pane until the TUI has finished loading.

    A dialog phase with an action key (e.g. trust-folder prompt) is answered
    and polling continues. A dialog without one ends the wait like ready does.

    Args:
        session_name: Tmux session to watch
        detect_ready: Callable taking pane text and returning a ReadyState
        timeout: Maximum wait in seconds
        poll_interval: Seconds between captures

    Returns:
        True once past loading, False on timeout
    """
    deadline = time.monotonic() + timeout
    dialog_answered = False

    while time.monotonic() < deadline:
        content = capture_pane_content(session_name)
        state = detect_ready(content)

        # an unanswerable dialog is past loading too
        if state.phase == "ready" or (state.phase == "dialog" and not state.action):
            return True

        if state.phase == "dialog" and state.action and not dialog_answered:
            logger.debug("Answering %s dialog in %s", state.action, session_name)
            send_key(session_name, state.action)
            dialog_answered = True
        elif state.phase != "dialog":
            dialog_answered = False

        time.sleep(poll_interval)

    return False
