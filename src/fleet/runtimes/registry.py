"""Runtime lookup by name."""

from typing import Any, Callable, Dict, Optional

from fleet.config import get_runtime_name
from fleet.errors import ValidationError

from .base import AgentRuntime
from .claude import ClaudeRuntime
from .codex import CodexRuntime
from .copilot import CopilotRuntime
from .pi import PiRuntime

RUNTIMES: Dict[str, Callable[[], AgentRuntime]] = {
    "claude": ClaudeRuntime,
    "codex": CodexRuntime,
    "pi": PiRuntime,
    "copilot": CopilotRuntime,
}


def get_runtime(name: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> AgentRuntime:
    """
    Return a runtime instance.

    Priority: explicit name > config runtime.default > "claude".

    Raises:
        ValidationError: If the name is not a known runtime
    """
    runtime_name = get_runtime_name(config or {}, name)
    factory = RUNTIMES.get(runtime_name)
    if factory is None:
        available = ", ".join(sorted(RUNTIMES))
        raise ValidationError(
            f'Unknown runtime: "{runtime_name}". Available: {available}',
            field="runtime",
            value=runtime_name,
        )
    return factory()
