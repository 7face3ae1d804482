"""
JSON output formatting for fleet commands.

Provides utilities for serializing fleet results to JSON with schema versioning.
"""

import json
from typing import Any, Dict

from fleet.errors import FleetError
from fleet.models import AgentSession


# Bumped on breaking changes to any --json payload.
SCHEMA_VERSION = "1.0.0"


def serialize_session(session: AgentSession) -> Dict[str, Any]:
    """Serialize an AgentSession row for `fleet status --json`."""
    return session.to_dict()


def error_envelope(command: str, error: FleetError) -> Dict[str, Any]:
    """Failure envelope: {success: false, command, error: {code, message, ...}}."""
    return {
        "success": False,
        "command": command,
        "error": error.to_dict(),
    }


def output_json(data: Dict[str, Any], pretty: bool = False) -> str:
    """
    Serialize a command payload, prefixed with schema_version.

    Paths and other non-JSON values are written as strings; pretty indents
    by two spaces.
    """
    envelope: Dict[str, Any] = {"schema_version": SCHEMA_VERSION}
    envelope.update(data)
    return json.dumps(envelope, indent=2 if pretty else None, default=str)
