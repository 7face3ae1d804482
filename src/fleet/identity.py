"""Persistent agent identities stored as YAML.

One file per agent name at <base_dir>/<name>/identity.yaml. Identities
outlive sessions, so a reused name keeps its history.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from fleet.models import utc_now_iso


def _identity_path(base_dir: Path, name: str) -> Path:
    return Path(base_dir) / name / "identity.yaml"


def new_identity(name: str, capability: str, expertise_domains: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "name": name,
        "capability": capability,
        "created": utc_now_iso(),
        "sessions_completed": 0,
        "expertise_domains": list(expertise_domains or []),
        "recent_tasks": [],
    }


def load_identity(base_dir: Path, name: str) -> Optional[Dict[str, Any]]:
    """Identity for name, or None if none has been created."""
    path = _identity_path(base_dir, name)
    if not path.exists():
        return None
    data = yaml.safe_load(path.read_text())
    return data if isinstance(data, dict) else None


def create_identity(base_dir: Path, identity: Dict[str, Any]) -> Path:
    """Write identity to <base_dir>/<identity['name']>/identity.yaml."""
    path = _identity_path(base_dir, identity["name"])
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(identity, sort_keys=False))
    return path
