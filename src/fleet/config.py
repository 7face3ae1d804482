"""Lightweight configuration loader for fleet.

Reads optional settings from <project>/.fleet/config.yaml and deep-merges
them over safe defaults.

Sections:
- project: name, canonical_branch, quality_gates
- agents: admission limits (max_concurrent, max_depth, stagger_delay_ms,
  max_sessions_per_run, max_agents_per_lead, prevent_duplicate_leads) and
  base_dir for capability base definitions
- worktrees: base_dir for agent worktrees
- task_tracker: enabled, backend ('auto', 'beads' or 'seeds')
- mulch: enabled
- runtime: default runtime name ('claude', 'codex', 'pi', 'copilot')
- models: capability -> model override ('provider/model' selects a provider)
- providers: provider -> {env: {VAR: value}}
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from fleet.errors import ConfigError
from fleet.path_utils import FLEET_DIR

_CONFIG_CACHE: Dict[str, Dict[str, Any]] = {}

CAPABILITIES = (
    "scout",
    "builder",
    "reviewer",
    "lead",
    "merger",
    "coordinator",
    "monitor",
)

# Default model and spawn rights per capability.
AGENT_MANIFEST: Dict[str, Dict[str, Any]] = {
    "scout": {"model": "haiku", "can_spawn": False},
    "builder": {"model": "sonnet", "can_spawn": False},
    "reviewer": {"model": "sonnet", "can_spawn": False},
    "lead": {"model": "opus", "can_spawn": True},
    "merger": {"model": "sonnet", "can_spawn": False},
    "coordinator": {"model": "opus", "can_spawn": True},
    "monitor": {"model": "sonnet", "can_spawn": False},
}


DEFAULT_QUALITY_GATES: List[Dict[str, str]] = [
    {"name": "Tests", "command": "pytest", "description": "all tests must pass"},
    {"name": "Lint", "command": "flake8", "description": "zero lint errors"},
    {"name": "Types", "command": "mypy src", "description": "no new type errors"},
]


def resolve_quality_gates(config: Dict[str, Any]) -> List[Dict[str, str]]:
    """project.quality_gates from config, or the defaults when none are set."""
    gates = config.get('project', {}).get('quality_gates') or []
    return list(gates) if gates else list(DEFAULT_QUALITY_GATES)


@dataclass
class ResolvedModel:
    """Model name plus provider env vars the runtime must export."""

    model: str
    env: Dict[str, str] = field(default_factory=dict)


def _defaults() -> Dict[str, Any]:
    return {
        'project': {
            'name': None,
            'canonical_branch': 'main',
            'quality_gates': [],
        },
        'agents': {
            'max_concurrent': 25,
            'max_depth': 2,
            'stagger_delay_ms': 2000,
            'max_sessions_per_run': 0,
            'max_agents_per_lead': 5,
            'prevent_duplicate_leads': False,
            'base_dir': f'{FLEET_DIR}/agent-defs',
        },
        'worktrees': {
            'base_dir': f'{FLEET_DIR}/worktrees',
        },
        'task_tracker': {
            'enabled': True,
            'backend': 'auto',
        },
        'mulch': {
            'enabled': True,
        },
        'runtime': {
            'default': 'claude',
        },
        'models': {},
        'providers': {},
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path(project_root: Path) -> Path:
    return Path(project_root) / FLEET_DIR / 'config.yaml'


def get_config(project_root: Path) -> Dict[str, Any]:
    """Load .fleet/config.yaml for project_root once and cache the result.

    Raises:
        ConfigError: If the file exists but is not a YAML mapping
    """
    cache_key = str(Path(project_root).resolve())
    if cache_key in _CONFIG_CACHE:
        return _CONFIG_CACHE[cache_key]

    cfg_path = get_config_path(project_root)
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            loaded = yaml.safe_load(cfg_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {cfg_path}: {e}")
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{cfg_path} must contain a mapping, got {type(loaded).__name__}")
        data = loaded

    merged = _deep_merge(_defaults(), data)
    if not merged['project'].get('name'):
        merged['project']['name'] = Path(project_root).resolve().name
    merged['project']['root'] = str(Path(project_root).resolve())

    _CONFIG_CACHE[cache_key] = merged
    return merged


def clear_config_cache() -> None:
    _CONFIG_CACHE.clear()


def get_runtime_name(config: Dict[str, Any], cli_runtime: Optional[str] = None) -> str:
    """
    Runtime selection with priority: CLI flag > config file > 'claude'.
    """
    if cli_runtime:
        return cli_runtime
    return str(config.get('runtime', {}).get('default') or 'claude')


def resolve_model(config: Dict[str, Any], capability: str) -> ResolvedModel:
    """
    Resolve the model for a capability.

    Priority: models.<capability> in config > manifest default > 'sonnet'.
    A value of the form 'provider/model' exports providers.<provider>.env.
    """
    configured = config.get('models', {}).get(capability)
    model = configured or AGENT_MANIFEST.get(capability, {}).get('model') or 'sonnet'

    env: Dict[str, str] = {}
    if '/' in model:
        provider, _, bare_model = model.partition('/')
        provider_cfg = config.get('providers', {}).get(provider)
        if provider_cfg is not None:
            env = {str(k): str(v) for k, v in (provider_cfg.get('env') or {}).items()}
            model = bare_model

    return ResolvedModel(model=model, env=env)


def can_spawn(capability: str) -> bool:
    return bool(AGENT_MANIFEST.get(capability, {}).get('can_spawn', False))
