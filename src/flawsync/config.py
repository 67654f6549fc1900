from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from .ado_rest import WORK_ITEM_TYPES
from .formatting import MANAGED_TAG

TRACKERS = ("github", "ado")
DEFAULT_WAIT_TIME = 2.0
MAX_SOURCE_BASE_PATHS = 3


class ConfigError(RuntimeError):
    pass


@dataclass
class RunConfig:
    tracker: str = "github"
    results_file: Path | None = None
    # GitHub
    github_repo: str | None = None
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    # Azure DevOps
    ado_organization: str | None = None
    ado_project: str | None = None
    ado_pat: str | None = None
    ado_work_item_type: str = "Bug"
    ado_reopen_state: str = "Active"
    ado_close_state: str = "Closed"
    ado_base_url: str = "https://dev.azure.com"
    # Ticket content
    source_base_paths: list[str] = field(default_factory=list)
    source_root: Path | None = None
    commit_hash: str | None = None
    pr_number: int | None = None
    managed_tag: str = MANAGED_TAG
    # Run behaviour
    wait_time: float = DEFAULT_WAIT_TIME
    fail_fast: bool = False
    verbose: bool = False
    dry_run: bool = False
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Telemetry configuration
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_endpoint: str | None = None
    # Output
    summary_json: str | None = None

    @property
    def pr_link(self) -> str | None:
        if self.pr_number is None or not self.github_repo:
            return None
        return f"https://github.com/{self.github_repo}/pull/{self.pr_number}"


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $; unset resolves to None."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:])
    return value


def _first_env(*names: str) -> str | None:
    for name in names:
        raw = os.environ.get(name)
        if raw is not None and raw.strip():
            return raw.strip()
    return None


def _env_path(name: str) -> Path | None:
    raw = _first_env(name)
    return Path(raw) if raw else None


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Expected an integer, got {value!r}") from exc


def _as_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Expected a number of seconds, got {value!r}") from exc


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _read_yaml(p: Path) -> dict[str, Any]:
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration root in {p} must be a mapping")
    return cast(dict[str, Any], loaded)


def _load_environment(env: dict[str, Any], base: Path) -> None:
    if not _as_bool(env.get("load_dotenv"), True):
        return
    dotenv_path = Path(env.get("dotenv_path") or ".env")
    if not dotenv_path.is_absolute():
        dotenv_path = base / dotenv_path
    if dotenv_path.exists():
        load_dotenv(dotenv_path, override=False)


def load_config(path: str | Path | None = None) -> RunConfig:
    """Build a RunConfig from an optional YAML file plus the environment.

    Without a file every setting falls back to environment variables in the
    shape a GitHub Actions job provides them (``GITHUB_TOKEN``,
    ``GITHUB_REPOSITORY``, ``GITHUB_SHA``) or to built-in defaults.
    """
    raw: dict[str, Any] = {}
    base = Path.cwd()
    if path is not None:
        p = Path(path)
        raw = _read_yaml(p)
        base = p.parent
    _load_environment(_section(raw, 'environment'), base)

    tracker = _section(raw, 'tracker')
    gh = _section(raw, 'github')
    ado = _section(raw, 'ado')
    scan = _section(raw, 'scan')
    run = _section(raw, 'run')
    logging_config = _section(raw, 'logging')
    telemetry = _section(raw, 'telemetry')
    out = _section(raw, 'output')

    results = _resolve_env_var(scan.get('results_file'))
    source_root = _resolve_env_var(scan.get('source_root'))
    base_paths = scan.get('source_base_paths') or []
    if isinstance(base_paths, str):
        base_paths = [base_paths]

    return RunConfig(
        tracker=str(tracker.get('kind') or os.getenv('FLAWSYNC_TRACKER') or 'github').lower(),
        results_file=(base / results) if results else None,
        github_repo=_resolve_env_var(gh.get('repo')) or _first_env('GITHUB_REPOSITORY'),
        github_token=_resolve_env_var(gh.get('token'))
        or _first_env('FLAWSYNC_GITHUB_TOKEN', 'GITHUB_TOKEN', 'GH_TOKEN'),
        github_api_url=gh.get('api_url') or _first_env('GITHUB_API_URL') or 'https://api.github.com',
        ado_organization=_resolve_env_var(ado.get('organization')) or _first_env('ADO_ORG'),
        ado_project=_resolve_env_var(ado.get('project')) or _first_env('ADO_PROJECT'),
        ado_pat=_resolve_env_var(ado.get('pat')) or _first_env('ADO_PAT'),
        ado_work_item_type=str(ado.get('work_item_type', 'Bug')),
        ado_reopen_state=str(ado.get('reopen_state', 'Active')),
        ado_close_state=str(ado.get('close_state', 'Closed')),
        ado_base_url=str(ado.get('base_url', 'https://dev.azure.com')),
        source_base_paths=[str(_resolve_env_var(p)) for p in base_paths if p],
        source_root=(base / source_root) if source_root else _env_path('GITHUB_WORKSPACE'),
        commit_hash=_resolve_env_var(scan.get('commit_hash'))
        or _first_env('GITHUB_SHA'),
        pr_number=_as_int(_resolve_env_var(run.get('pr_number'))),
        managed_tag=str(run.get('managed_tag') or MANAGED_TAG),
        wait_time=_as_float(_resolve_env_var(run.get('wait_time')), DEFAULT_WAIT_TIME),
        fail_fast=_as_bool(run.get('fail_fast')),
        verbose=_as_bool(run.get('verbose')),
        dry_run=_as_bool(run.get('dry_run')),
        logging_json_enabled=_as_bool(logging_config.get('json_enabled')),
        logging_level=str(logging_config.get('level', 'INFO')),
        telemetry_enabled=_as_bool(telemetry.get('enabled')),
        telemetry_exporter=str(telemetry.get('exporter', 'console')),
        telemetry_endpoint=telemetry.get('endpoint'),
        summary_json=out.get('summary_json'),
    )


def validate_config(cfg: RunConfig, *, require_credentials: bool = True) -> None:
    """Reject configurations that cannot work, before any I/O happens."""
    if cfg.tracker not in TRACKERS:
        raise ConfigError(
            f"Unknown tracker '{cfg.tracker}' (expected one of: {', '.join(TRACKERS)})"
        )
    if cfg.results_file is None:
        raise ConfigError("No scan results file configured")
    if cfg.wait_time < 0:
        raise ConfigError("wait_time must not be negative")
    if len(cfg.source_base_paths) > MAX_SOURCE_BASE_PATHS:
        raise ConfigError(
            f"At most {MAX_SOURCE_BASE_PATHS} source base paths are supported"
        )
    if not cfg.managed_tag.strip():
        raise ConfigError("managed_tag must not be empty")
    if cfg.tracker == "github":
        if not cfg.github_repo or "/" not in cfg.github_repo:
            raise ConfigError("GitHub repository must be given as owner/repo")
        if require_credentials and not cfg.github_token:
            raise ConfigError("No GitHub token configured (GITHUB_TOKEN)")
        return
    if cfg.ado_work_item_type not in WORK_ITEM_TYPES:
        raise ConfigError(
            f"Unknown work item type '{cfg.ado_work_item_type}' "
            f"(expected one of: {', '.join(sorted(WORK_ITEM_TYPES))})"
        )
    if not cfg.ado_organization or not cfg.ado_project:
        raise ConfigError("Azure DevOps organization and project are required")
    if require_credentials and not cfg.ado_pat:
        raise ConfigError("No Azure DevOps personal access token configured (ADO_PAT)")


__all__ = ["ConfigError", "RunConfig", "load_config", "validate_config", "TRACKERS"]
