"""YAML configuration loader.

Loads a single YAML file holding service settings and the workspaces
to register at startup. When no YAML is provided, env vars work
exactly as before.

Example YAML:
    service:
      command: codex
      sandbox_mode: workspace-write
      model: gpt-5.2-codex
      exec_timeout_seconds: 120
      stream_log_name: codex-stream.log

    workspaces:
      feature-login: /home/me/worktrees/feature-login
      bugfix-42: ../worktrees/bugfix-42
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import ServiceConfig

logger = logging.getLogger(__name__)


@dataclass
class DeskConfig:
    """Parsed YAML config: service settings plus workspace map."""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    # workspace_id -> absolute worktree path
    workspaces: dict[str, str] = field(default_factory=dict)


def discover_config_path(cwd: str | Path) -> Path | None:
    """Return .codexdesk/config.yaml (preferred) or codexdesk.yaml under cwd."""
    cwd = Path(cwd)
    for candidate in (cwd / ".codexdesk" / "config.yaml", cwd / "codexdesk.yaml"):
        if candidate.is_file():
            logger.info("Auto-discovered config: %s", candidate)
            return candidate
    logger.debug("No config file found under %s; using defaults", cwd)
    return None


def load_yaml_config(path: str | Path) -> DeskConfig:
    """Parse a YAML config file into a DeskConfig.

    Relative worktree paths are resolved against the config file's
    directory. Missing files and parse errors are logged and re-raised.
    """
    path = Path(path)
    logger.info("load_yaml_config: reading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    # ── Service config ─────────────────────────────────────────
    svc_raw = raw.get("service", {}) or {}
    service = ServiceConfig(
        command=str(svc_raw.get("command", ServiceConfig.command)),
        sandbox_mode=str(svc_raw.get("sandbox_mode", ServiceConfig.sandbox_mode)),
        model=svc_raw.get("model") or None,
        api_key_env=svc_raw.get("api_key_env") or None,
        exec_timeout_seconds=float(svc_raw.get(
            "exec_timeout_seconds", ServiceConfig.exec_timeout_seconds
        )),
        stop_grace_seconds=float(svc_raw.get(
            "stop_grace_seconds", ServiceConfig.stop_grace_seconds
        )),
        stream_log_name=str(svc_raw.get(
            "stream_log_name", ServiceConfig.stream_log_name
        )),
        event_queue_size=int(svc_raw.get(
            "event_queue_size", ServiceConfig.event_queue_size
        )),
        log_level=str(svc_raw.get("log_level", ServiceConfig.log_level)),
    )

    # ── Workspaces ─────────────────────────────────────────────
    workspaces: dict[str, str] = {}
    for workspace_id, worktree in (raw.get("workspaces", {}) or {}).items():
        if not worktree:
            logger.warning(
                "load_yaml_config: workspace %s has no worktree path; skipped",
                workspace_id,
            )
            continue
        worktree_path = Path(str(worktree)).expanduser()
        if not worktree_path.is_absolute():
            worktree_path = (path.parent / worktree_path).resolve()
        workspaces[str(workspace_id)] = str(worktree_path)

    logger.info(
        "Parsed YAML config %s — command=%s workspaces=%d",
        path.name, service.command, len(workspaces),
    )
    return DeskConfig(service=service, workspaces=workspaces)
