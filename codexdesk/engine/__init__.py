"""Codex service engine — process façade, agent registry and stream logs."""
from .models import AgentStatus, CodexAgent, CodexResponse, make_agent_id
from .config import EventCallback, ServiceConfig, fire_event
from .errors import (
    AgentNotFoundError,
    CodexExecError,
    CodexNotInstalledError,
    CodexServiceError,
    CodexTimeoutError,
)
from .stream_log import StreamLogManager
from .codex_service import CodexService, format_command

__all__ = [
    # Service
    "CodexService",
    "format_command",
    "StreamLogManager",
    # Models
    "AgentStatus",
    "CodexAgent",
    "CodexResponse",
    "make_agent_id",
    # Config
    "EventCallback",
    "ServiceConfig",
    "fire_event",
    # YAML config (lazy import)
    "DeskConfig",
    "load_yaml_config",
    # Errors
    "AgentNotFoundError",
    "CodexExecError",
    "CodexNotInstalledError",
    "CodexServiceError",
    "CodexTimeoutError",
]


def __getattr__(name: str):
    if name == "DeskConfig":
        from .yaml_config import DeskConfig
        return DeskConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
