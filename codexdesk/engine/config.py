"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CODEXDESK_* env vars
or the ``service:`` section of a YAML config (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Callback errors are logged, not raised."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.exception(
            "Event callback failed for %s", event.get("event", "<unknown>")
        )


@dataclass
class ServiceConfig:
    """Codex service configuration."""

    # CLI invocation
    command: str = "codex"
    sandbox_mode: str = "workspace-write"
    # Optional model override passed as `-c model="..."`.
    model: str | None = None
    # Name of an env var whose value is exported to codex as OPENAI_API_KEY.
    api_key_env: str | None = None

    # Timeouts
    exec_timeout_seconds: float = 60.0
    # How long stop_message_stream waits after each signal.
    stop_grace_seconds: float = 5.0

    # Stream log file, written inside the agent's worktree.
    stream_log_name: str = "codex-stream.log"

    # Event bus queue size
    event_queue_size: int = 5000

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load configuration from CODEXDESK_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("CODEXDESK_")
        }
        if overrides:
            logger.info(
                "ServiceConfig.from_env: CODEXDESK_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug(
                "ServiceConfig.from_env: no CODEXDESK_* env vars set, using defaults"
            )

        config = cls(
            command=os.getenv("CODEXDESK_COMMAND", cls.command),
            sandbox_mode=os.getenv("CODEXDESK_SANDBOX", cls.sandbox_mode),
            model=os.getenv("CODEXDESK_MODEL") or None,
            api_key_env=os.getenv("CODEXDESK_API_KEY_ENV") or None,
            exec_timeout_seconds=float(os.getenv(
                "CODEXDESK_EXEC_TIMEOUT", str(cls.exec_timeout_seconds)
            )),
            stop_grace_seconds=float(os.getenv(
                "CODEXDESK_STOP_GRACE", str(cls.stop_grace_seconds)
            )),
            stream_log_name=os.getenv(
                "CODEXDESK_STREAM_LOG", cls.stream_log_name
            ),
            event_queue_size=int(os.getenv(
                "CODEXDESK_QUEUE_SIZE", str(cls.event_queue_size)
            )),
            log_level=os.getenv("CODEXDESK_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ServiceConfig.from_env: command=%s sandbox=%s model=%s log_level=%s",
            config.command, config.sandbox_mode,
            config.model or "<default>", config.log_level,
        )
        return config
