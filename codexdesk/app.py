"""codexdesk — main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import subprocess
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def _configure_logging(level_name: str, *, to_stderr: bool) -> Path:
    """Send logs to ~/.codexdesk/logs (rotating) and optionally stderr."""
    log_dir = Path.home() / ".codexdesk" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "codexdesk.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.WARNING)
        root.addHandler(stream_handler)
    return log_file


def _load_config(config_path: str | None):
    """Explicit --config, then auto-discovered YAML, then CODEXDESK_* env vars.

    A config file replaces the environment entirely; CODEXDESK_* vars set
    alongside one are reported and ignored.
    """
    from codexdesk.engine.config import ServiceConfig
    from codexdesk.engine.yaml_config import (
        DeskConfig,
        discover_config_path,
        load_yaml_config,
    )

    path = Path(config_path) if config_path else discover_config_path(Path.cwd())
    if path is not None:
        ignored = sorted(
            k for k in os.environ
            if k.startswith("CODEXDESK_") and k != "CODEXDESK_CLEANUP_STALE"
        )
        if ignored:
            logger.warning(
                "Config file %s takes precedence; ignoring env overrides: %s",
                path, ", ".join(ignored),
            )
        return load_yaml_config(path)
    return DeskConfig(service=ServiceConfig.from_env())


def resolve_workspace(
    workspace: str | None,
    worktree: str | None,
    workspaces: dict[str, str],
) -> tuple[str, str]:
    """Pick (workspace_id, worktree_path) from flags and configured workspaces.

    --worktree wins over the configured path; without --workspace the
    first configured workspace is used, or the current directory when
    none are configured.
    """
    if workspace is None and worktree is None and workspaces:
        workspace = next(iter(workspaces))
    if worktree is None:
        worktree = workspaces.get(workspace or "", str(Path.cwd()))
    worktree_path = str(Path(worktree).expanduser().resolve())
    workspace_id = workspace or Path(worktree_path).name or "default"
    return workspace_id, worktree_path


async def _run_check(service, console: Console) -> int:
    installed = await service.check_installation()
    if installed:
        console.print(f"[green]✔[/green] Codex CLI found ({service.config.command})")
        return 0
    console.print("[red]✘[/red] Codex CLI is not installed\n")
    console.print(service.get_installation_instructions(), markup=False)
    return 1


async def _run_exec(
    service, workspace_id: str, worktree_path: str, prompt: str,
    console: Console, err_console: Console,
) -> int:
    from codexdesk.shared.formatters.markdown import render_message
    from codexdesk.shared.models.message import Message, MessageRole

    await service.create_agent(workspace_id, worktree_path)
    console.print(render_message(Message(content=prompt, sender=MessageRole.USER.value)))
    with console.status("Codex is working..."):
        response = await service.send_message(workspace_id, prompt)
    if not response.success:
        err_console.print(f"[red]Error:[/red] {response.error}", highlight=False)
        return 1
    console.print(render_message(Message(content=response.output or "")))
    return 0


async def _run_stream(
    service, bus, workspace_id: str, worktree_path: str, prompt: str,
    err_console: Console,
) -> int:
    from codexdesk.adapters.events import CodexComplete, CodexError, CodexOutput

    result = {"exit_code": None, "failed": False, "cancelled": False}

    async def print_events() -> None:
        async for event in bus.consume(workspace_id):
            if isinstance(event, CodexOutput):
                sys.stdout.write(event.output)
                sys.stdout.flush()
            elif isinstance(event, CodexError):
                err_console.print(
                    event.error.rstrip(), style="red", markup=False, highlight=False,
                )
                if event.fatal:
                    result["failed"] = True
                    return
            elif isinstance(event, CodexComplete):
                result["exit_code"] = event.exit_code
                return

    consumer = asyncio.create_task(print_events(), name="stream-printer")
    stop_tasks: list[asyncio.Task] = []
    loop = asyncio.get_running_loop()

    def on_sigint() -> None:
        result["cancelled"] = True
        stop_tasks.append(
            loop.create_task(service.stop_message_stream(workspace_id))
        )

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")

    try:
        await service.create_agent(workspace_id, worktree_path)
        await service.send_message_stream(workspace_id, prompt)
        await consumer
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        consumer.cancel()
        if stop_tasks:
            await asyncio.gather(*stop_tasks)
        await service.shutdown()
        bus.close()

    if result["cancelled"]:
        err_console.print("[yellow]Stopped.[/yellow]")
        return 130
    if result["failed"]:
        return 1
    exit_code = result["exit_code"]
    return 1 if exit_code is None else int(exit_code)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="codexdesk",
        description="codexdesk — run the Codex CLI against a workspace worktree",
    )
    parser.add_argument(
        "--workspace", metavar="ID",
        help="Workspace ID (default: first configured workspace or worktree dir name)",
    )
    parser.add_argument(
        "--worktree", metavar="PATH",
        help="Worktree directory Codex runs in (default: configured path or cwd)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .codexdesk/config.yaml or codexdesk.yaml)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--exec", metavar="PROMPT", dest="exec_prompt",
        help="Run one prompt to completion and print the response",
    )
    mode.add_argument(
        "--stream", metavar="PROMPT", dest="stream_prompt",
        help="Run one prompt and stream Codex output as it arrives",
    )
    mode.add_argument(
        "--list", action="store_true",
        help="List configured workspaces and exit (no TUI)",
    )
    mode.add_argument(
        "--check", action="store_true",
        help="Check whether the Codex CLI is installed and exit",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    headless = bool(args.exec_prompt or args.stream_prompt or args.list or args.check)
    level = "DEBUG" if args.verbose else os.getenv("CODEXDESK_LOG_LEVEL", "INFO")
    log_file = _configure_logging(level, to_stderr=headless)
    desk = _load_config(args.config)
    if not args.verbose:
        logging.getLogger().setLevel(
            getattr(logging, desk.service.log_level.upper(), logging.INFO)
        )
    logger.info("Starting codexdesk cwd=%s log=%s", Path.cwd(), log_file)

    console = Console()
    err_console = Console(stderr=True)

    if args.list:
        if not desk.workspaces:
            print("No configured workspaces.")
        for workspace_id, worktree in desk.workspaces.items():
            print(f"  {workspace_id}  {worktree}")
        sys.exit(0)

    if os.getenv("CODEXDESK_CLEANUP_STALE", "0").lower() in {"1", "true", "yes"}:
        from codexdesk.shared.services.process_cleanup import (
            cleanup_stale_codex_processes,
        )
        try:
            reaped = cleanup_stale_codex_processes(log=logger.info)
            if reaped:
                logger.warning("Reaped %d stale codex process(es) at startup", reaped)
        except (OSError, subprocess.SubprocessError):
            logger.exception("Startup stale-process cleanup failed")

    from codexdesk.adapters.event_bus import EventBus
    from codexdesk.engine.codex_service import CodexService

    bus = EventBus(maxsize=desk.service.event_queue_size)
    service = CodexService(desk.service, event_callback=bus.make_callback())

    if args.check:
        sys.exit(asyncio.run(_run_check(service, console)))

    workspace_id, worktree_path = resolve_workspace(
        args.workspace, args.worktree, desk.workspaces,
    )
    logger.info("Workspace %s -> %s", workspace_id, worktree_path)

    if args.exec_prompt:
        sys.exit(asyncio.run(_run_exec(
            service, workspace_id, worktree_path, args.exec_prompt,
            console, err_console,
        )))

    if args.stream_prompt:
        sys.exit(asyncio.run(_run_stream(
            service, bus, workspace_id, worktree_path, args.stream_prompt,
            err_console,
        )))

    # TUI mode
    from codexdesk.tui.app import CodexDeskApp

    app = CodexDeskApp(
        service=service,
        bus=bus,
        workspace_id=workspace_id,
        worktree_path=worktree_path,
    )
    app.run()


if __name__ == "__main__":
    main()
