"""Codex CLI process façade.

Launches ``codex exec`` inside a workspace worktree, forwards its
stdout/stderr to a per-workspace stream log and to the event callback,
and keeps a small in-memory registry of agent handles.

Uses asyncio.create_subprocess_exec (array-based, no shell) so the
prompt is passed as a single argv element regardless of quoting.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from .config import EventCallback, ServiceConfig, fire_event
from .errors import (
    NOT_FOUND_MESSAGE,
    AgentNotFoundError,
    CodexExecError,
    CodexNotInstalledError,
    CodexServiceError,
    CodexTimeoutError,
)
from .models import AgentStatus, CodexAgent, CodexResponse, make_agent_id
from .stream_log import (
    CANCELLED_MARKER,
    COMPLETE_MARKER,
    StreamLogManager,
    error_marker,
)

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


def format_command(args: list[str]) -> str:
    """Render argv for logging, quoting elements that contain spaces."""
    return " ".join(f'"{a}"' if " " in a else a for a in args)


class CodexService:
    """Registry of Codex agents plus the processes running for them.

    Agents are keyed by agent id; every public operation addresses
    them by workspace id and resolves to the first registered agent
    for that workspace. At most one streaming process runs per
    workspace.
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._config = config or ServiceConfig()
        self._event_callback = event_callback
        self._agents: dict[str, CodexAgent] = {}
        self._is_installed: bool | None = None
        self._running: dict[str, asyncio.subprocess.Process] = {}
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._pending_cancellations: set[str] = set()
        self._logs = StreamLogManager(self._config.stream_log_name)

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def stream_logs(self) -> StreamLogManager:
        return self._logs

    def set_event_callback(self, callback: EventCallback | None) -> None:
        self._event_callback = callback

    def is_running(self, workspace_id: str) -> bool:
        return workspace_id in self._running

    # ── Events ──────────────────────────────────────────────────

    async def _emit(self, event_type: str, **fields: Any) -> None:
        await fire_event(self._event_callback, {"event": event_type, **fields})

    async def _set_status(self, agent: CodexAgent, status: AgentStatus) -> None:
        if agent.status == status:
            return
        agent.status = status
        await self._emit(
            "agent_status_changed",
            workspace_id=agent.workspace_id,
            agent_id=agent.id,
            status=status.value,
        )

    # ── Installation ────────────────────────────────────────────

    def _build_env(self) -> dict[str, str] | None:
        """Build subprocess environment with optional API key."""
        if self._config.api_key_env:
            key = os.environ.get(self._config.api_key_env)
            if key:
                env = os.environ.copy()
                env["OPENAI_API_KEY"] = key
                return env
        return None

    async def check_installation(self) -> bool:
        """Run ``codex --version`` and cache whether it succeeded."""
        version = ""
        timeout = self._config.exec_timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                self._config.command, "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(
                proc.communicate(), timeout if timeout > 0 else None,
            )
            installed = proc.returncode == 0
            version = stdout.decode("utf-8", errors="replace").strip()
        except OSError as exc:
            logger.debug("'%s --version' failed: %s", self._config.command, exc)
            installed = False
        except asyncio.TimeoutError:
            logger.warning(
                "'%s --version' did not exit within %.1fs",
                self._config.command, timeout,
            )
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            installed = False

        self._is_installed = installed
        if installed:
            logger.info("Codex CLI is installed (%s)", version or "unknown version")
        else:
            logger.info("Codex CLI is not installed")
        return installed

    async def get_installation_status(self) -> bool:
        if self._is_installed is None:
            return await self.check_installation()
        return self._is_installed

    def get_installation_instructions(self) -> str:
        return (
            "To install Codex CLI, run one of these commands:\n"
            "\n"
            "npm install -g @openai/codex\n"
            "\n"
            "or\n"
            "\n"
            "brew install codex\n"
            "\n"
            "After installation, authenticate with:\n"
            "codex\n"
            "\n"
            "Then try again!"
        )

    # ── Agent registry ──────────────────────────────────────────

    def _find_agent(self, workspace_id: str) -> CodexAgent | None:
        return next(
            (a for a in self._agents.values() if a.workspace_id == workspace_id),
            None,
        )

    async def create_agent(self, workspace_id: str, worktree_path: str) -> CodexAgent:
        agent = CodexAgent(
            id=make_agent_id(workspace_id),
            workspace_id=workspace_id,
            worktree_path=str(worktree_path),
        )
        self._agents[agent.id] = agent
        logger.info("Created Codex agent %s for workspace %s", agent.id, workspace_id)
        await self._emit(
            "agent_created", workspace_id=workspace_id, agent_id=agent.id,
        )
        return agent

    def _require_agent(self, workspace_id: str) -> CodexAgent:
        agent = self._find_agent(workspace_id)
        if agent is None:
            raise AgentNotFoundError(workspace_id)
        return agent

    async def _require_installed(self) -> None:
        if not await self.get_installation_status():
            raise CodexNotInstalledError(self._config.command)

    def get_agent_status(self, workspace_id: str) -> CodexAgent | None:
        return self._find_agent(workspace_id)

    def get_all_agents(self) -> list[CodexAgent]:
        return list(self._agents.values())

    async def remove_agent(self, workspace_id: str) -> bool:
        agent = self._find_agent(workspace_id)
        if agent is None:
            return False
        del self._agents[agent.id]
        logger.info("Removed agent %s for workspace %s", agent.id, workspace_id)
        await self._emit(
            "agent_removed", workspace_id=workspace_id, agent_id=agent.id,
        )
        return True

    # ── Command construction ────────────────────────────────────

    def build_exec_args(self, message: str) -> list[str]:
        cmd = [self._config.command]
        if self._config.model:
            cmd.extend(["-c", f'model="{self._config.model}"'])
        cmd.extend(["exec", "--sandbox", self._config.sandbox_mode, message])
        return cmd

    # ── Streaming ───────────────────────────────────────────────

    async def send_message_stream(self, workspace_id: str, message: str) -> None:
        """Start a streaming Codex run and return once it is spawned.

        Progress is reported only through events: codex_output per
        stdout chunk, codex_error per stderr chunk (fatal=False) or
        failure (fatal=True), and
        codex_complete when the process closes.
        """
        try:
            agent = self._require_agent(workspace_id)
        except AgentNotFoundError as exc:
            await self._emit(
                "codex_error",
                workspace_id=workspace_id, agent_id="", error=str(exc),
                fatal=True,
            )
            return

        try:
            await self._require_installed()
        except CodexNotInstalledError as exc:
            self._pending_cancellations.discard(workspace_id)
            self._logs.initialize(workspace_id, agent, message)
            self._logs.append(workspace_id, error_marker(str(exc)))
            self._logs.finalize(workspace_id)
            await self._emit(
                "codex_error",
                workspace_id=workspace_id, agent_id=agent.id,
                error=str(exc), fatal=True,
            )
            return

        if workspace_id in self._running:
            await self.stop_message_stream(workspace_id)

        agent.last_message = message
        if agent.last_response is None:
            agent.last_response = ""
        await self._set_status(agent, AgentStatus.RUNNING)

        args = self.build_exec_args(message)
        logger.info("Executing: %s in %s", format_command(args), agent.worktree_path)

        self._pending_cancellations.discard(workspace_id)
        self._logs.initialize(workspace_id, agent, message)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=agent.worktree_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
            )
        except OSError as exc:
            await self._fail_stream(workspace_id, agent, str(exc))
            return

        self._running[workspace_id] = proc
        self._pumps[workspace_id] = asyncio.create_task(
            self._pump(workspace_id, agent, proc),
            name=f"codex-stream-{workspace_id}",
        )

    async def wait_for_stream(
        self, workspace_id: str, timeout: float | None = None,
    ) -> None:
        """Wait until the current stream for the workspace has closed."""
        pump = self._pumps.get(workspace_id)
        if pump is None:
            return
        await asyncio.wait_for(asyncio.shield(pump), timeout)

    async def _fail_stream(
        self, workspace_id: str, agent: CodexAgent, error: str,
    ) -> None:
        await self._set_status(agent, AgentStatus.ERROR)
        logger.error("Error executing Codex in %s: %s", agent.worktree_path, error)
        self._running.pop(workspace_id, None)
        self._logs.append(workspace_id, error_marker(error))
        self._pending_cancellations.discard(workspace_id)
        self._logs.finalize(workspace_id)
        await self._emit(
            "codex_error",
            workspace_id=workspace_id, agent_id=agent.id, error=error,
            fatal=True,
        )

    async def _forward(
        self,
        stream: asyncio.StreamReader,
        handler: Callable[[str], Awaitable[None]],
    ) -> None:
        """Read a pipe to EOF, handing each decoded chunk to handler."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    await handler(tail)
                return
            text = decoder.decode(chunk)
            if text:
                await handler(text)

    async def _pump(
        self,
        workspace_id: str,
        agent: CodexAgent,
        proc: asyncio.subprocess.Process,
    ) -> None:
        async def on_stdout(text: str) -> None:
            self._logs.append(workspace_id, text)
            agent.last_response = (agent.last_response or "") + text
            await self._emit(
                "codex_output",
                workspace_id=workspace_id, agent_id=agent.id, output=text,
            )

        async def on_stderr(text: str) -> None:
            self._logs.append(workspace_id, error_marker(text))
            await self._emit(
                "codex_error",
                workspace_id=workspace_id, agent_id=agent.id, error=text,
                fatal=False,
            )

        try:
            await asyncio.gather(
                self._forward(proc.stdout, on_stdout),
                self._forward(proc.stderr, on_stderr),
            )
            returncode = await proc.wait()
        except Exception as exc:
            logger.exception("Codex stream pump failed for %s", workspace_id)
            if self._pumps.get(workspace_id) is asyncio.current_task():
                del self._pumps[workspace_id]
            await self._fail_stream(workspace_id, agent, str(exc))
            return

        if self._running.get(workspace_id) is proc:
            del self._running[workspace_id]
        if self._pumps.get(workspace_id) is asyncio.current_task():
            del self._pumps[workspace_id]

        # Negative return codes mean the child died from a signal.
        exit_code = returncode if returncode >= 0 else None
        await self._set_status(agent, AgentStatus.IDLE)
        logger.info(
            "Codex completed with code %s in %s", exit_code, agent.worktree_path,
        )
        self._logs.append(
            workspace_id,
            COMPLETE_MARKER.format(
                exit_code="null" if exit_code is None else exit_code
            ),
        )
        if workspace_id not in self._pending_cancellations:
            self._logs.finalize(workspace_id)
        await self._emit(
            "codex_complete",
            workspace_id=workspace_id, agent_id=agent.id, exit_code=exit_code,
        )

    async def _wait_closed(
        self,
        proc: asyncio.subprocess.Process,
        pump: asyncio.Task[None] | None,
        timeout: float | None,
    ) -> bool:
        waiter = pump if pump is not None else proc.wait()
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _terminate(
        self,
        workspace_id: str,
        proc: asyncio.subprocess.Process,
        pump: asyncio.Task[None] | None,
    ) -> None:
        """Escalate SIGINT -> SIGTERM -> SIGKILL until the stream closes.

        A killed child can leave descendants holding its stdout/stderr
        open, so after SIGKILL the pipes are closed on our side to let
        the pump reach EOF. Every wait is bounded by the grace period.
        """
        grace = self._config.stop_grace_seconds
        steps: list[tuple[str, Callable[[], None]]] = [
            ("SIGINT", lambda: proc.send_signal(signal.SIGINT)),
            ("SIGTERM", proc.terminate),
            ("SIGKILL", proc.kill),
        ]
        for name, send in steps:
            try:
                send()
            except ProcessLookupError:
                logger.warning(
                    "stop_message_stream: process already exited %s", workspace_id,
                )
            if await self._wait_closed(proc, pump, grace):
                logger.info("stop_message_stream: process closed %s", workspace_id)
                return
            logger.warning(
                "stop_message_stream: %s ignored after %.1fs %s",
                name, grace, workspace_id,
            )

        if proc.returncode is None:
            await self._wait_closed(proc, None, grace)
        logger.warning(
            "stop_message_stream: pipes still open after SIGKILL, releasing %s",
            workspace_id,
        )
        self._release_pipes(proc)
        if pump is not None and not await self._wait_closed(proc, pump, grace):
            logger.error("stop_message_stream: abandoning stream pump %s", workspace_id)
            pump.cancel()
            if self._pumps.get(workspace_id) is pump:
                del self._pumps[workspace_id]

    @staticmethod
    def _release_pipes(proc: asyncio.subprocess.Process) -> None:
        """Close our ends of stdout/stderr so their readers see EOF."""
        transport = proc._transport  # no public accessor on Process
        for fd in (1, 2):
            pipe = transport.get_pipe_transport(fd)
            if pipe is not None:
                pipe.close()

    async def stop_message_stream(self, workspace_id: str) -> bool:
        """Stop the running stream for a workspace.

        Returns True when nothing was running or the process closed,
        False when signalling failed.
        """
        proc = self._running.get(workspace_id)
        if proc is None:
            logger.info(
                "stop_message_stream: no running process for %s", workspace_id,
            )
            self._pending_cancellations.discard(workspace_id)
            return True

        agent = self._find_agent(workspace_id)
        pump = self._pumps.get(workspace_id)
        self._pending_cancellations.add(workspace_id)
        logger.info(
            "stop_message_stream: attempting to stop process %s (pid=%s)",
            workspace_id, proc.pid,
        )

        result = False
        try:
            await self._terminate(workspace_id, proc, pump)
        except OSError as exc:
            logger.error(
                "stop_message_stream: error sending signal %s: %s",
                workspace_id, exc,
            )
        else:
            self._logs.append(workspace_id, CANCELLED_MARKER)
            self._logs.finalize(workspace_id)
            result = True
        finally:
            self._pending_cancellations.discard(workspace_id)
            if self._running.get(workspace_id) is proc:
                del self._running[workspace_id]
            if agent is not None:
                await self._set_status(agent, AgentStatus.IDLE)
        return result

    # ── Non-streaming ───────────────────────────────────────────

    async def _run_exec(self, args: list[str], cwd: str) -> tuple[str, str]:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._build_env(),
        )
        timeout = self._config.exec_timeout_seconds
        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout if timeout > 0 else None,
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise CodexTimeoutError(timeout)

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise CodexExecError(proc.returncode, stderr)
        return stdout, stderr

    @staticmethod
    def _describe_exec_failure(exc: Exception) -> str:
        if isinstance(exc, FileNotFoundError):
            return NOT_FOUND_MESSAGE
        if isinstance(exc, CodexExecError) and exc.stderr:
            return exc.stderr
        return str(exc) or "Unknown error occurred"

    async def send_message(self, workspace_id: str, message: str) -> CodexResponse:
        """Run Codex to completion and return its stdout."""
        try:
            agent = self._require_agent(workspace_id)
        except AgentNotFoundError as exc:
            return CodexResponse(success=False, agent_id="", error=str(exc))

        try:
            await self._require_installed()
        except CodexNotInstalledError as exc:
            return CodexResponse(success=False, agent_id=agent.id, error=str(exc))

        agent.last_message = message
        await self._set_status(agent, AgentStatus.RUNNING)

        args = self.build_exec_args(message)
        logger.info("Executing: %s in %s", format_command(args), agent.worktree_path)

        try:
            stdout, stderr = await self._run_exec(args, agent.worktree_path)
        except (OSError, CodexServiceError) as exc:
            error = self._describe_exec_failure(exc)
            await self._set_status(agent, AgentStatus.ERROR)
            logger.error("Error executing Codex in %s: %s", agent.worktree_path, error)
            return CodexResponse(success=False, agent_id=agent.id, error=error)

        agent.last_response = stdout
        await self._set_status(agent, AgentStatus.IDLE)
        logger.info("Codex completed in %s", agent.worktree_path)
        logger.debug("Codex stdout: %s", stdout)
        logger.debug("Codex stderr: %s", stderr)
        return CodexResponse(success=True, agent_id=agent.id, output=stdout)

    # ── Lifecycle ───────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop every running stream and close all stream logs."""
        for workspace_id in list(self._running):
            await self.stop_message_stream(workspace_id)
        self._logs.close_all()
