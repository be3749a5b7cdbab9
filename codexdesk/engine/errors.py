"""Exception hierarchy for the Codex service.

These are raised inside the service and translated into
CodexResponse failures or codex_error events at the public boundary.
"""
from __future__ import annotations

INSTALL_HINT = "npm install -g @openai/codex"
NOT_INSTALLED_MESSAGE = (
    f"Codex CLI is not installed. Please install it with: {INSTALL_HINT}"
)
NOT_FOUND_MESSAGE = (
    f"Codex CLI not found. Please install it with: {INSTALL_HINT}"
)
NO_AGENT_MESSAGE = "No agent found for this workspace"


class CodexServiceError(Exception):
    """Base exception for all Codex service errors."""


class CodexNotInstalledError(CodexServiceError):
    """The Codex CLI binary is missing or does not run."""
    def __init__(self, command: str = "codex"):
        self.command = command
        super().__init__(NOT_INSTALLED_MESSAGE)


class AgentNotFoundError(CodexServiceError):
    """No agent is registered for the workspace."""
    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(NO_AGENT_MESSAGE)


class CodexTimeoutError(CodexServiceError):
    """A non-streaming Codex invocation exceeded its time budget."""
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__("Codex command timed out")


class CodexExecError(CodexServiceError):
    """Codex exited with a non-zero status."""
    def __init__(self, returncode: int | None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed with exit code {returncode}")
