"""Exception hierarchy for the agent bridge.

Specific exceptions for each failure mode. The bridge converts all of
them into ``error`` events; only the process runner and the one-shot
executor raise them to their callers.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class UnauthenticatedError(BridgeError):
    """No credential source resolved for the agent."""
    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(
            reason
            or "Not authenticated. Set an API key in settings or log in "
               "via cursor-agent."
        )


class AgentSpawnError(BridgeError):
    """The agent process could not be started."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {command}: {reason}")


class AgentNotRunnableError(AgentSpawnError):
    """None of the candidate commands exist."""
    def __init__(self, candidates: list[str]):
        self.candidates = list(candidates)
        searched = ", ".join(self.candidates) if self.candidates else "none"
        BridgeError.__init__(
            self,
            "Unable to run cursor-agent (searched: "
            f"{searched}). Configure an absolute path in settings or "
            "add it to PATH.",
        )
        self.command = self.candidates[-1] if self.candidates else ""
        self.reason = "not found"


class AgentRuntimeError(BridgeError):
    """The agent process exited non-zero with diagnostic output."""
    def __init__(self, exit_code: int | None, stderr: str):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(stderr)


class BridgeBusyError(BridgeError):
    """A send was attempted while an invocation is still live."""
    def __init__(self) -> None:
        super().__init__("cursor-agent is already running")
