"""cursor-agent bridge: process lifecycle, stream decoding, auth and sessions."""
from .approval import ApprovalChoice, ApprovalPromptDetector, ApprovalRequest, ServerInfo
from .auth import AuthResult, AuthSource, is_agent_installed, open_login_flow, resolve_auth
from .bridge import AgentBridge, BridgeOptions, BridgeState, build_agent_args
from .config import AgentSettings, PermissionMode
from .emitter import EventEmitter
from .errors import (
    AgentNotRunnableError,
    AgentRuntimeError,
    AgentSpawnError,
    BridgeBusyError,
    BridgeError,
    UnauthenticatedError,
)
from .process import ExecResult, exec_agent, spawn_agent
from .protocol import ProtocolDecoder
from .session import ConversationSummary, LedgerOptions, SessionLedger, SessionState

__all__ = [
    # Bridge
    "AgentBridge",
    "BridgeOptions",
    "BridgeState",
    "build_agent_args",
    "EventEmitter",
    # Approval
    "ApprovalChoice",
    "ApprovalPromptDetector",
    "ApprovalRequest",
    "ServerInfo",
    # Auth
    "AuthResult",
    "AuthSource",
    "is_agent_installed",
    "open_login_flow",
    "resolve_auth",
    # Config
    "AgentSettings",
    "PermissionMode",
    # Process
    "ExecResult",
    "exec_agent",
    "spawn_agent",
    "ProtocolDecoder",
    # Sessions
    "ConversationSummary",
    "LedgerOptions",
    "SessionLedger",
    "SessionState",
    # Errors
    "AgentNotRunnableError",
    "AgentRuntimeError",
    "AgentSpawnError",
    "BridgeBusyError",
    "BridgeError",
    "UnauthenticatedError",
]
