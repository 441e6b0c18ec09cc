"""Adapters package - Bridge between the engine and chat frontends.

The chat controller subscribes to an AgentBridge and keeps the session
ledger, streamed assistant text and tool call notices in sync.
"""
from __future__ import annotations

__all__ = [
    "ChatController",
]

from cursor_chat.adapters.chat_controller import ChatController
