"""Synchronous named-event emitter for bridge subscribers.

One ordered listener list per event name. Dispatch happens inline on
the caller's loop, in registration order, so subscribers observe events
in exactly the order the agent produced them.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

# Event names the bridge emits.
BRIDGE_EVENTS = (
    "init",
    "user",
    "assistant",
    "tool_call",
    "result",
    "error",
    "close",
    "ready",
    "approval_required",
)


class EventEmitter:
    """Typed subscribe/unsubscribe with per-event ordered listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that removes it."""
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener for ``event``. Returns True if any ran.

        A listener that raises is logged and skipped; the rest still run.
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %r raised", event)
        return bool(listeners)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
