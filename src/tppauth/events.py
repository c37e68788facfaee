"""tppauth event system — typed events and hook registry.

Applications register hooks via @auth.on("event_name") to react to
authorization lifecycle events (audit logs, metrics, cleaning up the web
session). Hooks run after the session state has been updated and are
fail-open (errors logged, never break the authorization flow).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

logger = logging.getLogger("tppauth.events")


# ---------------------------------------------------------------------------
# Event dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Event:
    """Base event — all events carry a timestamp."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class AuthorizationStarted(Event):
    """Fired when a redirect to the identity provider has been built."""
    authorization_id: str = ""
    authorization_type: str = ""
    exemption: bool = False


@dataclass(frozen=True, slots=True)
class AuthorizationCompleted(Event):
    """Fired when tokens have been verified and stored for an authorization."""
    authorization_id: str = ""
    authorization_type: str = ""
    scope: str = ""


@dataclass(frozen=True, slots=True)
class CallbackRejected(Event):
    """Fired when a callback fails (provider error, state mismatch, bad ID token)."""
    authorization_id: str | None = None
    code: str = ""
    reason: str = ""


@dataclass(frozen=True, slots=True)
class TokensRefreshed(Event):
    """Fired when an expired authorization got new tokens."""
    authorization_id: str = ""


@dataclass(frozen=True, slots=True)
class TokenRefreshFailed(Event):
    """Fired when a refresh failed and the stale tokens were kept."""
    authorization_id: str = ""


@dataclass(frozen=True, slots=True)
class AuthorizationRemoved(Event):
    """Fired when an authorization is removed from the session."""
    authorization_id: str = ""


# ---------------------------------------------------------------------------
# Event name mapping
# ---------------------------------------------------------------------------

EVENT_MAP: dict[str, type[Event]] = {
    "authorization_started": AuthorizationStarted,
    "authorization_completed": AuthorizationCompleted,
    "callback_rejected": CallbackRejected,
    "tokens_refreshed": TokensRefreshed,
    "token_refresh_failed": TokenRefreshFailed,
    "authorization_removed": AuthorizationRemoved,
}


# ---------------------------------------------------------------------------
# Hook registry
# ---------------------------------------------------------------------------

HookCallback = Callable[..., Any]


class HookRegistry:
    """Registry for event hook callbacks. Supports multiple listeners per event."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[HookCallback]] = {}

    def register(self, event_name: str, callback: HookCallback) -> None:
        """Register a callback for an event name."""
        if event_name not in EVENT_MAP:
            raise ValueError(
                f"Unknown event '{event_name}'. "
                f"Valid events: {', '.join(sorted(EVENT_MAP))}"
            )
        self._hooks.setdefault(event_name, []).append(callback)

    def get_hooks(self, event_name: str) -> list[HookCallback]:
        """Get all registered callbacks for an event name."""
        return self._hooks.get(event_name, [])

    async def emit(self, event_name: str, event: Event) -> None:
        """Fire all registered callbacks for an event. Fail-open: errors are logged."""
        for callback in self.get_hooks(event_name):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    loop = asyncio.get_running_loop()
                    await loop.run_in_executor(None, callback, event)
            except Exception:
                logger.exception(
                    "Hook error in '%s' handler %s.%s",
                    event_name,
                    callback.__module__,
                    callback.__qualname__,
                )
