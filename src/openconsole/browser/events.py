"""Lifecycle events emitted by the session orchestration core."""

import os

from bubus import BaseEvent, EventBus


def _get_timeout(env_var: str, default: float) -> float | None:
    """Safely parse environment variable timeout values with robust error handling.

    Args:
        env_var: Environment variable name (e.g. 'TIMEOUT_BrowserLaunchedEvent')
        default: Default timeout value as float (e.g. 15.0)

    Returns:
        Parsed float value or the default if parsing fails
    """
    env_value = os.getenv(env_var)
    if env_value:
        try:
            parsed = float(env_value)
            if parsed < 0:
                return default
            return parsed
        except (ValueError, TypeError):
            pass

    return default


# ============================================================================
# Instance Pool Events
# ============================================================================


class BrowserLaunchedEvent(BaseEvent[None]):
    """A fresh browser process was launched and cached in the pool."""

    fingerprint: str

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserLaunchedEvent', 10.0)


class BrowserAttachedEvent(BaseEvent[None]):
    """A browser already listening on a debugging endpoint was attached."""

    endpoint: str
    reused_context: bool = False
    reused_page: bool = False

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserAttachedEvent', 10.0)


class BrowserReleasedEvent(BaseEvent[None]):
    """The pool released all of its handles."""

    closed: int = 0
    failed: int = 0

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserReleasedEvent', 10.0)


# ============================================================================
# Session Registry Events
# ============================================================================


class SessionInstalledEvent(BaseEvent[None]):
    """A browser was installed as the single active session."""

    session_id: str
    replaced_session_id: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_SessionInstalledEvent', 10.0)


class SessionClosedEvent(BaseEvent[None]):
    """The active session was closed or discarded."""

    session_id: str | None = None
    reason: str = 'closed'

    event_timeout: float | None = _get_timeout('TIMEOUT_SessionClosedEvent', 10.0)


# ============================================================================
# Authentication And Navigation Events
# ============================================================================


class AuthStateChangedEvent(BaseEvent[None]):
    """The authentication state machine moved to a new state."""

    previous: str
    current: str
    detail: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_AuthStateChangedEvent', 10.0)


class PopupDismissalEvent(BaseEvent[None]):
    """Outcome of the best-effort interstitial popup dismissal."""

    attempted: bool
    observed: bool
    discarded: bool
    detail: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_PopupDismissalEvent', 10.0)


async def emit(event_bus: EventBus | None, event: BaseEvent) -> None:
    """Dispatch ``event`` on ``event_bus`` and wait for its handlers, if a bus is attached."""
    if event_bus is None:
        return
    await event_bus.dispatch(event)
