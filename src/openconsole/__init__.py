"""openconsole - console login and data extraction through a shared browser session."""

__version__ = "0.1.0"

# Session orchestration core
from openconsole.auth import AuthenticationStateMachine, AuthSelectors, AuthState, AuthTimeouts, CredentialBundle
from openconsole.browser import AttachedBrowser, InstancePool, LaunchConfig, PageOptions, SessionRegistry
from openconsole.navigation import BestEffortOutcome, ConsoleNavigator, ReadinessWaiter, poll_until

# Collaborators
from openconsole.extraction import TableExtractor
from openconsole.workflow import ActionParams, ActionResult, Dispatcher, expand_records

from openconsole.exceptions import (
    ActionError,
    AuthenticationError,
    BrowserConnectionError,
    ElementNotFoundError,
    NavigationError,
    OpenConsoleError,
    SecondFactorTimeoutError,
    SessionNotActiveError,
    StepTimeoutError,
)

__all__ = [
    "__version__",
    # Core
    "AttachedBrowser",
    "AuthSelectors",
    "AuthState",
    "AuthTimeouts",
    "AuthenticationStateMachine",
    "BestEffortOutcome",
    "ConsoleNavigator",
    "CredentialBundle",
    "InstancePool",
    "LaunchConfig",
    "PageOptions",
    "ReadinessWaiter",
    "SessionRegistry",
    "poll_until",
    # Collaborators
    "ActionParams",
    "ActionResult",
    "Dispatcher",
    "TableExtractor",
    "expand_records",
    # Exceptions
    "ActionError",
    "AuthenticationError",
    "BrowserConnectionError",
    "ElementNotFoundError",
    "NavigationError",
    "OpenConsoleError",
    "SecondFactorTimeoutError",
    "SessionNotActiveError",
    "StepTimeoutError",
]
