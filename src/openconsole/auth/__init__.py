"""Authentication against the console login page."""

from openconsole.auth.state_machine import AuthenticationStateMachine
from openconsole.auth.views import AuthSelectors, AuthState, AuthTimeouts, CredentialBundle

__all__ = ["AuthSelectors", "AuthState", "AuthTimeouts", "AuthenticationStateMachine", "CredentialBundle"]
