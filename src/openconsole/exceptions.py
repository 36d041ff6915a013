"""Exceptions raised by the session orchestration core and the workflow layer."""


class OpenConsoleError(Exception):
    """Base exception for all openconsole errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class BrowserConnectionError(OpenConsoleError):
    """Raised when a browser cannot be launched or attached to."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        port: int | None = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.port = port

    def __str__(self) -> str:
        if self.endpoint:
            return f'{self.message} (endpoint: {self.endpoint})'
        return self.message


class SessionNotActiveError(OpenConsoleError):
    """Raised when a page is requested while no live session is registered."""


class StepTimeoutError(OpenConsoleError):
    """Raised when a bounded wait inside a workflow step runs out of time."""

    def __init__(
        self,
        message: str,
        step: str,
        timeout_ms: float | None = None,
        selector: str | None = None,
    ):
        super().__init__(message)
        self.step = step
        self.timeout_ms = timeout_ms
        self.selector = selector

    def __str__(self) -> str:
        parts = [f'[{self.step}] {self.message}']
        if self.selector:
            parts.append(f'selector={self.selector!r}')
        if self.timeout_ms is not None:
            parts.append(f'timeout={self.timeout_ms:g}ms')
        return ' '.join(parts)


class ElementNotFoundError(StepTimeoutError):
    """Raised when a required element does not appear before its wait timeout."""


class SecondFactorTimeoutError(StepTimeoutError):
    """Raised when no second factor code was entered within the manual wait bound."""


class AuthenticationError(OpenConsoleError):
    """Raised for non-timeout driver failures during authentication."""

    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.step = step

    def __str__(self) -> str:
        return f'[{self.step}] {self.message}'


class NavigationError(OpenConsoleError):
    """Raised for non-timeout driver failures during navigation."""

    def __init__(self, message: str, step: str):
        super().__init__(message)
        self.step = step

    def __str__(self) -> str:
        return f'[{self.step}] {self.message}'


class ActionError(OpenConsoleError):
    """Raised by the dispatcher when an item fails and continue-on-fail is off."""

    def __init__(
        self,
        message: str,
        action: str | None = None,
        item_index: int | None = None,
    ):
        super().__init__(message)
        self.action = action
        self.item_index = item_index

    def __str__(self) -> str:
        if self.action is not None and self.item_index is not None:
            return f'{self.action} failed on item {self.item_index}: {self.message}'
        return self.message
