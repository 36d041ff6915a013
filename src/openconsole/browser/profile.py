"""Browser launch configuration following the profile pattern."""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from openconsole.config import CONFIG, DEFAULT_NAVIGATION_TIMEOUT_MS

# Flags Chromium needs when it runs as root inside a container
SANDBOX_DISABLING_ARGS = ['--no-sandbox', '--disable-setuid-sandbox']

TLS_TOLERANCE_ARGS = ['--ignore-certificate-errors']

DEFAULT_TIMEOUT_MS = 10000


class ViewportSize(BaseModel):
    """Viewport size configuration."""

    width: int = Field(ge=0)
    height: int = Field(ge=0)

    def __getitem__(self, key: str) -> int:
        return dict(self)[key]


class PageOptions(BaseModel):
    """Per-page settings applied whenever a page is opened for a work item."""

    model_config = ConfigDict(extra='forbid')

    default_timeout: float | None = Field(default=DEFAULT_TIMEOUT_MS, description='Default timeout for page operations (ms)')
    navigation_timeout: float | None = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS, description='Navigation timeout (ms)'
    )
    viewport: ViewportSize | None = Field(default=None, description='Viewport size for new pages')
    user_agent: str | None = Field(default=None, description='Custom user agent string')
    ignore_https_errors: bool = Field(default=False, description='Ignore TLS certificate errors')

    def new_page_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``Browser.new_page``."""
        kwargs: dict[str, Any] = {}
        if self.viewport:
            kwargs['viewport'] = {'width': self.viewport.width, 'height': self.viewport.height}
        if self.user_agent:
            kwargs['user_agent'] = self.user_agent
        if self.ignore_https_errors:
            kwargs['ignore_https_errors'] = True
        return kwargs

    def apply(self, page: Any) -> None:
        """Apply the timeout configuration to an already open page."""
        if self.default_timeout is not None:
            page.set_default_timeout(self.default_timeout)
        if self.navigation_timeout is not None:
            page.set_default_navigation_timeout(self.navigation_timeout)


class LaunchConfig(BaseModel):
    """Launch configuration for a pooled browser instance.

    Only the launch-affecting fields take part in the fingerprint; page options
    such as timeouts or the viewport can change between items without forcing a
    relaunch.
    """

    model_config = ConfigDict(
        extra='ignore',
        validate_assignment=True,
        from_attributes=True,
        validate_by_name=True,
        validate_by_alias=True,
    )

    browser_type: Literal['chromium'] = Field(default='chromium', description='Browser engine to launch')
    headless: bool = Field(default=True, description='Whether to run browser in headless mode')
    ignore_https_errors: bool = Field(
        default=False,
        description='Tolerate TLS certificate errors',
        validation_alias='ignoreHTTPSErrors',
    )
    no_sandbox: bool = Field(
        default_factory=lambda: CONFIG.IN_DOCKER,
        description='Disable the Chromium sandbox (needed in most containers)',
    )
    executable_path: str | None = Field(default=None, description='Path to browser executable')
    args: list[str] = Field(default_factory=list, description='Additional CLI args to pass to browser')

    # Page level settings
    default_timeout: float | None = Field(default=DEFAULT_TIMEOUT_MS, validation_alias='defaultTimeout')
    navigation_timeout: float | None = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS, validation_alias='navigationTimeout'
    )
    viewport: ViewportSize | None = Field(default=None)
    user_agent: str | None = Field(default=None, validation_alias='userAgent')

    def get_args(self) -> list[str]:
        """Get the list of Chromium CLI args for this configuration."""
        args: list[str] = []
        if self.no_sandbox:
            args.extend(SANDBOX_DISABLING_ARGS)
        if self.ignore_https_errors:
            args.extend(TLS_TOLERANCE_ARGS)
        args.extend(arg for arg in self.args if arg not in args)
        return args

    def launch_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``BrowserType.launch``."""
        kwargs: dict[str, Any] = {
            'headless': self.headless,
            'args': self.get_args(),
        }
        if self.executable_path:
            kwargs['executable_path'] = self.executable_path
        return kwargs

    def page_options(self) -> PageOptions:
        return PageOptions(
            default_timeout=self.default_timeout,
            navigation_timeout=self.navigation_timeout,
            viewport=self.viewport,
            user_agent=self.user_agent,
            ignore_https_errors=self.ignore_https_errors,
        )

    def fingerprint(self) -> str:
        """Deterministic cache key derived from the engine and its launch options."""
        options = {
            'headless': self.headless,
            'ignore_https_errors': self.ignore_https_errors,
            'no_sandbox': self.no_sandbox,
            'executable_path': self.executable_path,
            'args': sorted(self.args),
        }
        return f'{self.browser_type}-{json.dumps(options, sort_keys=True)}'
