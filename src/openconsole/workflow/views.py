"""Workflow view models: action parameters and result records."""

import logging
import random
import string
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from openconsole.auth.views import CredentialBundle
from openconsole.browser.profile import LaunchConfig

Script = Callable[..., Awaitable[Any]]

OutputFormat = Literal['items', 'array']


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def new_session_id() -> str:
    """Session id of the form ``single-browser-<epoch ms>-<9 random chars>``."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f'single-browser-{int(time.time() * 1000)}-{suffix}'


def script_console(index: int) -> logging.LoggerAdapter:
    """Logger handed to caller scripts, prefixing each line with the item index."""
    return _ItemLoggerAdapter(logging.getLogger('openconsole.script'), {'index': index})


class _ItemLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f'[Item {self.extra["index"]}] {msg}', kwargs


class ActionParams(BaseModel):
    """Parameters shared by every action of a batch."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid')

    # Script actions
    launch: LaunchConfig = Field(default_factory=LaunchConfig)
    session_id: str | None = None
    script: Script | None = None
    reuse_pages: bool = False
    reuse_browser: bool = False

    # Console actions
    credentials: CredentialBundle | None = None
    debug_port: int | None = None
    host: str | None = None
    manual_second_factor: bool = True
    verify_login: bool = False
    popup_timeout_ms: float | None = None
    data_timeout_ms: float | None = None
    include_details: bool = False
    output_format: OutputFormat = 'items'


class ActionResult(BaseModel):
    """Outcome of one action on one work item."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    message: str | None = None
    timestamp: str = Field(default_factory=utc_timestamp)
    action: str | None = None
    session_id: str | None = None
    item_index: int | None = None
    error: str | None = None

    # launch / interact
    browser_type: str | None = None
    is_connected: bool | None = None
    reused_existing: bool | None = None
    auto_launched: bool | None = None
    page_url: str | None = None
    result: Any = None

    # console actions
    steps: list[str] | None = None
    data: list[dict[str, Any]] | None = None
    count: int | None = None
    details: list[dict[str, Any]] | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @classmethod
    def failure(cls, error: Exception, action: str, item_index: int) -> 'ActionResult':
        return cls(success=False, error=str(error), action=action, item_index=item_index)
