"""Pytest configuration and fixtures for the openconsole test suite.

No live browser is needed: Playwright objects are replaced by fakes built from
``MagicMock`` and ``AsyncMock`` that model just enough behavior (liveness,
closing, page lists) for the orchestration code.

Path Setup:
    The src directory is added to sys.path to enable imports like:
    ``from openconsole.browser.pool import InstancePool``
"""

import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from bubus import EventBus  # noqa: E402

from openconsole.auth.views import AuthTimeouts, CredentialBundle  # noqa: E402
from openconsole.browser.pool import InstancePool  # noqa: E402
from openconsole.browser.registry import SessionRegistry  # noqa: E402


# ---------------------------------------------------------------------------
# Shared fake Playwright objects
# ---------------------------------------------------------------------------


def make_page(url="about:blank"):
    """Create a fake Playwright Page."""
    page = MagicMock()
    page.url = url
    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.fill = AsyncMock()
    page.click = AsyncMock()
    page.evaluate = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.input_value = AsyncMock(return_value="")
    page.title = AsyncMock(return_value="")
    page.keyboard.press = AsyncMock()
    page.once = MagicMock()
    page.set_default_timeout = MagicMock()
    page.set_default_navigation_timeout = MagicMock()

    closed = {"value": False}

    def _close():
        closed["value"] = True

    page.close = AsyncMock(side_effect=_close)
    page.is_closed = MagicMock(side_effect=lambda: closed["value"])
    return page


def make_context(pages=None):
    """Create a fake BrowserContext holding ``pages``."""
    context = MagicMock()
    context.pages = list(pages or [])
    context.new_page = AsyncMock(side_effect=lambda: make_page())
    return context


def make_browser(connected=True, contexts=None):
    """Create a fake Browser. ``close()`` flips it to disconnected."""
    browser = MagicMock()
    browser.is_connected = MagicMock(return_value=connected)
    browser.contexts = list(contexts or [])
    browser.new_context = AsyncMock(side_effect=lambda **kwargs: make_context())
    browser.new_page = AsyncMock(side_effect=lambda **kwargs: make_page())

    def _close():
        browser.is_connected.return_value = False

    browser.close = AsyncMock(side_effect=_close)
    return browser


def make_playwright():
    """Create a fake started Playwright driver."""
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(side_effect=lambda **kwargs: make_browser())
    playwright.chromium.connect_over_cdp = AsyncMock(side_effect=lambda endpoint: make_browser())
    playwright.stop = AsyncMock()
    return playwright


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo any handler setup so caplog keeps seeing ``openconsole`` records."""
    logger = logging.getLogger("openconsole")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture()
def fake_playwright():
    return make_playwright()


@pytest.fixture()
def pool(fake_playwright):
    return InstancePool(playwright=fake_playwright)


@pytest.fixture()
def registry():
    return SessionRegistry()


@pytest.fixture()
async def event_bus():
    bus = EventBus()
    yield bus
    await bus.stop(clear=True, timeout=5)


@pytest.fixture()
def credentials():
    return CredentialBundle(
        auth_url="https://auth.example.com/login",
        console_url="https://console.example.com/home",
        extraction_url="https://console.example.com/vpn",
        login_alias="acme",
        username="operator",
        password="s3cret-pass",
    )


@pytest.fixture()
def fast_timeouts():
    """Short bounds so timeout paths finish quickly."""
    return AuthTimeouts(
        element_ms=100,
        navigation_ms=100,
        second_factor_ms=1000,
        verification_ms=200,
        poll_interval_ms=5,
    )
