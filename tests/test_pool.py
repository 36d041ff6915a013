"""Tests for the instance pool.

Covers fingerprint keyed reuse, relaunch of disconnected handles, attaching
to a debugging endpoint, and best-effort bulk release.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import make_browser, make_context, make_page
from openconsole.browser import pool as pool_module
from openconsole.browser.events import BrowserLaunchedEvent, BrowserReleasedEvent
from openconsole.browser.pool import InstancePool, attach_fingerprint
from openconsole.browser.profile import LaunchConfig
from openconsole.exceptions import BrowserConnectionError

_RealAsyncClient = httpx.AsyncClient


@pytest.fixture()
def devtools_endpoint(monkeypatch):
    """Route the DevTools version request through an in-memory transport.

    Returns a dict whose ``status`` and ``error`` keys control the response.
    """
    behavior = {"status": 200, "error": None, "requests": []}

    def handler(request):
        behavior["requests"].append(str(request.url))
        if behavior["error"] is not None:
            raise behavior["error"]
        return httpx.Response(behavior["status"], json={"Browser": "Chrome/120.0"})

    monkeypatch.setattr(
        pool_module.httpx,
        "AsyncClient",
        lambda **kwargs: _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs),
    )
    return behavior


class TestAcquire:
    """Tests for cold launches keyed by fingerprint."""

    async def test_same_fingerprint_returns_same_handle(self, pool, fake_playwright):
        """Two acquisitions with an identical config share one launch."""
        config = LaunchConfig(headless=True)

        first = await pool.acquire(config=config)
        second = await pool.acquire(config=LaunchConfig(headless=True))

        assert first is second
        assert pool.size == 1
        assert pool.launch_count == 1
        fake_playwright.chromium.launch.assert_awaited_once()

    async def test_different_fingerprints_launch_separately(self, pool):
        headless = await pool.acquire(config=LaunchConfig(headless=True))
        headful = await pool.acquire(config=LaunchConfig(headless=False))

        assert headless is not headful
        assert pool.size == 2

    async def test_explicit_fingerprint_overrides_config(self, pool):
        first = await pool.acquire("shared", LaunchConfig(headless=True))
        second = await pool.acquire("shared", LaunchConfig(headless=False))

        assert first is second
        assert pool.fingerprints() == ["shared"]

    async def test_disconnected_handle_is_relaunched(self, pool):
        config = LaunchConfig()
        first = await pool.acquire(config=config)
        first.is_connected.return_value = False

        second = await pool.acquire(config=config)

        assert second is not first
        assert pool.launch_count == 2
        assert pool.size == 1

    async def test_launch_kwargs_reach_the_driver(self, pool, fake_playwright):
        config = LaunchConfig(headless=False, no_sandbox=True, executable_path="/usr/bin/chromium-browser")

        await pool.acquire(config=config)

        kwargs = fake_playwright.chromium.launch.await_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["executable_path"] == "/usr/bin/chromium-browser"
        assert "--no-sandbox" in kwargs["args"]

    async def test_launch_failure_raises_connection_error(self, pool, fake_playwright):
        fake_playwright.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")

        with pytest.raises(BrowserConnectionError, match="Failed to launch browser"):
            await pool.acquire(config=LaunchConfig())
        assert pool.size == 0

    async def test_launch_emits_event(self, fake_playwright, event_bus):
        seen = []

        async def on_launched(event: BrowserLaunchedEvent):
            seen.append(event.fingerprint)

        event_bus.on(BrowserLaunchedEvent, on_launched)
        pool = InstancePool(playwright=fake_playwright, event_bus=event_bus)
        config = LaunchConfig()

        await pool.acquire(config=config)
        await pool.acquire(config=config)

        assert seen == [config.fingerprint()]


class TestAttach:
    """Tests for attaching to a browser that listens on a debugging port."""

    async def test_reuses_first_context_and_page(self, pool, fake_playwright, devtools_endpoint):
        page = make_page("https://console.example.com")
        context = make_context(pages=[page, make_page()])
        browser = make_browser(contexts=[context, make_context()])
        fake_playwright.chromium.connect_over_cdp.side_effect = None
        fake_playwright.chromium.connect_over_cdp.return_value = browser

        attached = await pool.attach(debug_port=9333, host="127.0.0.1")

        assert attached.browser is browser
        assert attached.context is context
        assert attached.page is page
        assert attached.reused_context and attached.reused_page
        assert attached.endpoint == "http://127.0.0.1:9333"
        assert devtools_endpoint["requests"] == ["http://127.0.0.1:9333/json/version"]
        fake_playwright.chromium.connect_over_cdp.assert_awaited_once_with("http://127.0.0.1:9333")
        browser.new_context.assert_not_awaited()

    async def test_creates_context_and_page_when_absent(self, pool, fake_playwright, devtools_endpoint):
        browser = make_browser(contexts=[])
        fake_playwright.chromium.connect_over_cdp.side_effect = None
        fake_playwright.chromium.connect_over_cdp.return_value = browser

        attached = await pool.attach(debug_port=9222, host="localhost")

        browser.new_context.assert_awaited_once()
        assert attached.reused_context is False
        assert attached.reused_page is False

    async def test_second_attach_reuses_connection(self, pool, fake_playwright, devtools_endpoint):
        first = await pool.attach(debug_port=9222, host="localhost")
        second = await pool.attach(debug_port=9222, host="localhost")

        assert first.browser is second.browser
        assert pool.fingerprints() == [attach_fingerprint("localhost", 9222)]
        assert fake_playwright.chromium.connect_over_cdp.await_count == 1
        assert len(devtools_endpoint["requests"]) == 1

    async def test_unreachable_endpoint_raises(self, pool, fake_playwright, devtools_endpoint):
        devtools_endpoint["error"] = httpx.ConnectError("Connection refused")

        with pytest.raises(BrowserConnectionError) as exc_info:
            await pool.attach(debug_port=9333, host="localhost")

        error = exc_info.value
        assert error.port == 9333
        assert error.endpoint == "http://localhost:9333"
        assert "--remote-debugging-port=9333" in str(error)
        fake_playwright.chromium.connect_over_cdp.assert_not_awaited()

    async def test_non_200_version_response_raises(self, pool, devtools_endpoint):
        devtools_endpoint["status"] = 500

        with pytest.raises(BrowserConnectionError, match="HTTP 500"):
            await pool.attach(debug_port=9222, host="localhost")

    async def test_cdp_connect_failure_raises(self, pool, fake_playwright, devtools_endpoint):
        fake_playwright.chromium.connect_over_cdp.side_effect = PlaywrightError("WebSocket error")

        with pytest.raises(BrowserConnectionError, match="--remote-debugging-port=9222"):
            await pool.attach(debug_port=9222, host="localhost")
        assert pool.size == 0


class TestRelease:
    """Tests for best-effort bulk cleanup."""

    async def test_release_all_on_empty_pool(self, pool):
        assert await pool.release_all() == 0
        assert pool.size == 0

    async def test_release_all_swallows_close_errors(self, pool):
        first = await pool.acquire(config=LaunchConfig(headless=True))
        second = await pool.acquire(config=LaunchConfig(headless=False))
        third = await pool.acquire(config=LaunchConfig(args=["--mute-audio"]))
        second.close.side_effect = RuntimeError("Target closed")

        closed = await pool.release_all()

        assert closed == 2
        assert pool.size == 0
        first.close.assert_awaited_once()
        third.close.assert_awaited_once()

    async def test_release_all_skips_disconnected(self, pool):
        browser = await pool.acquire(config=LaunchConfig())
        browser.is_connected.return_value = False

        assert await pool.release_all() == 0
        browser.close.assert_not_awaited()
        assert pool.size == 0

    async def test_release_emits_counts(self, fake_playwright, event_bus):
        seen = []

        async def on_released(event: BrowserReleasedEvent):
            seen.append((event.closed, event.failed))

        event_bus.on(BrowserReleasedEvent, on_released)
        pool = InstancePool(playwright=fake_playwright, event_bus=event_bus)
        browser = await pool.acquire(config=LaunchConfig())
        browser.close.side_effect = RuntimeError("boom")

        await pool.release_all()

        assert seen == [(0, 1)]

    async def test_shutdown_leaves_injected_driver_running(self, pool, fake_playwright):
        await pool.acquire(config=LaunchConfig())

        await pool.shutdown()

        assert pool.size == 0
        fake_playwright.stop.assert_not_awaited()

    async def test_shutdown_stops_owned_driver(self, fake_playwright):
        pool = InstancePool()
        pool._playwright = fake_playwright

        await pool.shutdown()

        fake_playwright.stop.assert_awaited_once()
        assert pool._playwright is None


class FakeProcess:
    def __init__(self, returncode=None):
        self.pid = 4242
        self.returncode = returncode
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True


@pytest.fixture()
def popen(monkeypatch):
    """Capture browser process launches instead of starting them."""
    calls = {"args": None, "kwargs": None, "process": FakeProcess()}

    def fake_popen(args, **kwargs):
        calls["args"] = args
        calls["kwargs"] = kwargs
        return calls["process"]

    monkeypatch.setattr(pool_module.subprocess, "Popen", fake_popen)
    return calls


class TestSpawn:
    """Tests for detached debug-port browsers."""

    async def test_spawn_starts_detached_debug_browser(self, pool, popen, devtools_endpoint, tmp_path):
        config = LaunchConfig(headless=True, no_sandbox=True, executable_path="/opt/chrome/chrome")

        spawned = await pool.spawn(config, debug_port=9333, host="localhost", user_data_dir=str(tmp_path))

        args = popen["args"]
        assert args[0] == "/opt/chrome/chrome"
        assert "--remote-debugging-port=9333" in args
        assert f"--user-data-dir={tmp_path}" in args
        assert "--no-sandbox" in args
        assert args[-1] == "--headless=new"
        assert popen["kwargs"]["start_new_session"] is True
        assert spawned.pid == 4242
        assert spawned.endpoint == "http://localhost:9333"
        assert devtools_endpoint["requests"] == ["http://localhost:9333/json/version"]

    async def test_spawn_defaults_to_driver_chromium(self, pool, fake_playwright, popen, devtools_endpoint, tmp_path):
        fake_playwright.chromium.executable_path = "/ms-playwright/chromium/chrome"

        spawned = await pool.spawn(LaunchConfig(headless=False), user_data_dir=str(tmp_path))

        assert popen["args"][0] == "/ms-playwright/chromium/chrome"
        assert "--headless=new" not in popen["args"]
        assert spawned.executable_path == "/ms-playwright/chromium/chrome"

    async def test_spawn_reports_early_exit(self, pool, popen, devtools_endpoint, tmp_path):
        popen["process"] = FakeProcess(returncode=1)
        devtools_endpoint["error"] = httpx.ConnectError("connection refused")

        with pytest.raises(BrowserConnectionError, match="exited with code 1"):
            await pool.spawn(LaunchConfig(executable_path="/bin/chrome"), user_data_dir=str(tmp_path))

    async def test_spawn_timeout_terminates_process(self, pool, popen, devtools_endpoint, tmp_path):
        devtools_endpoint["error"] = httpx.ConnectError("connection refused")

        with pytest.raises(BrowserConnectionError, match="did not open"):
            await pool.spawn(
                LaunchConfig(executable_path="/bin/chrome"),
                debug_port=9444,
                user_data_dir=str(tmp_path),
                ready_timeout_ms=0,
            )
        assert popen["process"].terminated is True

    async def test_spawn_missing_executable(self, pool, monkeypatch, tmp_path):
        def missing(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(pool_module.subprocess, "Popen", missing)

        with pytest.raises(BrowserConnectionError, match="Failed to launch browser"):
            await pool.spawn(LaunchConfig(executable_path="/nowhere/chrome"), user_data_dir=str(tmp_path))


class TestTerminate:
    """Tests for stopping a browser reached over its debugging port."""

    async def test_terminate_sends_browser_close(self, pool, fake_playwright, devtools_endpoint):
        session = MagicMock()
        session.send = AsyncMock()
        browser = make_browser(contexts=[make_context([make_page()])])
        browser.new_browser_cdp_session = AsyncMock(return_value=session)
        fake_playwright.chromium.connect_over_cdp.side_effect = None
        fake_playwright.chromium.connect_over_cdp.return_value = browser

        assert await pool.terminate(debug_port=9222, host="localhost") is True

        session.send.assert_awaited_once_with("Browser.close")
        assert attach_fingerprint("localhost", 9222) not in pool.fingerprints()

    async def test_terminate_tolerates_dropped_connection(self, pool, fake_playwright, devtools_endpoint):
        session = MagicMock()
        session.send = AsyncMock(side_effect=PlaywrightError("Target closed"))
        browser = make_browser(contexts=[make_context([make_page()])])
        browser.new_browser_cdp_session = AsyncMock(return_value=session)
        fake_playwright.chromium.connect_over_cdp.side_effect = None
        fake_playwright.chromium.connect_over_cdp.return_value = browser

        assert await pool.terminate(debug_port=9222, host="localhost") is True

    async def test_terminate_without_browser(self, pool, fake_playwright, devtools_endpoint):
        devtools_endpoint["error"] = httpx.ConnectError("connection refused")

        assert await pool.terminate(debug_port=9222, host="localhost") is False
        fake_playwright.chromium.connect_over_cdp.assert_not_awaited()
