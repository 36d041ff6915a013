"""Instance pool for launching and reattaching to browser processes.

The pool caches one Playwright ``Browser`` per configuration fingerprint. A
cached handle that still reports itself connected is handed out unchanged; a
disconnected one is dropped and replaced by a fresh launch.

Two acquisition modes exist:

- ``acquire`` cold-launches a browser from a ``LaunchConfig``.
- ``attach`` connects over CDP to a browser an operator already started with
  ``--remote-debugging-port`` and reuses its first context and first page. This
  is how a visible browser is shared with a human entering a second factor.

Example:
    >>> pool = InstancePool()
    >>> browser = await pool.acquire(config=LaunchConfig(headless=True))
    >>> attached = await pool.attach(debug_port=9222)
    >>> await pool.shutdown()
"""

import asyncio
import logging
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import Any

import httpx
from bubus import EventBus
from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from openconsole.browser.events import (
    BrowserAttachedEvent,
    BrowserLaunchedEvent,
    BrowserReleasedEvent,
    emit,
)
from openconsole.browser.profile import LaunchConfig
from openconsole.config import CONFIG
from openconsole.exceptions import BrowserConnectionError

logger = logging.getLogger(__name__)

DEBUG_BROWSER_READY_TIMEOUT_MS = 20000
DEBUG_BROWSER_POLL_INTERVAL_MS = 250


def attach_fingerprint(host: str, port: int) -> str:
    return f'cdp-{host}:{port}'


@dataclass
class AttachedBrowser:
    """A browser reached over its debugging endpoint, with the context and page to drive."""

    browser: Browser
    context: BrowserContext
    page: Page
    endpoint: str
    reused_context: bool = False
    reused_page: bool = False


@dataclass
class SpawnedBrowser:
    """A detached browser process listening on a remote debugging port."""

    pid: int
    endpoint: str
    port: int
    user_data_dir: str
    executable_path: str


class InstancePool:
    """Pool of browser handles keyed by configuration fingerprint.

    Attributes:
        launch_count: Number of successful launches or attaches performed.
        event_bus: Optional bus receiving launch/attach/release events.
    """

    def __init__(
        self,
        playwright: Any = None,
        event_bus: EventBus | None = None,
        probe_timeout_ms: float = 2000,
    ):
        """Initialize the pool.

        Args:
            playwright: A started Playwright instance. When omitted the pool
                starts its own driver on first use and stops it in ``shutdown``.
            event_bus: Optional bubus bus for lifecycle events.
            probe_timeout_ms: Timeout of the HTTP probe run before attaching.
        """
        self._playwright = playwright
        self._owns_playwright = playwright is None
        self._instances: dict[str, Browser] = {}
        self.event_bus = event_bus
        self.probe_timeout_ms = probe_timeout_ms
        self.launch_count = 0

    @property
    def size(self) -> int:
        return len(self._instances)

    def fingerprints(self) -> list[str]:
        return list(self._instances)

    async def get_playwright(self) -> Any:
        """The Playwright driver, started on first use when none was injected."""
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    def _cached(self, fingerprint: str) -> Browser | None:
        browser = self._instances.get(fingerprint)
        if browser is None:
            return None
        if browser.is_connected():
            return browser
        logger.debug(f'Discarding disconnected browser cached under {fingerprint}')
        del self._instances[fingerprint]
        return None

    async def acquire(self, fingerprint: str | None = None, config: LaunchConfig | None = None) -> Browser:
        """Return a connected browser for ``fingerprint``, launching one if needed.

        Args:
            fingerprint: Cache key. Defaults to ``config.fingerprint()``.
            config: Launch options used when a launch is required.

        Returns:
            The cached browser when it is still connected, otherwise a new one.

        Raises:
            BrowserConnectionError: If the launch fails.
        """
        config = config or LaunchConfig()
        key = fingerprint or config.fingerprint()

        cached = self._cached(key)
        if cached is not None:
            logger.debug(f'Reusing pooled browser {key}')
            return cached

        browser = await self._launch(config)
        self._instances[key] = browser
        self.launch_count += 1
        logger.info(f'Launched {config.browser_type} browser (headless={config.headless})')
        await emit(self.event_bus, BrowserLaunchedEvent(fingerprint=key))
        return browser

    async def _launch(self, config: LaunchConfig) -> Browser:
        playwright = await self.get_playwright()
        browser_type = getattr(playwright, config.browser_type)
        try:
            return await browser_type.launch(**config.launch_kwargs())
        except PlaywrightError as e:
            target = config.executable_path or config.browser_type
            raise BrowserConnectionError(f'Failed to launch browser: {e}', endpoint=target) from e

    async def attach(self, debug_port: int | None = None, host: str | None = None) -> AttachedBrowser:
        """Attach to a browser listening on a remote debugging port.

        Reuses the first existing browsing context and its first page; creates
        them only when the browser has none.

        Raises:
            BrowserConnectionError: If nothing answers on the endpoint or the
                CDP connection fails.
        """
        port = debug_port or CONFIG.DEBUG_PORT
        host = host or CONFIG.DEBUG_HOST
        endpoint = f'http://{host}:{port}'
        key = attach_fingerprint(host, port)

        browser = self._cached(key)
        if browser is None:
            logger.info(f'Connecting to debug browser on port {port}...')
            await self._probe_endpoint(endpoint, port)
            playwright = await self.get_playwright()
            try:
                browser = await playwright.chromium.connect_over_cdp(endpoint)
            except PlaywrightError as e:
                raise BrowserConnectionError(_attach_failure_message(port), endpoint=endpoint, port=port) from e
            self._instances[key] = browser
            self.launch_count += 1
            logger.info('Successfully connected to debug browser')
        else:
            logger.debug(f'Reusing attached browser at {endpoint}')

        contexts = browser.contexts
        reused_context = bool(contexts)
        context = contexts[0] if contexts else await browser.new_context()
        pages = context.pages
        reused_page = bool(pages)
        page = pages[0] if pages else await context.new_page()

        await emit(
            self.event_bus,
            BrowserAttachedEvent(endpoint=endpoint, reused_context=reused_context, reused_page=reused_page),
        )
        return AttachedBrowser(
            browser=browser,
            context=context,
            page=page,
            endpoint=endpoint,
            reused_context=reused_context,
            reused_page=reused_page,
        )

    async def spawn(
        self,
        config: LaunchConfig | None = None,
        debug_port: int | None = None,
        host: str | None = None,
        user_data_dir: str | None = None,
        ready_timeout_ms: float = DEBUG_BROWSER_READY_TIMEOUT_MS,
    ) -> SpawnedBrowser:
        """Start a detached browser that listens on a remote debugging port.

        The process runs in its own session and outlives this pool and the
        calling interpreter. Later processes reach it with ``attach`` and stop
        it with ``terminate``.

        Raises:
            BrowserConnectionError: If the process cannot start, exits early, or
                its debugging port does not answer within ``ready_timeout_ms``.
        """
        config = config or LaunchConfig()
        port = debug_port or CONFIG.DEBUG_PORT
        host = host or CONFIG.DEBUG_HOST
        endpoint = f'http://{host}:{port}'

        executable = config.executable_path
        if not executable:
            playwright = await self.get_playwright()
            executable = playwright.chromium.executable_path
        user_data_dir = user_data_dir or tempfile.mkdtemp(prefix='openconsole_chrome_')

        launch_args = [
            executable,
            f'--remote-debugging-port={port}',
            f'--user-data-dir={user_data_dir}',
            '--no-first-run',
            '--no-default-browser-check',
            *config.get_args(),
        ]
        if config.headless:
            launch_args.append('--headless=new')

        logger.info(f'Starting browser on port {port} using {executable}')
        try:
            process = subprocess.Popen(
                launch_args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise BrowserConnectionError(f'Failed to launch browser: {e}', endpoint=executable) from e

        deadline = time.monotonic() + ready_timeout_ms / 1000
        while True:
            try:
                await self._probe_endpoint(endpoint, port)
                break
            except BrowserConnectionError:
                if process.poll() is not None:
                    raise BrowserConnectionError(
                        f'Browser exited with code {process.returncode} before port {port} opened',
                        endpoint=endpoint,
                        port=port,
                    )
                if time.monotonic() >= deadline:
                    process.terminate()
                    raise BrowserConnectionError(
                        f'Debugging port {port} did not open within {ready_timeout_ms:g}ms',
                        endpoint=endpoint,
                        port=port,
                    )
                await asyncio.sleep(DEBUG_BROWSER_POLL_INTERVAL_MS / 1000)

        logger.info(f'Browser (PID {process.pid}) is listening on {endpoint}')
        return SpawnedBrowser(
            pid=process.pid,
            endpoint=endpoint,
            port=port,
            user_data_dir=user_data_dir,
            executable_path=executable,
        )

    async def terminate(self, debug_port: int | None = None, host: str | None = None) -> bool:
        """Stop the browser process listening on a debugging port.

        ``Browser.close`` only disconnects from a browser reached over CDP, so
        the process is asked to exit with the ``Browser.close`` protocol command.

        Returns:
            ``False`` when nothing answers on the endpoint.
        """
        port = debug_port or CONFIG.DEBUG_PORT
        host = host or CONFIG.DEBUG_HOST
        try:
            attached = await self.attach(debug_port=port, host=host)
        except BrowserConnectionError as e:
            logger.info(f'No browser to close: {e}')
            return False

        session = await attached.browser.new_browser_cdp_session()
        try:
            await session.send('Browser.close')
        except PlaywrightError as e:
            # the connection drops once the process exits
            logger.debug(f'Connection closed while stopping browser: {e}')
        self._instances.pop(attach_fingerprint(host, port), None)
        logger.info(f'Closed browser on {attached.endpoint}')
        return True

    async def _probe_endpoint(self, endpoint: str, port: int) -> dict[str, Any]:
        """Check that a DevTools endpoint answers ``/json/version``."""
        version_url = f'{endpoint}/json/version'
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout_ms / 1000) as client:
                response = await client.get(version_url)
        except httpx.HTTPError as e:
            raise BrowserConnectionError(_attach_failure_message(port), endpoint=endpoint, port=port) from e

        if response.status_code != 200:
            raise BrowserConnectionError(
                f'{_attach_failure_message(port)} (HTTP {response.status_code} from {version_url})',
                endpoint=endpoint,
                port=port,
            )
        return response.json()

    async def release_all(self) -> int:
        """Close every pooled handle that is still connected, then empty the pool.

        Close failures are logged and skipped so every handle gets its turn.

        Returns:
            Number of handles closed successfully.
        """
        closed = 0
        failed = 0
        try:
            for key, browser in list(self._instances.items()):
                try:
                    if browser.is_connected():
                        await browser.close()
                        closed += 1
                except Exception as e:
                    failed += 1
                    logger.debug(f'Ignoring close error for pooled browser {key}: {type(e).__name__}: {e}')
        finally:
            self._instances.clear()

        if closed or failed:
            logger.debug(f'Released pool: {closed} closed, {failed} failed')
        await emit(self.event_bus, BrowserReleasedEvent(closed=closed, failed=failed))
        return closed

    async def shutdown(self) -> None:
        """Release all handles and stop the Playwright driver if the pool started it."""
        try:
            await self.release_all()
        finally:
            if self._owns_playwright and self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug(f'Ignoring Playwright stop error: {e}')
                self._playwright = None


def _attach_failure_message(port: int) -> str:
    return (
        f'Failed to connect to debug browser on port {port}. '
        f'Make sure Chrome is running with --remote-debugging-port={port}'
    )
