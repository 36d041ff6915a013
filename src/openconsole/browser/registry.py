"""Session registry holding the single active browser session.

The registry is the authority on the lifetime of the browser handle installed
into it. It holds at most one session: installing a new browser closes and
discards the previous one together with its cached pages.

Every read of the session is also a liveness check. A handle that no longer
reports itself connected is dropped on the spot and the read returns ``None``.

Items are processed one at a time on a single event loop, so the registry takes
no lock. Running items in parallel would need either a lock around session
replacement or one registry per worker.
"""

import logging

from bubus import EventBus
from playwright.async_api import Browser, Page

from openconsole.browser.events import SessionClosedEvent, SessionInstalledEvent, emit
from openconsole.browser.profile import PageOptions
from openconsole.exceptions import SessionNotActiveError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_KEY = 'page'


class SessionRegistry:
    """Holds the current browser handle, its session id and named page handles."""

    def __init__(self, event_bus: EventBus | None = None):
        self._session_id: str | None = None
        self._browser: Browser | None = None
        self._pages: dict[str, Page] = {}
        self.event_bus = event_bus

    # --- Session ---

    async def set_session(self, session_id: str, browser: Browser) -> None:
        """Install ``browser`` as the current session under ``session_id``.

        An existing session backed by a different browser is torn down first
        (pages, then browser, best-effort). Installing the same browser again
        only renames the session; pages cached under the old name are closed
        and dropped.
        """
        previous_id = self._session_id

        if self._browser is browser:
            if previous_id != session_id:
                for page_key in list(self._pages):
                    await self.close_page(page_key)
            self._session_id = session_id
            logger.debug(f'Renamed session {previous_id} -> {session_id}')
        else:
            if self._browser is not None:
                logger.info(f'Replacing browser session {previous_id} with {session_id}')
                await self._teardown(reason='replaced')
            self._browser = browser
            self._session_id = session_id
            logger.debug(f'Installed browser session {session_id}')

        await emit(
            self.event_bus,
            SessionInstalledEvent(session_id=session_id, replaced_session_id=previous_id),
        )

    def get_session(self) -> Browser | None:
        """Return the current browser if it is still connected, self-healing otherwise."""
        if self._browser is None:
            return None
        if self._browser.is_connected():
            return self._browser

        logger.warning(f'Browser session {self._session_id} is no longer connected, discarding it')
        self._browser = None
        self._session_id = None
        self._pages.clear()
        return None

    @property
    def session_id(self) -> str | None:
        return self._session_id if self.get_session() is not None else None

    def get_session_id(self) -> str | None:
        return self.session_id

    def is_session_active(self, session_id: str | None = None) -> bool:
        if self.get_session() is None:
            return False
        return session_id is None or session_id == self._session_id

    def active_sessions(self) -> list[str]:
        current = self.session_id
        return [current] if current is not None else []

    def cleanup_disconnected(self) -> bool:
        """Drop the session if its browser disconnected. Returns whether anything was dropped."""
        had_session = self._browser is not None
        return had_session and self.get_session() is None

    # --- Pages ---

    async def get_or_create_page(
        self,
        page_key: str = DEFAULT_PAGE_KEY,
        reuse: bool = False,
        options: PageOptions | None = None,
    ) -> Page:
        """Return a page for ``page_key`` on the current session.

        With ``reuse`` the cached page is returned while it is still open, and
        a newly opened page is cached under ``page_key``. Without it a fresh
        page is opened on every call and the caller owns closing it.

        Raises:
            SessionNotActiveError: If no live session is installed.
        """
        browser = self.get_session()
        if browser is None:
            raise SessionNotActiveError('No active browser session. Launch or attach a browser first.')

        if reuse:
            cached = self._pages.get(page_key)
            if cached is not None and not cached.is_closed():
                logger.debug(f'Reusing page {page_key!r}')
                return cached
            self._pages.pop(page_key, None)

        options = options or PageOptions()
        page = await browser.new_page(**options.new_page_kwargs())
        options.apply(page)

        if reuse:
            self._pages[page_key] = page
        return page

    def register_page(self, page_key: str, page: Page) -> None:
        self._pages[page_key] = page

    def get_page(self, page_key: str = DEFAULT_PAGE_KEY) -> Page | None:
        page = self._pages.get(page_key)
        if page is None:
            return None
        if page.is_closed():
            del self._pages[page_key]
            return None
        return page

    async def close_page(self, page_key: str) -> bool:
        page = self._pages.pop(page_key, None)
        if page is None:
            return False
        try:
            if not page.is_closed():
                await page.close()
        except Exception as e:
            logger.debug(f'Ignoring close error for page {page_key!r}: {type(e).__name__}: {e}')
        return True

    # --- Teardown ---

    async def close_session(self, session_id: str | None = None) -> bool:
        """Close the current session.

        Args:
            session_id: When given, only a session with this id is closed.

        Returns:
            Whether a browser was present to close. ``False`` when ``session_id``
            names a session that is not the current one.
        """
        if session_id is not None and session_id != self._session_id:
            logger.debug(f'Session {session_id} is not the current session, nothing to close')
            return False
        return await self._teardown(reason='closed')

    async def close_all(self) -> int:
        """Close the current session, if any. Returns 0 or 1."""
        return 1 if await self.close_session() else 0

    async def _teardown(self, reason: str) -> bool:
        session_id = self._session_id
        browser = self._browser
        pages = list(self._pages.items())

        try:
            for key, page in pages:
                try:
                    if not page.is_closed():
                        await page.close()
                except Exception as e:
                    logger.debug(f'Ignoring close error for page {key!r}: {type(e).__name__}: {e}')

            if browser is not None:
                try:
                    if browser.is_connected():
                        await browser.close()
                except Exception as e:
                    logger.debug(f'Ignoring close error for session {session_id}: {type(e).__name__}: {e}')
        finally:
            self._session_id = None
            self._browser = None
            self._pages.clear()

        if browser is None:
            return False

        logger.info(f'Browser session {session_id} {reason}')
        await emit(self.event_bus, SessionClosedEvent(session_id=session_id, reason=reason))
        return True
