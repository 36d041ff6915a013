"""Post-login navigation through the console.

Navigation steps are strict: a failed ``goto`` or a missing extraction table
raises. Popup dismissal is the exception. The console may or may not show an
announcement popup after login, so that block is attempted, its outcome
observed, and any failure discarded.
"""

import logging

from bubus import EventBus
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel

from openconsole.browser.events import PopupDismissalEvent, emit
from openconsole.config import CONFIG
from openconsole.exceptions import ElementNotFoundError, NavigationError, StepTimeoutError

logger = logging.getLogger(__name__)

POPUP_CHECKBOX_SELECTOR = (
    'input[type="checkbox"][name="notShowAgain"], input[type="checkbox"][id*="notShow"], '
    '.popup-checkbox, .modal-checkbox'
)

# Order matters: the first candidate present on the page is clicked
POPUP_BUTTON_SELECTORS = (
    'button:has-text("확인")',
    'button:has-text("OK")',
    'button:has-text("닫기")',
    'button:has-text("Close")',
    '.popup-close-button',
    '.modal-close-button',
    'button[type="submit"]',
)

POPUP_CONTAINER_SELECTOR = '.popup, .modal, .overlay'
POPUP_GONE_TIMEOUT_MS = 10000

EXTRACTION_PAGE_SELECTOR = 'table, .data-table, .vpc-list'
EXTRACTION_PAGE_TIMEOUT_MS = 10000

VPC_LINK_SELECTORS = (
    'a:has-text("VPC")',
    'a[href*="vpc"]',
    '.nav-item:has-text("VPC")',
    '.menu-item:has-text("VPC")',
)

_POPUP_GONE_JS = """(selector) => {
    const popup = document.querySelector(selector);
    return !popup || popup.style.display === 'none';
}"""


class BestEffortOutcome(BaseModel):
    """Result of a step whose failure does not fail the workflow."""

    attempted: bool = False
    observed: bool = False
    discarded: bool = False
    detail: str | None = None


class ConsoleNavigator:
    """Sequences the page transitions that follow a successful login."""

    def __init__(
        self,
        page: Page,
        event_bus: EventBus | None = None,
        navigation_timeout_ms: float | None = None,
    ):
        self.page = page
        self.event_bus = event_bus
        self.navigation_timeout_ms = (
            navigation_timeout_ms if navigation_timeout_ms is not None else CONFIG.NAVIGATION_TIMEOUT_MS
        )

    async def _goto(self, url: str, step: str) -> None:
        try:
            await self.page.goto(url, wait_until='networkidle', timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError(f'Navigation to {url} did not settle', step=step, timeout_ms=self.navigation_timeout_ms) from e
        except PlaywrightError as e:
            raise NavigationError(f'Navigation to {url} failed: {e}', step=step) from e

    async def navigate_to_console(self, url: str, popup_timeout_ms: float | None = None) -> BestEffortOutcome:
        """Open the console page and dismiss the announcement popup if one shows up."""
        logger.info('Navigating to console page...')
        await self._goto(url, step='navigate_to_console')
        return await self.dismiss_popup(popup_timeout_ms)

    async def dismiss_popup(self, popup_timeout_ms: float | None = None) -> BestEffortOutcome:
        """Tick "do not show again", click the first close button and wait for the popup to go away.

        Never raises for driver failures: they are recorded on the returned
        outcome and logged at debug level.
        """
        timeout = popup_timeout_ms if popup_timeout_ms is not None else CONFIG.POPUP_TIMEOUT_MS
        outcome = BestEffortOutcome(attempted=True)

        try:
            await self.page.wait_for_selector(POPUP_CHECKBOX_SELECTOR, timeout=timeout)
            outcome.observed = True
            await self.page.click(POPUP_CHECKBOX_SELECTOR)

            clicked = await self._click_first_existing(POPUP_BUTTON_SELECTORS)
            await self.page.wait_for_function(_POPUP_GONE_JS, arg=POPUP_CONTAINER_SELECTOR, timeout=POPUP_GONE_TIMEOUT_MS)

            outcome.detail = f'closed via {clicked}' if clicked else 'no close button found'
            logger.info('Popup dismissed')
        except PlaywrightError as e:
            outcome.discarded = True
            outcome.detail = f'{type(e).__name__}: {e}'
            logger.debug(f'No popup found or already dismissed: {e}')

        await emit(
            self.event_bus,
            PopupDismissalEvent(
                attempted=outcome.attempted,
                observed=outcome.observed,
                discarded=outcome.discarded,
                detail=outcome.detail,
            ),
        )
        return outcome

    async def _click_first_existing(self, selectors: tuple[str, ...]) -> str | None:
        for selector in selectors:
            element = await self.page.query_selector(selector)
            if element:
                await element.click()
                return selector
        return None

    async def navigate_to_extraction_page(self, url: str, timeout_ms: float | None = None) -> None:
        """Open the extraction page and wait for its data container."""
        timeout = timeout_ms if timeout_ms is not None else EXTRACTION_PAGE_TIMEOUT_MS
        logger.info('Navigating to extraction page...')
        await self._goto(url, step='navigate_to_extraction_page')
        try:
            await self.page.wait_for_selector(EXTRACTION_PAGE_SELECTOR, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise ElementNotFoundError(
                'Extraction page has no data container',
                step='navigate_to_extraction_page',
                timeout_ms=timeout,
                selector=EXTRACTION_PAGE_SELECTOR,
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f'Waiting for the data container failed: {e}', step='navigate_to_extraction_page') from e

    async def navigate_to_vpc_page(self) -> str | None:
        """Follow the first VPC navigation link found. Returns its selector, or ``None`` if there is none."""
        try:
            clicked = await self._click_first_existing(VPC_LINK_SELECTORS)
            if clicked is None:
                logger.debug('No VPC navigation link found')
                return None
            await self.page.wait_for_load_state('networkidle', timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError(
                'VPC page did not settle', step='navigate_to_vpc_page', timeout_ms=self.navigation_timeout_ms
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f'VPC navigation failed: {e}', step='navigate_to_vpc_page') from e
        return clicked

    async def wait_for_page_ready(self, timeout_ms: float | None = None) -> None:
        timeout = timeout_ms if timeout_ms is not None else self.navigation_timeout_ms
        try:
            await self.page.wait_for_load_state('networkidle', timeout=timeout)
            await self.page.wait_for_load_state('domcontentloaded', timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError('Page did not become ready', step='wait_for_page_ready', timeout_ms=timeout) from e
