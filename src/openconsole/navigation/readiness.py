"""Readiness waits run before a data table is read."""

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from openconsole.config import CONFIG
from openconsole.navigation.polling import DEFAULT_POLL_INTERVAL_MS, poll_until

logger = logging.getLogger(__name__)

LOADING_INDICATOR_SELECTOR = '.loading, .spinner, .loader'

_COUNT_MATCHES_JS = '(selector) => document.querySelectorAll(selector).length'

_FIRST_TABLE_ROWS_JS = """() => {
    const table = document.querySelector('table');
    return table ? table.querySelectorAll('tr').length : 0;
}"""


class ReadinessWaiter:
    """Waits for loading indicators to clear and the first table to fill."""

    def __init__(self, page: Page, interval_ms: float = DEFAULT_POLL_INTERVAL_MS):
        self.page = page
        self.interval_ms = interval_ms

    async def wait_for_data_load(self, timeout_ms: float | None = None) -> None:
        """Block until the page shows data.

        Two phases, each bounded by ``timeout_ms``: no element matches the
        loading indicator selector, then the first table has more than one row
        (a header row alone does not count).

        Raises:
            StepTimeoutError: If either phase does not complete in time.
        """
        timeout = timeout_ms if timeout_ms is not None else CONFIG.DATA_TIMEOUT_MS

        await poll_until(
            self._loading_cleared,
            timeout,
            interval_ms=self.interval_ms,
            step='wait_for_data_load',
            selector=LOADING_INDICATOR_SELECTOR,
            message='Loading indicators are still present',
        )
        await poll_until(
            self._table_has_data,
            timeout,
            interval_ms=self.interval_ms,
            step='wait_for_data_load',
            selector='table tr',
            message='Data table has no rows',
        )
        logger.debug('Data load complete')

    async def _loading_cleared(self) -> bool:
        try:
            count = await self.page.evaluate(_COUNT_MATCHES_JS, LOADING_INDICATOR_SELECTOR)
        except PlaywrightError as e:
            # document replaced mid-evaluation; check again on the next tick
            logger.debug(f'Loading indicator check failed: {e}')
            return False
        return count == 0

    async def _table_has_data(self) -> bool:
        try:
            rows = await self.page.evaluate(_FIRST_TABLE_ROWS_JS)
        except PlaywrightError as e:
            logger.debug(f'Table row check failed: {e}')
            return False
        return rows > 1
