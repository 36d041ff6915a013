"""Table scraping for the console's list pages and detail modals."""

import asyncio
import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from openconsole.config import CONFIG
from openconsole.exceptions import ElementNotFoundError, NavigationError, OpenConsoleError

logger = logging.getLogger(__name__)

DATA_CONTAINER_SELECTOR = 'table, .data-table, .vpc-list'

MODAL_ROW_SELECTOR = '#app > div > div.ph-30.page-body > div.scroll-tbl > div.tbody > table > tbody:nth-child({n})'
MODAL_DETAIL_BUTTON_SELECTOR = '#app > div > div.ph-30.page-body > div.sticky-holder > div > div > div > button:nth-child(2)'
MODAL_CONTENT_SELECTOR = '.modal-content'
MODAL_TABLE_SELECTOR = '.modal-body > .box > .scrool-tbl > div.tbody > .mCustomScrollBox > div > table'
MODAL_TABLE_FALLBACK_SELECTOR = 'div.tbody'
MODAL_CLOSE_SELECTOR = '.modal-content > .modal-body > button.btn-wrap.justify-content-center > button.btn.btn-lg.line-2'
MODAL_TIMEOUT_MS = 5000

# Header words that identify the main list table
_TABLE_HINTS = ('name', 'vpc', 'status')

_READ_TABLE_JS = """([selector, hints]) => {
    let table = null;
    if (selector) {
        table = document.querySelector(selector);
    } else {
        const tables = Array.from(document.querySelectorAll('table'));
        table = tables.find((t) => {
            const headers = Array.from(t.querySelectorAll('th, .header-cell'));
            return headers.some((h) => {
                const text = (h.textContent || '').toLowerCase();
                return hints.some((hint) => text.includes(hint));
            });
        }) || tables[0] || null;
    }
    if (!table) {
        return null;
    }
    const headerRow = table.querySelector('thead tr') || table.querySelector('tr');
    const headers = headerRow
        ? Array.from(headerRow.querySelectorAll('th, td')).map((c) => (c.textContent || '').trim())
        : [];
    const rows = Array.from(table.querySelectorAll('tr'))
        .filter((r) => r !== headerRow)
        .map((r) => Array.from(r.querySelectorAll('td')).map((c) => (c.textContent || '').trim()))
        .filter((cells) => cells.length > 0);
    return { headers, rows };
}"""

_READ_MATCHES_JS = """(selector) => Array.from(document.querySelectorAll(selector)).map((el, i) => ({
    index: i + 1,
    text: (el.textContent || '').trim(),
    html: el.innerHTML,
    attributes: Object.fromEntries(Array.from(el.attributes).map((a) => [a.name, a.value])),
}))"""

_READ_MODAL_JS = """([contentSelector, tableSelector, fallbackSelector]) => {
    const modal = document.querySelector(contentSelector);
    if (!modal) {
        return [];
    }
    const body = modal.querySelector(tableSelector) || modal.querySelector(fallbackSelector);
    if (!body) {
        return [];
    }
    return Array.from(body.querySelectorAll('tr')).map((r) =>
        Array.from(r.querySelectorAll('td')).map((c) => (c.textContent || '').trim())
    );
}"""


@contextmanager
def _driver_step(step: str, selector: str | None = None, timeout_ms: float | None = None) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as e:
        raise ElementNotFoundError(f'Timed out during {step}', step=step, timeout_ms=timeout_ms, selector=selector) from e
    except PlaywrightError as e:
        raise NavigationError(f'Driver error: {e}', step=step) from e


def header_key(header: str, index: int) -> str:
    """Map a column header to a lower_snake_case record key."""
    text = header.strip() or f'column_{index + 1}'
    return re.sub(r'\s+', '_', text.lower())


def rows_to_records(headers: list[str], rows: list[list[str]]) -> list[dict[str, Any]]:
    """Turn header texts and cell texts into row records.

    Each record has a 1-based ``row_index`` and a ``name`` taken from the first
    column, or from a column whose header mentions "name". Rows with neither a
    name nor any other column are dropped.
    """
    records: list[dict[str, Any]] = []
    for row_index, cells in enumerate(rows, start=1):
        record: dict[str, Any] = {'name': '', 'row_index': row_index}
        for cell_index, text in enumerate(cells):
            header = headers[cell_index] if cell_index < len(headers) else ''
            if cell_index == 0 or 'name' in header.lower():
                record['name'] = text
            record[header_key(header, cell_index)] = text
        if record['name'] or len(record) > 2:
            records.append(record)
    return records


class TableExtractor:
    """Reads tables and modal detail views from a console page."""

    def __init__(
        self,
        page: Page,
        element_timeout_ms: float | None = None,
        navigation_timeout_ms: float | None = None,
    ):
        self.page = page
        self.element_timeout_ms = element_timeout_ms if element_timeout_ms is not None else CONFIG.DATA_TIMEOUT_MS
        self.navigation_timeout_ms = (
            navigation_timeout_ms if navigation_timeout_ms is not None else CONFIG.NAVIGATION_TIMEOUT_MS
        )

    async def _wait_for(self, selector: str, step: str) -> None:
        with _driver_step(step, selector, self.element_timeout_ms):
            await self.page.wait_for_selector(selector, timeout=self.element_timeout_ms)

    async def extract_table_rows(self, table_selector: str | None = None) -> list[dict[str, Any]]:
        """Extract the rows of ``table_selector``, or of the main list table when omitted.

        Raises:
            ElementNotFoundError: If no table appears in time.
            NavigationError: If the page holds no table at all.
        """
        logger.info('Starting table data extraction...')
        await self._wait_for(table_selector or DATA_CONTAINER_SELECTOR, step='extract_table_rows')

        with _driver_step('extract_table_rows', table_selector):
            table = await self.page.evaluate(_READ_TABLE_JS, [table_selector, list(_TABLE_HINTS)])
        if table is None:
            raise NavigationError(
                f'No data table found on the page (selector: {table_selector or "table"})',
                step='extract_table_rows',
            )

        records = rows_to_records(table['headers'], table['rows'])
        logger.info(f'Extracted {len(records)} table rows')
        return records

    async def extract_custom(self, selector: str) -> list[dict[str, Any]]:
        """Return text, inner HTML and attributes of every element matching ``selector``."""
        logger.info(f'Extracting custom data with selector: {selector}')
        await self._wait_for(selector, step='extract_custom')
        with _driver_step('extract_custom', selector):
            items = await self.page.evaluate(_READ_MATCHES_JS, selector)
        logger.info(f'Extracted {len(items)} custom data items')
        return items

    async def extract_modal_rows(self, row_number: int, return_url: str | None = None) -> list[dict[str, Any]]:
        """Open the detail modal of one list row and read its table.

        Selects the ``row_number``-th row group, opens the detail view, reads
        the modal rows and navigates back to ``return_url`` (defaults to the
        ``SSL_VPN_CONSOLE_URL`` environment variable).
        """
        row_selector = MODAL_ROW_SELECTOR.format(n=row_number)
        with _driver_step('open_detail_modal', row_selector, self.element_timeout_ms):
            await self.page.click(row_selector, timeout=self.element_timeout_ms)
        with _driver_step('open_detail_modal', MODAL_DETAIL_BUTTON_SELECTOR, self.element_timeout_ms):
            await self.page.click(MODAL_DETAIL_BUTTON_SELECTOR, timeout=self.element_timeout_ms)
        with _driver_step('open_detail_modal', MODAL_CONTENT_SELECTOR, MODAL_TIMEOUT_MS):
            await self.page.wait_for_selector(MODAL_CONTENT_SELECTOR, state='visible', timeout=MODAL_TIMEOUT_MS)

        with _driver_step('read_detail_modal', MODAL_TABLE_SELECTOR):
            rows = await self.page.evaluate(
                _READ_MODAL_JS,
                [MODAL_CONTENT_SELECTOR, MODAL_TABLE_SELECTOR, MODAL_TABLE_FALLBACK_SELECTOR],
            )
        records = [
            {'user_index': index, **{f'column_{i + 1}': text for i, text in enumerate(cells)}}
            for index, cells in enumerate(rows, start=1)
            if cells
        ]
        logger.info(f'Extracted {len(records)} detail rows from row group {row_number}')

        url = return_url or CONFIG.EXTRACTION_URL
        if url:
            logger.debug('Navigating back to the extraction page')
            with _driver_step('return_to_extraction_page', timeout_ms=self.navigation_timeout_ms):
                await self.page.goto(url, timeout=self.navigation_timeout_ms)
                await self.page.wait_for_load_state(timeout=self.navigation_timeout_ms)
        else:
            logger.warning('SSL_VPN_CONSOLE_URL is not set, staying on the detail view')
        return records

    async def extract_all_modal_rows(
        self,
        parents: list[dict[str, Any]],
        return_url: str | None = None,
        pause_ms: float = 1000,
    ) -> list[dict[str, Any]]:
        """Collect detail rows for every parent record from ``extract_table_rows``.

        A parent whose modal fails is logged and skipped after trying to close
        the modal, so one broken row does not lose the others.
        """
        collected: list[dict[str, Any]] = []
        for number, parent in enumerate(parents, start=1):
            row_group = parent['row_index'] + 1
            logger.info(f'Processing {number}/{len(parents)}: {parent.get("name")!r} (row group {row_group})')
            try:
                rows = await self.extract_modal_rows(row_group, return_url=return_url)
            except OpenConsoleError as e:
                logger.error(f'Failed to read detail view of {parent.get("name")!r}: {e}')
                await self._close_modal()
            else:
                collected.extend(
                    {
                        **row,
                        'vpn_number': number,
                        'vpn_name': parent.get('name', ''),
                        'vpn_row_index': parent['row_index'],
                        'vpn_tbody_child': row_group,
                    }
                    for row in rows
                )
            await asyncio.sleep(pause_ms / 1000)

        logger.info(f'Extracted {len(collected)} detail rows from {len(parents)} parents')
        return collected

    async def _close_modal(self) -> None:
        try:
            await self.page.click(MODAL_CLOSE_SELECTOR, timeout=MODAL_TIMEOUT_MS)
        except PlaywrightError:
            logger.debug('Modal close button not found, pressing Escape')
            try:
                await self.page.keyboard.press('Escape')
            except PlaywrightError as e:
                logger.debug(f'Escape failed: {e}')
