"""Workflow actions.

Each action is a coroutine ``(ctx, params) -> ActionResult`` registered under
its name with ``@actions.action(...)``. ``launch`` and ``interact`` drive the
pooled browser installed as the current session; ``managed`` runs on a pooled
browser of its own, and ``custom`` only gets the Playwright driver. Console
actions attach to a browser an operator started with a remote debugging port
and log in through it.
"""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from bubus import EventBus
from playwright.async_api import Page

from openconsole.auth.state_machine import AuthenticationStateMachine
from openconsole.browser.pool import AttachedBrowser, InstancePool
from openconsole.browser.profile import LaunchConfig
from openconsole.browser.registry import DEFAULT_PAGE_KEY, SessionRegistry
from openconsole.exceptions import ActionError, NavigationError
from openconsole.extraction.tables import TableExtractor
from openconsole.navigation.console import ConsoleNavigator
from openconsole.navigation.readiness import ReadinessWaiter
from openconsole.workflow.views import ActionParams, ActionResult, new_session_id, script_console

logger = logging.getLogger(__name__)


@dataclass
class ActionContext:
    """Everything an action may touch for one work item."""

    pool: InstancePool
    registry: SessionRegistry
    event_bus: EventBus | None = None
    item: dict[str, Any] = field(default_factory=dict)
    index: int = 0
    items: list[dict[str, Any]] = field(default_factory=list)


ActionFunc = Callable[[ActionContext, ActionParams], Any]


class ActionRegistry:
    """Name -> action lookup."""

    def __init__(self):
        self.actions: dict[str, ActionFunc] = {}

    def action(self, name: str, description: str = ''):
        """Decorator for registering actions."""

        def decorator(func: ActionFunc) -> ActionFunc:
            func.description = description  # type: ignore[attr-defined]
            self.actions[name] = func
            return func

        return decorator

    def get(self, name: str) -> ActionFunc:
        if name not in self.actions:
            raise ValueError(f'Unknown action: {name}. Expected one of {sorted(self.actions)}')
        return self.actions[name]

    def names(self) -> list[str]:
        return list(self.actions)


actions = ActionRegistry()

SCRIPT_ACTIONS = ('launch', 'interact', 'managed', 'custom', 'close')
CONSOLE_ACTIONS = ('authenticate', 'console', 'extract', 'full')


def managed_fingerprint(config: LaunchConfig) -> str:
    """Pool key for managed runs, kept apart from the browser installed in the registry."""
    return f'managed-{config.fingerprint()}'


async def _run_script(params: ActionParams, ctx: ActionContext, **bindings: Any) -> Any:
    """Call the caller script with ``bindings`` plus the item bindings every script gets."""
    if params.script is None:
        raise ActionError('A script is required for this action')
    result = params.script(
        **bindings,
        item=ctx.item,
        index=ctx.index,
        items=ctx.items,
        console=script_console(ctx.index),
    )
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Script actions
# ============================================================================


@actions.action('launch', 'Launch the shared browser, or reuse the live session')
async def launch(ctx: ActionContext, params: ActionParams) -> ActionResult:
    browser_type = params.launch.browser_type
    existing = ctx.registry.get_session()
    existing_id = ctx.registry.session_id
    if existing is not None and existing_id is not None:
        return ActionResult(
            success=True,
            action='launch',
            session_id=existing_id,
            browser_type=browser_type,
            is_connected=existing.is_connected(),
            reused_existing=True,
            message=f'Reusing existing single browser session {existing_id}',
        )

    session_id = new_session_id()
    browser = await ctx.pool.acquire(config=params.launch)
    await ctx.registry.set_session(session_id, browser)
    return ActionResult(
        success=True,
        action='launch',
        session_id=session_id,
        browser_type=browser_type,
        is_connected=browser.is_connected(),
        reused_existing=False,
        message=f'Single browser {browser_type} launched successfully',
    )


@actions.action('interact', 'Run a script on a page of the named session, launching it if needed')
async def interact(ctx: ActionContext, params: ActionParams) -> ActionResult:
    session_id = params.session_id
    if not session_id or not session_id.strip():
        raise ActionError('Session ID is required for browser interaction', action='interact', item_index=ctx.index)

    auto_launched = False
    current_id = ctx.registry.session_id
    if current_id is not None and current_id != session_id:
        # pages and browser of the other session go with it
        await ctx.registry.close_session(current_id)
    if not ctx.registry.is_session_active(session_id):
        browser = await ctx.pool.acquire(config=params.launch)
        await ctx.registry.set_session(session_id, browser)
        auto_launched = True
        logger.info(f'Auto-launched browser for session {session_id}')

    browser = ctx.registry.get_session()
    page = await ctx.registry.get_or_create_page(
        DEFAULT_PAGE_KEY,
        reuse=params.reuse_pages,
        options=params.launch.page_options(),
    )
    try:
        result = await _run_script(params, ctx, page=page, browser=browser, session_id=session_id)
        page_url = page.url
    finally:
        if not params.reuse_pages:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f'Ignoring page close error: {e}')

    return ActionResult(
        success=True,
        action='interact',
        session_id=session_id,
        auto_launched=auto_launched,
        result=result,
        page_url=page_url,
    )


@actions.action('managed', 'Run a script on a fresh page of a pooled browser')
async def managed(ctx: ActionContext, params: ActionParams) -> ActionResult:
    browser = await ctx.pool.acquire(managed_fingerprint(params.launch), params.launch)
    options = params.launch.page_options()
    page: Page | None = None
    try:
        page = await browser.new_page(**options.new_page_kwargs())
        options.apply(page)
        result = await _run_script(params, ctx, page=page, browser=browser, session_id=None)
    finally:
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f'Ignoring page close error: {e}')
        if not params.reuse_browser:
            try:
                await browser.close()
            except Exception as e:
                logger.debug(f'Ignoring browser close error: {e}')

    return ActionResult(success=True, action='managed', result=result)


@actions.action('custom', 'Run a script with the Playwright driver and no pre-opened browser')
async def custom(ctx: ActionContext, params: ActionParams) -> ActionResult:
    # browsers the script launches are its own to close
    playwright = await ctx.pool.get_playwright()
    result = await _run_script(params, ctx, playwright=playwright)
    return ActionResult(success=True, action='custom', result=result)


@actions.action('close', 'Close one session, or all of them')
async def close(ctx: ActionContext, params: ActionParams) -> ActionResult:
    session_id = params.session_id
    if session_id:
        closed = await ctx.registry.close_session(session_id)
        message = (
            f"Browser session '{session_id}' closed successfully"
            if closed
            else f"Browser session '{session_id}' was already closed or not found"
        )
        return ActionResult(success=True, action='close', session_id=session_id, message=message)

    closed_count = await ctx.registry.close_all()
    return ActionResult(success=True, action='close', message=f'Closed {closed_count} browser session(s)')


# ============================================================================
# Console actions
# ============================================================================


async def _attach_session(ctx: ActionContext, params: ActionParams) -> tuple[AttachedBrowser, str]:
    attached = await ctx.pool.attach(debug_port=params.debug_port, host=params.host)
    if ctx.registry.get_session() is attached.browser and ctx.registry.session_id:
        session_id = ctx.registry.session_id
    else:
        session_id = new_session_id()
    await ctx.registry.set_session(session_id, attached.browser)
    ctx.registry.register_page(DEFAULT_PAGE_KEY, attached.page)
    return attached, session_id


async def _authenticate(ctx: ActionContext, params: ActionParams, page: Page) -> None:
    if params.credentials is None:
        raise ActionError('Credentials are required for console actions', item_index=ctx.index)
    credentials = params.credentials
    if params.manual_second_factor:
        credentials = credentials.without_second_factor_code()

    machine = AuthenticationStateMachine(page, credentials, event_bus=ctx.event_bus, verify=params.verify_login)
    await machine.run()


async def _open_console(ctx: ActionContext, params: ActionParams, page: Page) -> ConsoleNavigator:
    navigator = ConsoleNavigator(page, event_bus=ctx.event_bus)
    url = params.credentials.console_url if params.credentials else None
    if not url:
        raise NavigationError('Credentials have no console URL', step='navigate_to_console')
    await navigator.navigate_to_console(url, params.popup_timeout_ms)
    return navigator


@actions.action('authenticate', 'Log in through the attached browser')
async def authenticate(ctx: ActionContext, params: ActionParams) -> ActionResult:
    attached, session_id = await _attach_session(ctx, params)
    await _authenticate(ctx, params, attached.page)
    return ActionResult(
        success=True,
        action='authenticate',
        session_id=session_id,
        steps=['authentication'],
        message='Authentication completed successfully',
    )


@actions.action('console', 'Log in and open the console, dismissing its popup')
async def console(ctx: ActionContext, params: ActionParams) -> ActionResult:
    attached, session_id = await _attach_session(ctx, params)
    await _authenticate(ctx, params, attached.page)
    await _open_console(ctx, params, attached.page)
    return ActionResult(
        success=True,
        action='console',
        session_id=session_id,
        steps=['authentication', 'console'],
        message='Console navigation completed successfully',
    )


async def _extract(ctx: ActionContext, params: ActionParams, action: str, message: str) -> ActionResult:
    attached, session_id = await _attach_session(ctx, params)
    page = attached.page
    await _authenticate(ctx, params, page)
    navigator = await _open_console(ctx, params, page)

    url = params.credentials.extraction_url if params.credentials else None
    if not url:
        raise NavigationError('Credentials have no extraction URL', step='navigate_to_extraction_page')
    await navigator.navigate_to_extraction_page(url)

    await ReadinessWaiter(page).wait_for_data_load(params.data_timeout_ms)
    extractor = TableExtractor(page)
    data = await extractor.extract_table_rows()
    steps = ['authentication', 'console', 'extraction_navigation', 'data_extraction']

    details = None
    if params.include_details:
        details = await extractor.extract_all_modal_rows(data, return_url=url)
        steps.append('detail_extraction')

    logger.info(f'{action}: extracted {len(data)} rows')
    return ActionResult(
        success=True,
        action=action,
        session_id=session_id,
        steps=steps,
        data=data,
        count=len(data),
        details=details,
        message=message,
    )


@actions.action('extract', 'Log in, open the console and extract the data table')
async def extract(ctx: ActionContext, params: ActionParams) -> ActionResult:
    return await _extract(ctx, params, 'extract', 'Full process with data extraction completed successfully')


@actions.action('full', 'Complete automation process, same steps as extract')
async def full(ctx: ActionContext, params: ActionParams) -> ActionResult:
    return await _extract(ctx, params, 'full', 'Complete automation process finished successfully')
