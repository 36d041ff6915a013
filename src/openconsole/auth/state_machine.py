"""Login and second factor protocol as an explicit state machine.

::

    START -> NAVIGATED_TO_LOGIN -> CREDENTIALS_SUBMITTED -> SECOND_FACTOR_TRIGGERED
          -> SECOND_FACTOR_AUTOMATED | SECOND_FACTOR_MANUAL_WAIT
          -> SECOND_FACTOR_SUBMITTED -> VERIFIED

Any failure moves the machine to ``FAILED`` and re-raises. There are no retries
inside one attempt, and an instance runs at most once.

The second factor branch is decided once, by whether the credential bundle
carries a code. With a code the form is filled and submitted immediately. Without
one the machine waits for a human to type the code into the visible browser and
submits only once it is long enough.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from bubus import EventBus
from playwright.async_api import Dialog, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from openconsole.auth.views import (
    DEFAULT_VERIFICATION_FRAGMENTS,
    AuthSelectors,
    AuthState,
    AuthTimeouts,
    CredentialBundle,
)
from openconsole.browser.events import AuthStateChangedEvent, emit
from openconsole.exceptions import (
    AuthenticationError,
    ElementNotFoundError,
    SecondFactorTimeoutError,
    StepTimeoutError,
)
from openconsole.navigation.polling import poll_until

logger = logging.getLogger(__name__)


@contextmanager
def _driver_step(
    step: str,
    selector: str | None = None,
    timeout_ms: float | None = None,
    timeout_cls: type[StepTimeoutError] = StepTimeoutError,
) -> Iterator[None]:
    """Translate Playwright failures inside a step into typed errors."""
    try:
        yield
    except PlaywrightTimeoutError as e:
        raise timeout_cls(f'Timed out during {step}', step=step, timeout_ms=timeout_ms, selector=selector) from e
    except PlaywrightError as e:
        target = f' on {selector!r}' if selector else ''
        raise AuthenticationError(f'Driver error{target}: {e}', step=step) from e


class AuthenticationStateMachine:
    """Drives one login attempt on ``page``.

    Attributes:
        state: Current state.
        history: Every state entered, in order, starting with ``START``.
    """

    def __init__(
        self,
        page: Page,
        credentials: CredentialBundle,
        selectors: AuthSelectors | None = None,
        timeouts: AuthTimeouts | None = None,
        event_bus: EventBus | None = None,
        verify: bool = True,
        verification_fragments: Sequence[str] = DEFAULT_VERIFICATION_FRAGMENTS,
    ):
        self.page = page
        self.credentials = credentials
        self.selectors = selectors or AuthSelectors()
        self.timeouts = timeouts or AuthTimeouts.from_config()
        self.event_bus = event_bus
        self.verify = verify
        self.verification_fragments = tuple(verification_fragments)

        self.state = AuthState.START
        self.history: list[AuthState] = [AuthState.START]
        self._started = False

    @property
    def uses_manual_second_factor(self) -> bool:
        return not self.credentials.has_second_factor_code

    async def run(self) -> AuthState:
        """Run the whole protocol. Returns ``VERIFIED`` on success.

        Raises:
            ElementNotFoundError: A login control did not appear in time.
            SecondFactorTimeoutError: Nobody entered a code within the manual bound.
            StepTimeoutError: A navigation or verification wait ran out.
            AuthenticationError: Any other driver failure, or a second ``run``.
        """
        if self._started:
            raise AuthenticationError('An authentication attempt can only run once', step=self.state.value)
        self._started = True

        logger.info('Starting authentication process...')
        try:
            await self._navigate_to_login()
            await self._submit_credentials()
            await self._trigger_second_factor()

            if self.uses_manual_second_factor:
                await self._wait_for_manual_code()
            else:
                await self._fill_automated_code()
            await self._submit_second_factor()

            if self.verify:
                await self._verify_redirect()
            await self._transition(AuthState.VERIFIED)
        except Exception as e:
            await self._transition(AuthState.FAILED, detail=str(e))
            raise

        logger.info('Authentication completed successfully')
        return self.state

    async def _transition(self, state: AuthState, detail: str | None = None) -> None:
        previous = self.state
        self.state = state
        self.history.append(state)
        logger.debug(f'Auth state {previous.value} -> {state.value}')
        await emit(
            self.event_bus,
            AuthStateChangedEvent(previous=previous.value, current=state.value, detail=detail),
        )

    async def _navigate_to_login(self) -> None:
        timeout = self.timeouts.navigation_ms
        with _driver_step('navigate_to_login', timeout_ms=timeout):
            await self.page.goto(self.credentials.auth_url, wait_until='networkidle', timeout=timeout)
        await self._transition(AuthState.NAVIGATED_TO_LOGIN)

    async def _submit_credentials(self) -> None:
        sel = self.selectors
        timeout = self.timeouts.element_ms
        logger.info('Filling login form...')

        with _driver_step('submit_credentials', sel.login_alias, timeout, ElementNotFoundError):
            await self.page.wait_for_selector(sel.login_alias, timeout=timeout)
            await self.page.fill(sel.login_alias, self.credentials.login_alias, timeout=timeout)
        with _driver_step('submit_credentials', sel.username, timeout, ElementNotFoundError):
            await self.page.fill(sel.username, self.credentials.username, timeout=timeout)
        with _driver_step('submit_credentials', sel.password, timeout, ElementNotFoundError):
            await self.page.fill(sel.password, self.credentials.password.get_secret_value(), timeout=timeout)
        with _driver_step('submit_credentials', sel.submit, timeout, ElementNotFoundError):
            await self.page.click(sel.submit, timeout=timeout)

        await self._transition(AuthState.CREDENTIALS_SUBMITTED)

    async def _trigger_second_factor(self) -> None:
        sel = self.selectors.second_factor_trigger
        timeout = self.timeouts.element_ms

        self.page.once('dialog', _handle_dialog)
        with _driver_step('trigger_second_factor', sel, timeout, ElementNotFoundError):
            await self.page.click(sel, timeout=timeout)

        await self._transition(AuthState.SECOND_FACTOR_TRIGGERED)

    async def _fill_automated_code(self) -> None:
        await self._transition(AuthState.SECOND_FACTOR_AUTOMATED)
        logger.info('Using provided second factor code')

        sel = self.selectors.second_factor_input
        timeout = self.timeouts.element_ms
        code = self.credentials.second_factor_code
        if code is None:
            raise AuthenticationError('No second factor code to submit', step='fill_second_factor')
        with _driver_step('fill_second_factor', sel, timeout, ElementNotFoundError):
            await self.page.fill(sel, code.get_secret_value(), timeout=timeout)

    async def _wait_for_manual_code(self) -> None:
        await self._transition(AuthState.SECOND_FACTOR_MANUAL_WAIT)
        timeout = self.timeouts.second_factor_ms
        logger.info('Waiting for manual second factor code input...')
        logger.info('Check your phone for the code and enter it in the browser window.')

        await poll_until(
            self._manual_code_entered,
            timeout,
            interval_ms=self.timeouts.poll_interval_ms,
            step='wait_for_second_factor',
            selector=self.selectors.second_factor_input,
            message=f'No second factor code entered within {timeout:g}ms',
            error_cls=SecondFactorTimeoutError,
        )
        logger.info('Second factor code detected in the browser input field')

    async def _manual_code_entered(self) -> bool:
        try:
            value = await self.page.input_value(
                self.selectors.second_factor_input,
                timeout=self.timeouts.poll_interval_ms,
            )
        except PlaywrightError:
            return False
        return len(value) > self.timeouts.min_code_length

    async def _submit_second_factor(self) -> None:
        sel = self.selectors.second_factor_submit
        with _driver_step('submit_second_factor', sel, self.timeouts.element_ms, ElementNotFoundError):
            await self.page.click(sel, timeout=self.timeouts.element_ms)

        timeout = self.timeouts.navigation_ms
        with _driver_step('submit_second_factor', timeout_ms=timeout):
            await self.page.wait_for_load_state('networkidle', timeout=timeout)

        await self._transition(AuthState.SECOND_FACTOR_SUBMITTED)

    async def _verify_redirect(self) -> None:
        fragments = self.verification_fragments
        await poll_until(
            lambda: any(fragment in self.page.url for fragment in fragments),
            self.timeouts.verification_ms,
            interval_ms=self.timeouts.poll_interval_ms,
            step='verify',
            message=f'Still not redirected to a page matching {list(fragments)}',
        )
        logger.info('Authentication process verified complete')


async def _handle_dialog(dialog: Dialog) -> None:
    try:
        if dialog.type == 'alert':
            logger.debug(f'Dismissing alert: {dialog.message[:100]}')
            await dialog.dismiss()
        else:
            # an unanswered dialog blocks the page
            logger.info(f'Accepting unexpected {dialog.type} dialog: {dialog.message[:100]}')
            await dialog.accept()
    except PlaywrightError as e:
        logger.debug(f'Dialog already handled: {e}')
