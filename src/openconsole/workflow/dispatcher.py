"""Action dispatcher: runs one action per work item, in order.

The dispatcher owns the process context (instance pool and session registry)
and the per-item error policy. With continue-on-fail a failing item becomes a
failure record and the batch goes on; without it the first failure aborts the
batch as an ``ActionError``.
"""

import logging
from typing import Any

from bubus import EventBus

from openconsole.browser.pool import InstancePool
from openconsole.browser.registry import SessionRegistry
from openconsole.exceptions import ActionError
from openconsole.workflow.actions import ActionContext, actions
from openconsole.workflow.views import ActionParams, ActionResult, OutputFormat

logger = logging.getLogger(__name__)

EXTRACTION_ACTIONS = ('extract', 'full')


def expand_records(result: ActionResult, output_format: OutputFormat = 'items') -> list[dict[str, Any]]:
    """Shape an action result into output records.

    Successful extraction results in ``items`` format yield one record per data
    row, each carrying an ``extraction_info`` block. Everything else yields a
    single record.
    """
    if result.action in EXTRACTION_ACTIONS and result.success and result.data is not None and output_format == 'items':
        info = {
            'success': result.success,
            'message': result.message,
            'action': result.action,
            'timestamp': result.timestamp,
            'total_count': result.count,
        }
        return [{**row, 'extraction_info': info} for row in result.data]
    return [result.to_record()]


class Dispatcher:
    """Process context for a batch of work items.

    Example:
        >>> async with Dispatcher() as dispatcher:
        ...     records = await dispatcher.run_batch([{}], 'extract', credentials=bundle)
    """

    def __init__(
        self,
        pool: InstancePool | None = None,
        registry: SessionRegistry | None = None,
        event_bus: EventBus | None = None,
    ):
        self.event_bus = event_bus
        self.pool = pool or InstancePool(event_bus=event_bus)
        self.registry = registry or SessionRegistry(event_bus=event_bus)

    async def __aenter__(self) -> 'Dispatcher':
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.shutdown()

    async def run(
        self,
        action: str,
        params: ActionParams | None = None,
        item: dict[str, Any] | None = None,
        index: int = 0,
        items: list[dict[str, Any]] | None = None,
    ) -> ActionResult:
        """Run ``action`` for a single item. Errors propagate unchanged."""
        func = actions.get(action)
        ctx = ActionContext(
            pool=self.pool,
            registry=self.registry,
            event_bus=self.event_bus,
            item=item or {},
            index=index,
            items=items if items is not None else [item or {}],
        )
        logger.debug(f'Running {action} for item {index}')
        result = await func(ctx, params or ActionParams())
        result.item_index = index
        return result

    async def run_batch(
        self,
        items: list[dict[str, Any]],
        action: str,
        continue_on_fail: bool = False,
        **params: Any,
    ) -> list[dict[str, Any]]:
        """Run ``action`` for every item, sequentially.

        Returns:
            Output records, already shaped by ``expand_records``.

        Raises:
            ActionError: On the first failing item when ``continue_on_fail`` is off.
            ValueError: If ``action`` is unknown.
        """
        actions.get(action)
        action_params = ActionParams(**params)
        records: list[dict[str, Any]] = []

        try:
            for index, item in enumerate(items):
                try:
                    result = await self.run(action, action_params, item=item, index=index, items=items)
                except Exception as e:
                    if not continue_on_fail:
                        raise ActionError(str(e), action=action, item_index=index) from e
                    logger.error(f'{action} failed on item {index}: {e}')
                    result = ActionResult.failure(e, action=action, item_index=index)
                records.extend(expand_records(result, action_params.output_format))
        finally:
            if not action_params.reuse_browser:
                await self.pool.release_all()

        return records

    async def shutdown(self) -> None:
        """Close the session and the pool. Never raises."""
        try:
            await self.registry.close_all()
        except Exception as e:
            logger.debug(f'Ignoring session close error during shutdown: {e}')
        try:
            await self.pool.shutdown()
        except Exception as e:
            logger.debug(f'Ignoring pool shutdown error: {e}')
