# Sync Queue Processor - drains queued actions to the backend in FIFO order
# One failing action is recorded and left queued; the rest of the queue still runs

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, Optional

from .cache_refresher import CacheRefresher
from .errors import BackendError, UnsupportedActionError
from .local_store import LocalStore
from .models import CreateSaleAction, SyncAction, SyncOutcome, SyncResult
from .reconcile import merge_synced_sale, to_create_sale_payload


logger = logging.getLogger(__name__)


def _error_message(error: BaseException) -> str:
    if isinstance(error, BackendError):
        return error.server_message
    return str(error) or error.__class__.__name__


class SyncQueueProcessor:
    """Replays the local sync queue against the backend.

    Passes are single-flight: a second caller waits for the running pass to
    finish and then processes whatever is still queued, so no action is ever
    submitted by two passes at once.
    """

    def __init__(self, store: LocalStore, client, refresher: CacheRefresher = None):
        self.store = store
        self.client = client
        self.refresher = refresher or CacheRefresher(store, client)
        self.lock = asyncio.Lock()
        self._handlers = {
            CreateSaleAction.type: self._create_sale,
        }

    @property
    def is_processing(self) -> bool:
        return self.lock.locked()

    async def process_sync_queue(self, on_error: Optional[Callable] = None) -> SyncResult:
        async with self.lock:
            return await self._process(on_error)

    async def _process(self, on_error: Optional[Callable]) -> SyncResult:
        result = SyncResult()
        actions = await self.store.get_pending_sync_actions()
        if not actions:
            return result

        logger.info(f"Processing {len(actions)} offline actions...")
        products_to_update = set()

        for action in actions:
            if action.id is None:
                continue
            try:
                touched = await self._dispatch(action)
            except Exception as e:
                await self._record_failure(action, e)
                result.results.append(SyncOutcome(id=action.id, success=False, error=e))
                await self._notify(on_error, e)
                continue

            result.results.append(SyncOutcome(id=action.id, success=True))
            products_to_update.update(touched)

        if products_to_update:
            result.updated_products = await self.refresher.refresh(products_to_update)

        synced = sum(1 for r in result.results if r.success)
        logger.info(f"Sync pass done: {synced}/{len(result.results)} actions synced")
        return result

    async def _dispatch(self, action: SyncAction) -> Iterable[int]:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise UnsupportedActionError(f"No handler for sync action type {action.type!r}")
        return await handler(action)

    async def _create_sale(self, action: CreateSaleAction) -> Iterable[int]:
        sale = action.payload
        products: Dict[int, Dict] = {}
        for item in sale.items:
            if item.product is None and item.product_id not in products:
                cached = await self.store.get_product(item.product_id)
                if cached is not None:
                    products[item.product_id] = cached

        payload = to_create_sale_payload(sale, products)
        logger.info(
            f"Syncing sale {sale.temp_id}: total={sale.total_amount} "
            f"discount={payload.get('discount_amount')} ({payload.get('discount_type')})"
        )
        created = await self.client.create_sale(payload)

        merged = merge_synced_sale(sale, created)
        # Dequeue only together with the durable write of the merged sale
        await self.store.commit_synced_sale(merged, action.id)
        logger.info(f"Sale {sale.temp_id} synced as #{merged.id} ({merged.invoice_number})")
        return sale.product_ids

    async def _record_failure(self, action: SyncAction, error: BaseException):
        message = _error_message(error)
        logger.warning(f"Sync action {action.id} ({action.type}) failed: {message}")
        try:
            await self.store.mark_sync_action_failed(action.id, message)
            if isinstance(action, CreateSaleAction):
                pending = await self.store.get_pending_sale(action.temp_id)
                if pending is not None and not pending.is_synced:
                    await self.store.save_pending_sale(replace(pending, sync_error=message))
        except Exception:
            logger.exception(f"Could not record failure of sync action {action.id}")

    async def _notify(self, on_error: Optional[Callable], error: BaseException):
        if on_error is None:
            return
        try:
            outcome = on_error(error)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("on_error callback raised")
