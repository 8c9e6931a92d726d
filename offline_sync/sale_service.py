# Offline Sale Service - what the POS screen calls
# Drafts, checkout, deletion and cache lookups on top of the store, gate and queue processor

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from . import draft_builder
from .cache_refresher import CacheRefresher
from .connectivity import ConnectivityGate
from .errors import OfflineSyncError
from .local_store import LocalStore
from .models import COMPLETED, CreateSaleAction, OfflineSale, SyncResult
from .sync_queue import SyncQueueProcessor


logger = logging.getLogger(__name__)


class OfflineSaleService:
    """Frontend-first sale operations for one terminal"""

    def __init__(self, store: LocalStore, client, gate: ConnectivityGate = None,
                 processor: SyncQueueProcessor = None, refresher: CacheRefresher = None):
        self.store = store
        self.client = client
        self.gate = gate or ConnectivityGate(client)
        self.refresher = refresher or CacheRefresher(store, client)
        self.processor = processor or SyncQueueProcessor(store, client, self.refresher)

    # --- drafts ---

    def create_draft_sale(self, shift_id: Optional[int] = None, user_id: Optional[int] = None) -> OfflineSale:
        return draft_builder.create_draft_sale(shift_id, user_id)

    def calculate_totals(self, sale: OfflineSale) -> OfflineSale:
        return draft_builder.calculate_totals(sale)

    async def save_draft(self, sale: OfflineSale) -> OfflineSale:
        """Persist without queueing; drafts never sync"""
        await self.store.save_pending_sale(sale)
        return sale

    # --- checkout ---

    async def complete_sale(self, sale: OfflineSale) -> OfflineSale:
        """Persist, queue, and sync right away when the backend is reachable.

        Raises the sync error of this sale's action if an immediate sync was
        attempted and failed; the action stays queued either way.
        """
        if sale.is_synced:
            raise ValueError(f"Sale {sale.temp_id} is already synced as #{sale.id}")

        completed = draft_builder.calculate_totals(replace(sale, status=COMPLETED, sync_error=None))

        queue_id = await self._queued_action_id(completed.temp_id)
        if queue_id is None:
            queue_id = await self.store.complete_and_enqueue(completed, CreateSaleAction(payload=completed))
            logger.info(f"Sale {completed.temp_id} completed, queued as action {queue_id}")
        else:
            await self.store.save_pending_sale(completed)
            logger.warning(f"Sale {completed.temp_id} already queued as action {queue_id}")

        if await self.gate.check_backend_accessible():
            result = await self.processor.process_sync_queue()
            outcome = result.find(queue_id)
            if outcome is not None and not outcome.success:
                raise outcome.error or OfflineSyncError("Sync failed")
        else:
            logger.info(f"Backend unreachable, sale {completed.temp_id} will sync later")

        return completed

    async def _queued_action_id(self, temp_id: str) -> Optional[int]:
        for action in await self.store.get_pending_sync_actions():
            if action.type == CreateSaleAction.type and action.temp_id == temp_id:
                return action.id
        return None

    async def requeue_unqueued_sales(self) -> List[str]:
        """Queue every completed, unsynced sale that has no sync action; returns their temp_ids"""
        requeued = []
        async with self.processor.lock:
            queued = {a.temp_id for a in await self.store.get_pending_sync_actions()
                      if a.type == CreateSaleAction.type}
            for sale in await self.store.get_pending_sales():
                if sale.status != COMPLETED or sale.is_synced or sale.temp_id in queued:
                    continue
                action_id = await self.store.add_to_sync_queue(CreateSaleAction(payload=sale))
                logger.warning(f"Sale {sale.temp_id} had no sync action, requeued as {action_id}")
                requeued.append(sale.temp_id)
        return requeued

    async def process_sync_queue(self, on_error: Optional[Callable] = None) -> SyncResult:
        return await self.processor.process_sync_queue(on_error)

    # --- history / deletion ---

    async def get_offline_sales(self) -> List[OfflineSale]:
        return await self.store.get_pending_sales()

    async def delete_pending_sale(self, temp_id: str) -> None:
        """Drop a sale and any queued action that would still submit it"""
        async with self.processor.lock:
            for action in await self.store.get_pending_sync_actions():
                if action.type == CreateSaleAction.type and action.temp_id == temp_id:
                    logger.info(f"Removing associated sync action: {action.id}")
                    await self.store.remove_sync_action(action.id)
            await self.store.delete_pending_sale(temp_id)

    async def delete_all_pending_sales(self) -> int:
        """Delete every unsynced sale (new shift); synced history is kept"""
        sales = await self.get_offline_sales()
        unsynced = [s for s in sales if not s.is_synced]
        logger.info(f"Deleting {len(unsynced)} unsynced sales...")
        for sale in unsynced:
            await self.delete_pending_sale(sale.temp_id)
        logger.info(f"Successfully deleted {len(unsynced)} unsynced sales")
        return len(unsynced)

    # --- reference cache ---

    async def search_products(self, query: str) -> List[Dict]:
        return await self.store.search_products(query)

    async def get_product_by_id(self, product_id: int) -> Optional[Dict]:
        return await self.store.get_product(product_id)

    async def search_clients(self, query: str) -> List[Dict]:
        return await self.store.search_clients(query)

    async def initialize_products(self, warehouse_id: Optional[int] = None) -> bool:
        return await self.refresher.initialize_products(warehouse_id)

    async def initialize_clients(self) -> bool:
        return await self.refresher.initialize_clients()
