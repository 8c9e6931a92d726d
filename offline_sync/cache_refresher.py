# Cache Refresher - keeps the local product/client cache in step with the backend
# Bulk load at session start, targeted refresh after each sync pass

import logging
from typing import Dict, Iterable, List, Optional

from .local_store import LocalStore


logger = logging.getLogger(__name__)

PRODUCTS_PER_PAGE = 1000


class CacheRefresher:
    """Overwrites cached reference data with the backend's current state"""

    def __init__(self, store: LocalStore, client):
        self.store = store
        self.client = client

    async def refresh(self, product_ids: Iterable[int]) -> List[Dict]:
        """Re-fetch the given products in one call. Best effort: never raises"""
        ids = sorted(set(product_ids))
        if not ids:
            return []
        try:
            logger.info(f"Updating local cache for synced products: {ids}")
            products = await self.client.get_products_by_ids(ids)
            if products:
                await self.store.save_products(products)
                logger.info(f"Updated {len(products)} products in local cache")
            return list(products or [])
        except Exception as e:
            logger.error(f"Failed to update product cache after sync: {e}")
            return []

    async def initialize_products(self, warehouse_id: Optional[int] = None) -> bool:
        """Page through the whole catalogue and cache it"""
        try:
            page = 1
            all_products = []
            while True:
                response = await self.client.get_products(
                    page=page, per_page=PRODUCTS_PER_PAGE, warehouse_id=warehouse_id
                )
                if not response or not response.get('data'):
                    break
                all_products.extend(response['data'])
                meta = response.get('meta') or {}
                if meta.get('current_page', page) < meta.get('last_page', page):
                    page += 1
                else:
                    break

            if all_products:
                await self.store.save_products(all_products)
                logger.info(f"Successfully cached {len(all_products)} products")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize products offline cache: {e}")
            return False

    async def initialize_clients(self) -> bool:
        try:
            page = 1
            total = 0
            while True:
                response = await self.client.get_clients(page=page)
                if not response or not response.get('data'):
                    break
                await self.store.save_clients(response['data'])
                total += len(response['data'])
                if response.get('current_page', page) < response.get('last_page', page):
                    page += 1
                else:
                    break
            logger.info(f"Successfully cached {total} clients")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize clients offline cache: {e}")
            return False
