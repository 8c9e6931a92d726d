#!/usr/bin/env python3
"""
Offline POS Sync Agent - replays the terminal's sale queue whenever the backend is reachable
"""

import asyncio
import logging
from typing import Dict, Optional

from offline_sync.config import load_config
from offline_sync.connectivity import ConnectivityGate
from offline_sync.local_store import SQLiteLocalStore
from offline_sync.logging_config import SyncAlertBuffer, setup_logging
from offline_sync.recovery_manager import RecoveryManager
from offline_sync.sale_service import OfflineSaleService
from offline_sync.sync_client import StubSyncClient, SyncClient


logger = logging.getLogger(__name__)


class SyncAgent:
    def __init__(self, config: Dict, alerts: Optional[SyncAlertBuffer] = None):
        self.store = SQLiteLocalStore(config.get('db_path'))
        server_url = config.get('api_base_url')
        if server_url:
            self.client = SyncClient(
                server_url,
                api_key=config.get('api_key'),
                timeout=int(config.get('timeout', 30)),
                max_retries=int(config.get('max_retries', 3)),
            )
        else:
            logger.warning("No api_base_url configured, using the stub backend")
            self.client = StubSyncClient()
        self.gate = ConnectivityGate(
            self.client,
            cache_duration=float(config.get('health_cache_seconds', 30)),
            timeout=float(config.get('health_timeout', 3)),
        )
        self.service = OfflineSaleService(self.store, self.client, gate=self.gate)
        self.recovery = RecoveryManager(self.service, alerts=alerts)
        self.sync_interval = float(config.get('sync_interval', 30))
        self.warehouse_id = config.get('warehouse_id')

    def _on_sync_error(self, error):
        logger.warning(f"Sync error: {getattr(error, 'server_message', error)}")

    async def start(self):
        report = await self.recovery.on_startup()
        logger.info(f"Recovery report: {report}")
        if report['backend_accessible']:
            await self.service.initialize_products(self.warehouse_id)
            await self.service.initialize_clients()

    async def run(self):
        await self.start()
        try:
            await self.recovery.run_forever(self.sync_interval, on_error=self._on_sync_error)
        finally:
            await self.recovery.on_shutdown()


def main():
    config = load_config()
    alerts = setup_logging(config.get('log_path'), config.get('log_level') or 'INFO')
    agent = SyncAgent(config, alerts=alerts)

    print("=" * 50)
    print("  Offline POS Sync Agent")
    print("=" * 50)
    print(f"Local store: {agent.store.db_path}")
    print(f"Retry interval: {agent.sync_interval:g}s")
    print("Press Ctrl+C to stop")

    try:
        asyncio.run(agent.run())
    except KeyboardInterrupt:
        print("\nStopping...")


if __name__ == '__main__':
    main()
