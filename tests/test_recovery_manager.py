# Tests for startup recovery and background retry

import asyncio
import logging
from dataclasses import replace

import pytest

from offline_sync import draft_builder as db
from offline_sync.connectivity import ConnectivityGate
from offline_sync.logging_config import SyncAlertBuffer
from offline_sync.models import COMPLETED, CreateSaleAction, OfflineSaleItem
from offline_sync.recovery_manager import RecoveryManager
from offline_sync.sale_service import OfflineSaleService


async def _queue_sale(store):
    sale = replace(db.create_draft_sale(), status=COMPLETED,
                   items=[OfflineSaleItem(product_id=2, quantity=1, unit_price=10)])
    sale = db.calculate_totals(sale)
    await store.save_pending_sale(sale)
    await store.add_to_sync_queue(CreateSaleAction(payload=sale))
    return sale


def _manager(store, backend, alerts=None):
    service = OfflineSaleService(store, backend, gate=ConnectivityGate(backend, cache_duration=0))
    return RecoveryManager(service, alerts=alerts)


class TestRecoveryManager:
    """Test recovery"""

    @pytest.mark.asyncio
    async def test_startup_replays_queue(self, store, backend):
        sale = await _queue_sale(store)
        manager = _manager(store, backend)

        report = await manager.on_startup()

        assert report['backend_accessible'] is True
        assert report['actions_pending'] == 1
        assert report['actions_synced'] == 1
        assert (await store.get_pending_sale(sale.temp_id)).is_synced is True
        assert await store.load_state('last_sync_time') is not None
        assert (await store.load_state('last_recovery'))['actions_synced'] == 1

    @pytest.mark.asyncio
    async def test_startup_offline_leaves_queue(self, store, backend):
        await _queue_sale(store)
        backend.online = False

        report = await _manager(store, backend).on_startup()

        assert report['actions_synced'] == 0
        assert len(await store.get_pending_sync_actions()) == 1

    @pytest.mark.asyncio
    async def test_downtime_logged_after_previous_sync(self, store, backend):
        await store.save_state('last_sync_time', '2024-01-01T08:00:00')
        manager = _manager(store, backend)

        report = await manager.on_startup()

        assert report['downtime_logged'] is True
        assert (await store.load_state('downtime_log'))['last_known_sync'] == '2024-01-01T08:00:00'

    @pytest.mark.asyncio
    async def test_trigger_sync_skips_when_offline(self, store, backend):
        await _queue_sale(store)
        backend.online = False

        assert await _manager(store, backend).trigger_sync() is None
        assert backend.create_calls == []

    @pytest.mark.asyncio
    async def test_run_forever_retries_until_stopped(self, store, backend):
        await _queue_sale(store)
        manager = _manager(store, backend)
        stop = asyncio.Event()

        task = asyncio.ensure_future(manager.run_forever(0.01, stop))
        for _ in range(100):
            if not await store.get_pending_sync_actions():
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert await store.get_pending_sync_actions() == []
        assert len(backend.create_calls) == 1

    @pytest.mark.asyncio
    async def test_shutdown_records_pending(self, store, backend):
        await _queue_sale(store)
        backend.online = False
        manager = _manager(store, backend)

        await manager.on_shutdown()
        status = await manager.get_recovery_status()

        assert await store.load_state('pending_on_shutdown') == 1
        assert status['store_stats']['sync_queue'] == 1
        assert status['sync_running'] is False

    @pytest.mark.asyncio
    async def test_startup_requeues_completed_sale_without_action(self, store, backend):
        sale = replace(db.create_draft_sale(), status=COMPLETED,
                       items=[OfflineSaleItem(product_id=2, quantity=1, unit_price=10)])
        await store.save_pending_sale(db.calculate_totals(sale))
        await store.save_pending_sale(db.create_draft_sale())

        report = await _manager(store, backend).on_startup()

        assert report['sales_requeued'] == 1
        assert report['actions_synced'] == 1
        assert [c['client_reference'] for c in backend.create_calls] == [sale.temp_id]
        assert (await store.get_pending_sale(sale.temp_id)).is_synced is True

    @pytest.mark.asyncio
    async def test_startup_does_not_requeue_queued_or_synced_sales(self, store, backend):
        await _queue_sale(store)
        synced = replace(db.create_draft_sale(), status=COMPLETED, is_synced=True, id=7)
        await store.save_pending_sale(synced)
        backend.online = False

        report = await _manager(store, backend).on_startup()

        assert report['sales_requeued'] == 0
        assert len(await store.get_pending_sync_actions()) == 1

    @pytest.mark.asyncio
    async def test_sync_failures_reported_and_saved_on_shutdown(self, store, backend):
        sale = await _queue_sale(store)
        backend.fail_on.add(sale.temp_id)
        alerts = SyncAlertBuffer()
        queue_logger = logging.getLogger('offline_sync.sync_queue')
        queue_logger.addHandler(alerts)
        try:
            manager = _manager(store, backend, alerts=alerts)
            await manager.on_startup()
            status = await manager.get_recovery_status()
            await manager.on_shutdown()
        finally:
            queue_logger.removeHandler(alerts)

        assert any('Simulated network error' in a['message'] for a in status['recent_alerts'])
        saved = await store.load_state('recent_alerts')
        assert [a['message'] for a in saved] == [a['message'] for a in status['recent_alerts']]
