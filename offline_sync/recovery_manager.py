# Recovery Manager - startup replay and background retry of the sync queue
# Whatever was queued before a crash or a network outage gets replayed from here

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .logging_config import SyncAlertBuffer
from .models import SyncResult
from .sale_service import OfflineSaleService


logger = logging.getLogger(__name__)


class RecoveryManager:
    """Manages crash recovery and periodic replay of queued sales"""

    def __init__(self, service: OfflineSaleService, alerts: Optional[SyncAlertBuffer] = None):
        self.service = service
        self.alerts = alerts
        self.store = service.store
        self.gate = service.gate
        self.last_sync_time = None
        self.downtime_logged = False

    async def on_startup(self) -> Dict[str, Any]:
        """Run recovery process on startup"""
        report = {
            'started_at': datetime.now().isoformat(),
            'backend_accessible': False,
            'actions_pending': 0,
            'actions_synced': 0,
            'actions_failed': 0,
            'sales_requeued': 0,
            'downtime_logged': False,
        }

        self.last_sync_time = await self.store.load_state('last_sync_time')
        if self.last_sync_time:
            logger.info(f"Last sync was at {self.last_sync_time}")
            await self._log_downtime()
            report['downtime_logged'] = True

        requeued = await self.service.requeue_unqueued_sales()
        report['sales_requeued'] = len(requeued)

        pending = await self.store.get_pending_sync_actions()
        report['actions_pending'] = len(pending)
        report['backend_accessible'] = await self.gate.force_check()

        if pending and report['backend_accessible']:
            logger.info(f"Found {len(pending)} queued actions to replay")
            result = await self._run_pass()
            report['actions_synced'] = sum(1 for r in result.results if r.success)
            report['actions_failed'] = sum(1 for r in result.results if not r.success)
        elif pending:
            logger.warning(f"{len(pending)} queued actions waiting; backend unreachable")

        report['completed_at'] = datetime.now().isoformat()
        await self.store.save_state('last_recovery', report)
        return report

    async def _log_downtime(self):
        downtime_info = {
            'last_known_sync': self.last_sync_time,
            'restart_at': datetime.now().isoformat(),
        }
        await self.store.save_state('downtime_log', downtime_info)
        self.downtime_logged = True
        logger.warning(f"DOWNTIME: terminal offline since {self.last_sync_time}")

    async def _run_pass(self, on_error: Optional[Callable] = None) -> SyncResult:
        result = await self.service.process_sync_queue(on_error)
        if any(r.success for r in result.results):
            self.last_sync_time = datetime.now().isoformat()
            await self.store.save_state('last_sync_time', self.last_sync_time)
        return result

    async def trigger_sync(self, on_error: Optional[Callable] = None) -> Optional[SyncResult]:
        """Sync if reachable and idle; returns None when skipped"""
        if self.service.processor.is_processing:
            logger.debug("Sync already running, skipping trigger")
            return None
        if not await self.gate.check_backend_accessible():
            return None
        return await self._run_pass(on_error)

    async def run_forever(self, interval: float, stop: asyncio.Event = None,
                          on_error: Optional[Callable] = None):
        """Retry the queue every interval seconds until stop is set"""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.trigger_sync(on_error)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def on_shutdown(self):
        """Save state before shutdown"""
        await self.store.save_state('shutdown_at', datetime.now().isoformat())
        pending = await self.store.get_pending_sync_actions()
        await self.store.save_state('pending_on_shutdown', len(pending))
        if self.alerts is not None:
            await self.store.save_state('recent_alerts', self.alerts.recent())
        logger.info(f"Shutdown: {len(pending)} actions pending sync")

    async def get_recovery_status(self) -> Dict:
        return {
            'last_sync_time': self.last_sync_time,
            'downtime_logged': self.downtime_logged,
            'backend_accessible': self.gate.last_result,
            'sync_running': self.service.processor.is_processing,
            'store_stats': await self.store.get_stats(),
            'recent_alerts': self.alerts.recent() if self.alerts is not None else [],
        }
