# Offline POS Sync
# Offline-first sale capture and queue replay for a point-of-sale terminal

__version__ = '0.1.0'

from .models import OfflineSale, OfflineSaleItem, Payment, CreateSaleAction, SyncResult
from .local_store import LocalStore, SQLiteLocalStore, InMemoryLocalStore
from .connectivity import ConnectivityGate
from .sync_client import SyncClient, StubSyncClient
from .cache_refresher import CacheRefresher
from .sync_queue import SyncQueueProcessor
from .sale_service import OfflineSaleService
from .recovery_manager import RecoveryManager

__all__ = [
    'OfflineSale',
    'OfflineSaleItem',
    'Payment',
    'CreateSaleAction',
    'SyncResult',
    'LocalStore',
    'SQLiteLocalStore',
    'InMemoryLocalStore',
    'ConnectivityGate',
    'SyncClient',
    'StubSyncClient',
    'CacheRefresher',
    'SyncQueueProcessor',
    'OfflineSaleService',
    'RecoveryManager',
]
