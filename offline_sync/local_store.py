# Local Store - durable collections for the offline POS
# products / clients (reference cache), pending_sales / sync_queue (transactional state)

import abc
import asyncio
import copy
import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import LocalStoreError
from .models import (
    ACTION_FAILED, OfflineSale, SyncAction, action_from_record, now_ms,
)


logger = logging.getLogger(__name__)


PRODUCTS = 'products'
CLIENTS = 'clients'
PENDING_SALES = 'pending_sales'
SYNC_QUEUE = 'sync_queue'
SETTINGS = 'settings'
STATE = 'state'

STORES = (PRODUCTS, CLIENTS, PENDING_SALES, SYNC_QUEUE, SETTINGS, STATE)


def _matches(record: Dict, query: str, keys) -> bool:
    for key in keys:
        value = record.get(key)
        if value and query in str(value).lower():
            return True
    return False


class LocalStore(abc.ABC):
    """Repository over the terminal's local collections.

    Every method is a coroutine. Writes are last-write-wins per key; the only
    multi-key writes that must be atomic are complete_and_enqueue() and
    commit_synced_sale().
    """

    # --- products ---

    @abc.abstractmethod
    async def save_products(self, products: List[Dict]) -> None:
        """Upsert product records keyed by their id"""

    @abc.abstractmethod
    async def get_all_products(self) -> List[Dict]:
        pass

    @abc.abstractmethod
    async def get_product(self, product_id: int) -> Optional[Dict]:
        pass

    async def search_products(self, query: str) -> List[Dict]:
        products = await self.get_all_products()
        if not query:
            return products
        query = query.lower()
        return [p for p in products if _matches(p, query, ('name', 'sku'))]

    # --- clients ---

    @abc.abstractmethod
    async def save_clients(self, clients: List[Dict]) -> None:
        pass

    @abc.abstractmethod
    async def get_all_clients(self) -> List[Dict]:
        pass

    async def search_clients(self, query: str) -> List[Dict]:
        clients = await self.get_all_clients()
        if not query:
            return clients
        query = query.lower()
        return [c for c in clients if _matches(c, query, ('name', 'phone'))]

    # --- pending sales ---

    @abc.abstractmethod
    async def save_pending_sale(self, sale: OfflineSale) -> str:
        """Upsert a sale keyed by temp_id; returns the temp_id"""

    @abc.abstractmethod
    async def get_pending_sale(self, temp_id: str) -> Optional[OfflineSale]:
        pass

    @abc.abstractmethod
    async def get_pending_sales(self) -> List[OfflineSale]:
        """All stored sales, oldest first"""

    @abc.abstractmethod
    async def delete_pending_sale(self, temp_id: str) -> None:
        pass

    # --- sync queue ---

    @abc.abstractmethod
    async def add_to_sync_queue(self, action: SyncAction) -> int:
        """Append an action; returns its queue id"""

    @abc.abstractmethod
    async def get_pending_sync_actions(self) -> List[SyncAction]:
        """Pending and failed actions in enqueue order"""

    @abc.abstractmethod
    async def remove_sync_action(self, action_id: int) -> None:
        pass

    @abc.abstractmethod
    async def mark_sync_action_failed(self, action_id: int, error: str) -> None:
        """Keep the action queued, bump retry_count and remember the error"""

    @abc.abstractmethod
    async def complete_and_enqueue(self, sale: OfflineSale, action: SyncAction) -> int:
        """Persist the completed sale and append its action in one step; returns the queue id"""

    @abc.abstractmethod
    async def commit_synced_sale(self, sale: OfflineSale, action_id: int) -> None:
        """Persist the merged sale and drop its action in one step"""

    # --- settings / state ---

    @abc.abstractmethod
    async def save_settings(self, settings: Dict) -> None:
        pass

    @abc.abstractmethod
    async def get_settings(self) -> Optional[Dict]:
        pass

    @abc.abstractmethod
    async def save_state(self, key: str, value: Any) -> None:
        pass

    @abc.abstractmethod
    async def load_state(self, key: str, default: Any = None) -> Any:
        pass

    # --- admin ---

    @abc.abstractmethod
    async def clear_store(self, store_name: str) -> None:
        pass

    @abc.abstractmethod
    async def get_all_from_store(self, store_name: str) -> List[Any]:
        pass

    async def get_stats(self) -> Dict[str, Any]:
        sales = await self.get_pending_sales()
        actions = await self.get_pending_sync_actions()
        return {
            'products_cached': len(await self.get_all_products()),
            'clients_cached': len(await self.get_all_clients()),
            'total_sales': len(sales),
            'unsynced_sales': sum(1 for s in sales if not s.is_synced),
            'sync_queue': len(actions),
            'failed_actions': sum(1 for a in actions if a.status == ACTION_FAILED),
        }


def _check_store(store_name: str):
    if store_name not in STORES:
        raise LocalStoreError(f"Unknown store: {store_name}")


class SQLiteLocalStore(LocalStore):
    """SQLite-backed store; blocking calls run in a worker thread"""

    DB_PATH = "offline_pos.db"

    def __init__(self, db_path: str = None):
        self.db_path = db_path or self.DB_PATH
        self.lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        with self.lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY,
                    name TEXT,
                    sku TEXT,
                    data TEXT NOT NULL,
                    updated_at TEXT
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_products_sku ON products (sku)')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS clients (
                    id INTEGER PRIMARY KEY,
                    name TEXT,
                    phone TEXT,
                    data TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS pending_sales (
                    temp_id TEXT PRIMARY KEY,
                    is_synced INTEGER DEFAULT 0,
                    offline_created_at INTEGER,
                    data TEXT NOT NULL
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_pending_synced ON pending_sales (is_synced)')

            # AUTOINCREMENT keeps ids strictly increasing, so id order is enqueue order
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    temp_id TEXT,
                    payload TEXT NOT NULL,
                    enqueued_at INTEGER NOT NULL,
                    status TEXT DEFAULT 'pending',
                    retry_count INTEGER DEFAULT 0,
                    last_error TEXT
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            ''')

            conn.commit()
            conn.close()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            raise LocalStoreError(f"{fn.__name__} failed: {e}") from e

    def _execute(self, sql: str, params=(), many: bool = False):
        with self.lock:
            conn = sqlite3.connect(self.db_path)
            try:
                cursor = conn.cursor()
                if many:
                    cursor.executemany(sql, params)
                else:
                    cursor.execute(sql, params)
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self.lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                cursor = conn.cursor()
                cursor.execute(sql, params)
                return cursor.fetchall()
            finally:
                conn.close()

    # --- products ---

    def _save_products(self, products: List[Dict]):
        now = datetime.now().isoformat()
        rows = [(p['id'], p.get('name'), p.get('sku'), json.dumps(p), now) for p in products]
        self._execute('''
            INSERT OR REPLACE INTO products (id, name, sku, data, updated_at)
            VALUES (?, ?, ?, ?, ?)
        ''', rows, many=True)

    async def save_products(self, products: List[Dict]) -> None:
        if products:
            await self._run(self._save_products, list(products))

    async def get_all_products(self) -> List[Dict]:
        rows = await self._run(self._query, 'SELECT data FROM products ORDER BY id ASC')
        return [json.loads(row['data']) for row in rows]

    async def get_product(self, product_id: int) -> Optional[Dict]:
        rows = await self._run(self._query, 'SELECT data FROM products WHERE id = ?', (product_id,))
        return json.loads(rows[0]['data']) if rows else None

    # --- clients ---

    def _save_clients(self, clients: List[Dict]):
        rows = [(c['id'], c.get('name'), c.get('phone'), json.dumps(c)) for c in clients]
        self._execute('''
            INSERT OR REPLACE INTO clients (id, name, phone, data)
            VALUES (?, ?, ?, ?)
        ''', rows, many=True)

    async def save_clients(self, clients: List[Dict]) -> None:
        if clients:
            await self._run(self._save_clients, list(clients))

    async def get_all_clients(self) -> List[Dict]:
        rows = await self._run(self._query, 'SELECT data FROM clients ORDER BY id ASC')
        return [json.loads(row['data']) for row in rows]

    # --- pending sales ---

    @staticmethod
    def _sale_row(sale: OfflineSale):
        return (sale.temp_id, 1 if sale.is_synced else 0, sale.offline_created_at,
                json.dumps(sale.to_dict()))

    async def save_pending_sale(self, sale: OfflineSale) -> str:
        await self._run(self._execute, '''
            INSERT OR REPLACE INTO pending_sales (temp_id, is_synced, offline_created_at, data)
            VALUES (?, ?, ?, ?)
        ''', self._sale_row(sale))
        return sale.temp_id

    async def get_pending_sale(self, temp_id: str) -> Optional[OfflineSale]:
        rows = await self._run(self._query, 'SELECT data FROM pending_sales WHERE temp_id = ?', (temp_id,))
        return OfflineSale.from_dict(json.loads(rows[0]['data'])) if rows else None

    async def get_pending_sales(self) -> List[OfflineSale]:
        rows = await self._run(self._query, '''
            SELECT data FROM pending_sales ORDER BY offline_created_at ASC, rowid ASC
        ''')
        return [OfflineSale.from_dict(json.loads(row['data'])) for row in rows]

    async def delete_pending_sale(self, temp_id: str) -> None:
        await self._run(self._execute, 'DELETE FROM pending_sales WHERE temp_id = ?', (temp_id,))

    # --- sync queue ---

    _INSERT_ACTION = '''
        INSERT INTO sync_queue (type, temp_id, payload, enqueued_at, status, retry_count)
        VALUES (?, ?, ?, ?, ?, ?)
    '''

    @staticmethod
    def _action_row(action: SyncAction):
        return (action.type, action.temp_id, json.dumps(action.payload_to_dict()),
                action.enqueued_at, action.status, action.retry_count)

    async def add_to_sync_queue(self, action: SyncAction) -> int:
        action_id = await self._run(self._execute, self._INSERT_ACTION, self._action_row(action))
        action.id = action_id
        return action_id

    async def get_pending_sync_actions(self) -> List[SyncAction]:
        rows = await self._run(self._query, '''
            SELECT * FROM sync_queue
            WHERE status IN ('pending', 'failed')
            ORDER BY id ASC
        ''')
        actions = []
        for row in rows:
            record = dict(row)
            record['payload'] = json.loads(record['payload'])
            actions.append(action_from_record(record))
        return actions

    async def remove_sync_action(self, action_id: int) -> None:
        await self._run(self._execute, 'DELETE FROM sync_queue WHERE id = ?', (action_id,))

    async def mark_sync_action_failed(self, action_id: int, error: str) -> None:
        await self._run(self._execute, '''
            UPDATE sync_queue
            SET status = 'failed', retry_count = retry_count + 1, last_error = ?
            WHERE id = ?
        ''', (error, action_id))

    def _complete_and_enqueue(self, sale: OfflineSale, action: SyncAction) -> int:
        with self.lock:
            conn = sqlite3.connect(self.db_path)
            try:
                with conn:
                    conn.execute('''
                        INSERT OR REPLACE INTO pending_sales (temp_id, is_synced, offline_created_at, data)
                        VALUES (?, ?, ?, ?)
                    ''', self._sale_row(sale))
                    cursor = conn.execute(self._INSERT_ACTION, self._action_row(action))
                return cursor.lastrowid
            finally:
                conn.close()

    async def complete_and_enqueue(self, sale: OfflineSale, action: SyncAction) -> int:
        action_id = await self._run(self._complete_and_enqueue, sale, action)
        action.id = action_id
        return action_id

    def _commit_synced_sale(self, sale: OfflineSale, action_id: int):
        with self.lock:
            conn = sqlite3.connect(self.db_path)
            try:
                # Connection context manager commits both statements or neither
                with conn:
                    conn.execute('''
                        INSERT OR REPLACE INTO pending_sales (temp_id, is_synced, offline_created_at, data)
                        VALUES (?, ?, ?, ?)
                    ''', self._sale_row(sale))
                    conn.execute('DELETE FROM sync_queue WHERE id = ?', (action_id,))
            finally:
                conn.close()

    async def commit_synced_sale(self, sale: OfflineSale, action_id: int) -> None:
        await self._run(self._commit_synced_sale, sale, action_id)

    # --- settings / state ---

    async def save_settings(self, settings: Dict) -> None:
        await self._run(self._execute, '''
            INSERT OR REPLACE INTO settings (key, value) VALUES ('current', ?)
        ''', (json.dumps(settings),))

    async def get_settings(self) -> Optional[Dict]:
        rows = await self._run(self._query, "SELECT value FROM settings WHERE key = 'current'")
        return json.loads(rows[0]['value']) if rows else None

    async def save_state(self, key: str, value: Any) -> None:
        await self._run(self._execute, '''
            INSERT OR REPLACE INTO state (key, value, updated_at)
            VALUES (?, ?, ?)
        ''', (key, json.dumps(value), datetime.now().isoformat()))

    async def load_state(self, key: str, default: Any = None) -> Any:
        rows = await self._run(self._query, 'SELECT value FROM state WHERE key = ?', (key,))
        if not rows:
            return default
        try:
            return json.loads(rows[0]['value'])
        except ValueError:
            return rows[0]['value']

    # --- admin ---

    async def clear_store(self, store_name: str) -> None:
        _check_store(store_name)
        await self._run(self._execute, f'DELETE FROM {store_name}')
        logger.info(f"Cleared local store '{store_name}'")

    async def get_all_from_store(self, store_name: str) -> List[Any]:
        _check_store(store_name)
        if store_name == PRODUCTS:
            return await self.get_all_products()
        if store_name == CLIENTS:
            return await self.get_all_clients()
        if store_name == PENDING_SALES:
            return [s.to_dict() for s in await self.get_pending_sales()]
        rows = await self._run(self._query, f'SELECT * FROM {store_name}')
        return [dict(row) for row in rows]


class InMemoryLocalStore(LocalStore):
    """Process-local store with the same contract; nothing survives a restart"""

    def __init__(self):
        self.products: Dict[int, Dict] = {}
        self.clients: Dict[int, Dict] = {}
        self.pending_sales: Dict[str, Dict] = {}
        self.sync_queue: Dict[int, Dict] = {}
        self.settings: Optional[Dict] = None
        self.state: Dict[str, Any] = {}
        self._next_action_id = 1

    async def save_products(self, products: List[Dict]) -> None:
        for product in products:
            self.products[product['id']] = copy.deepcopy(product)

    async def get_all_products(self) -> List[Dict]:
        return [copy.deepcopy(self.products[k]) for k in sorted(self.products)]

    async def get_product(self, product_id: int) -> Optional[Dict]:
        product = self.products.get(product_id)
        return copy.deepcopy(product) if product is not None else None

    async def save_clients(self, clients: List[Dict]) -> None:
        for client in clients:
            self.clients[client['id']] = copy.deepcopy(client)

    async def get_all_clients(self) -> List[Dict]:
        return [copy.deepcopy(self.clients[k]) for k in sorted(self.clients)]

    async def save_pending_sale(self, sale: OfflineSale) -> str:
        self.pending_sales[sale.temp_id] = sale.to_dict()
        return sale.temp_id

    async def get_pending_sale(self, temp_id: str) -> Optional[OfflineSale]:
        data = self.pending_sales.get(temp_id)
        return OfflineSale.from_dict(data) if data is not None else None

    async def get_pending_sales(self) -> List[OfflineSale]:
        sales = [OfflineSale.from_dict(d) for d in self.pending_sales.values()]
        return sorted(sales, key=lambda s: s.offline_created_at)

    async def delete_pending_sale(self, temp_id: str) -> None:
        self.pending_sales.pop(temp_id, None)

    async def add_to_sync_queue(self, action: SyncAction) -> int:
        action_id = self._next_action_id
        self._next_action_id += 1
        self.sync_queue[action_id] = {
            'id': action_id,
            'type': action.type,
            'payload': copy.deepcopy(action.payload_to_dict()),
            'enqueued_at': action.enqueued_at or now_ms(),
            'status': action.status,
            'retry_count': action.retry_count,
            'last_error': None,
        }
        action.id = action_id
        return action_id

    async def get_pending_sync_actions(self) -> List[SyncAction]:
        return [action_from_record(copy.deepcopy(self.sync_queue[k]))
                for k in sorted(self.sync_queue)
                if self.sync_queue[k]['status'] in ('pending', 'failed')]

    async def remove_sync_action(self, action_id: int) -> None:
        self.sync_queue.pop(action_id, None)

    async def mark_sync_action_failed(self, action_id: int, error: str) -> None:
        record = self.sync_queue.get(action_id)
        if record is not None:
            record['status'] = ACTION_FAILED
            record['retry_count'] += 1
            record['last_error'] = error

    async def complete_and_enqueue(self, sale: OfflineSale, action: SyncAction) -> int:
        action_id = await self.add_to_sync_queue(action)
        self.pending_sales[sale.temp_id] = sale.to_dict()
        return action_id

    async def commit_synced_sale(self, sale: OfflineSale, action_id: int) -> None:
        self.pending_sales[sale.temp_id] = sale.to_dict()
        self.sync_queue.pop(action_id, None)

    async def save_settings(self, settings: Dict) -> None:
        self.settings = copy.deepcopy(settings)

    async def get_settings(self) -> Optional[Dict]:
        return copy.deepcopy(self.settings)

    async def save_state(self, key: str, value: Any) -> None:
        self.state[key] = copy.deepcopy(value)

    async def load_state(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self.state.get(key, default))

    async def clear_store(self, store_name: str) -> None:
        _check_store(store_name)
        if store_name == SETTINGS:
            self.settings = None
        else:
            getattr(self, store_name).clear()

    async def get_all_from_store(self, store_name: str) -> List[Any]:
        _check_store(store_name)
        if store_name == SETTINGS:
            return [self.settings] if self.settings is not None else []
        if store_name == STATE:
            return [{'key': k, 'value': v} for k, v in self.state.items()]
        collection = getattr(self, store_name)
        return [copy.deepcopy(collection[k]) for k in sorted(collection)]
