# Sync Client - REST API client for the offline POS
# Creates sales on the backend and fetches reference data for the local cache

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from .errors import (
    AuthenticationError, BackendError, BackendUnavailableError, ServerError, ValidationError,
)
from .models import normalize_date


logger = logging.getLogger(__name__)


def _raise_for_status(response: requests.Response):
    """Translate an HTTP status into the sync error taxonomy"""
    status = response.status_code
    if 200 <= status < 300:
        return
    try:
        body = response.json()
    except ValueError:
        body = response.text
    message = body.get('message') if isinstance(body, dict) else None
    message = message or f"HTTP {status} from {response.url}"

    if status in (400, 422):
        raise ValidationError(message, status, body)
    if status in (401, 403):
        raise AuthenticationError(message, status, body)
    if status >= 500:
        raise ServerError(message, status, body)
    raise BackendError(message, status, body)


def _unwrap_list(payload, *keys) -> List[Dict]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


class SyncClient:
    """REST API client for the sales backend"""

    def __init__(self, base_url: str, api_key: str = None, timeout: int = 30,
                 max_retries: int = 3, retry_delay: float = 2, health_path: str = '/health'):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.health_path = health_path if health_path.startswith('/') else '/' + health_path
        self.session = requests.Session()

        if api_key:
            self.session.headers.update({'Authorization': f'Bearer {api_key}'})

        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': 'Offline-POS-Sync/1.0'
        })

        # Retry settings (GET only)
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _send(self, method: str, path: str, timeout=None, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method,
                f"{self.base_url}{path}",
                timeout=timeout or self.timeout,
                **kwargs
            )
        except requests.exceptions.Timeout as e:
            raise BackendUnavailableError(f"Timeout on {method} {path}") from e
        except requests.exceptions.ConnectionError as e:
            raise BackendUnavailableError(f"Connection error on {method} {path}") from e

    async def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        response = await asyncio.to_thread(self._send, method, path, **kwargs)
        _raise_for_status(response)
        return response

    async def _get_json(self, path: str, params=None) -> Any:
        """GET with linear backoff on timeouts, connection errors and 5xx"""
        attempts = max(1, self.max_retries)
        for attempt in range(attempts):
            try:
                response = await self._request('GET', path, params=params)
                return response.json()
            except (BackendUnavailableError, ServerError) as e:
                if attempt + 1 >= attempts:
                    raise
                logger.warning(f"{e}, retry {attempt + 1}/{attempts}")
                await asyncio.sleep(self.retry_delay * (attempt + 1))

    async def create_sale(self, sale_data: Dict) -> Dict:
        """POST /sales once; the sync queue owns retrying"""
        response = await self._request('POST', '/sales', json=sale_data)
        body = response.json()
        sale = body['sale'] if isinstance(body, dict) and isinstance(body.get('sale'), dict) else body
        logger.info(f"Sale created on server: id={sale.get('id')} invoice={sale.get('invoice_number')}")
        return sale

    async def get_products_by_ids(self, ids: Iterable[int]) -> List[Dict]:
        ids = sorted(set(ids))
        if not ids:
            return []
        body = await self._get_json('/products', params={'ids': ','.join(str(i) for i in ids)})
        return _unwrap_list(body, 'data', 'products')

    async def get_products(self, page: int = 1, per_page: int = 1000,
                           warehouse_id: Optional[int] = None) -> Dict:
        params = {'page': page, 'per_page': per_page, 'sort_by': 'name', 'sort_direction': 'asc'}
        if warehouse_id is not None:
            params['warehouse_id'] = warehouse_id
        return await self._get_json('/products', params=params)

    async def get_clients(self, page: int = 1) -> Dict:
        return await self._get_json('/clients', params={'page': page})

    async def check_health(self, timeout: float = None) -> bool:
        """Check if server is reachable; any HTTP answer counts"""
        try:
            await asyncio.to_thread(self._send, 'GET', self.health_path, timeout=timeout or 3)
            return True
        except BackendUnavailableError as e:
            logger.debug(f"Health check failed: {e}")
            return False


# Stub implementation for running without a server
class StubSyncClient:
    """In-process backend: assigns ids and invoice numbers, tracks stock"""

    def __init__(self, products: List[Dict] = None, clients: List[Dict] = None,
                 online: bool = True, omit_payment_method: bool = False):
        self.products = {p['id']: dict(p) for p in products or []}
        self.clients = list(clients or [])
        self.online = online
        self.omit_payment_method = omit_payment_method
        self.sales: List[Dict] = []

    async def create_sale(self, sale_data: Dict) -> Dict:
        if not self.online:
            raise BackendUnavailableError("Stub backend offline")
        items = [i for i in sale_data.get('items', []) if i['product_id'] in self.products]
        for item in items:
            product = self.products[item['product_id']]
            if item['quantity'] > product.get('stock_quantity', 0):
                message = f"Insufficient stock for {product.get('name')}"
                raise ValidationError(message, 422, {'message': message})
        for item in items:
            product = self.products[item['product_id']]
            product['stock_quantity'] = product.get('stock_quantity', 0) - item['quantity']

        sale_id = len(self.sales) + 1
        payments = []
        for i, p in enumerate(sale_data.get('payments') or [], start=1):
            payment = dict(p, id=sale_id * 100 + i, payment_date=normalize_date(p.get('payment_date')))
            if self.omit_payment_method:
                payment.pop('method', None)
            payments.append(payment)
        sale = dict(
            sale_data,
            id=sale_id,
            invoice_number=f"INV-{sale_id:05d}",
            sale_order_number=sale_id,
            payments=payments,
            paid_amount=sum(float(p['amount']) for p in payments),
        )
        self.sales.append(sale)
        logger.info(f"[STUB] Created sale {sale['invoice_number']}")
        return sale

    async def get_products_by_ids(self, ids: Iterable[int]) -> List[Dict]:
        return [dict(self.products[i]) for i in sorted(set(ids)) if i in self.products]

    async def get_products(self, page: int = 1, per_page: int = 1000,
                           warehouse_id: Optional[int] = None) -> Dict:
        products = [dict(self.products[k]) for k in sorted(self.products)]
        last_page = max(1, -(-len(products) // per_page))
        start = (page - 1) * per_page
        return {
            'data': products[start:start + per_page],
            'meta': {'current_page': page, 'last_page': last_page},
        }

    async def get_clients(self, page: int = 1) -> Dict:
        return {'data': list(self.clients) if page == 1 else [], 'current_page': page, 'last_page': 1}

    async def check_health(self, timeout: float = None) -> bool:
        return self.online
