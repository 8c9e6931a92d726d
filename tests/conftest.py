# Shared fixtures: an in-memory store and a scriptable fake backend

import pytest

from offline_sync.errors import BackendUnavailableError
from offline_sync.local_store import InMemoryLocalStore


class MockBackend:
    """Records every call; fails create_sale for temp_ids listed in fail_on"""

    def __init__(self, products=None, online=True, omit_payment_method=False):
        self.online = online
        self.omit_payment_method = omit_payment_method
        self.products = {p['id']: dict(p) for p in products or []}
        self.fail_on = set()
        self.fail_product_fetch = False
        self.created = []
        self.create_calls = []
        self.product_fetches = []

    async def create_sale(self, payload):
        self.create_calls.append(payload)
        if payload['client_reference'] in self.fail_on:
            raise BackendUnavailableError("Simulated network error")
        sale_id = 100 + len(self.created) + 1
        payments = []
        for p in payload['payments']:
            payment = {'id': sale_id * 10 + len(payments), 'amount': p['amount'],
                       'payment_date': p['payment_date']}
            if not self.omit_payment_method:
                payment['method'] = p['method']
            payments.append(payment)
        sale = dict(payload, id=sale_id, invoice_number=f"INV-{sale_id}",
                    sale_order_number=len(self.created) + 1, payments=payments,
                    paid_amount=sum(p['amount'] for p in payments))
        self.created.append(sale)
        return sale

    async def get_products_by_ids(self, ids):
        ids = sorted(set(ids))
        self.product_fetches.append(ids)
        if self.fail_product_fetch:
            raise BackendUnavailableError("Simulated product fetch failure")
        return [dict(self.products[i]) for i in ids if i in self.products]

    async def get_products(self, page=1, per_page=1000, warehouse_id=None):
        products = [dict(self.products[k]) for k in sorted(self.products)]
        return {'data': products if page == 1 else [], 'meta': {'current_page': page, 'last_page': 1}}

    async def get_clients(self, page=1):
        return {'data': [], 'current_page': page, 'last_page': 1}

    async def check_health(self, timeout=None):
        return self.online


PRODUCTS = [
    {'id': 1, 'name': 'Paracetamol 500mg', 'sku': 'PAR-500', 'stock_quantity': 100,
     'units_per_stocking_unit': 5, 'last_sale_price_per_sellable_unit': 4},
    {'id': 2, 'name': 'Vitamin C', 'sku': 'VIT-C', 'stock_quantity': 50,
     'units_per_stocking_unit': 1, 'last_sale_price_per_sellable_unit': 10},
    {'id': 3, 'name': 'Bandage', 'sku': 'BND-01', 'stock_quantity': 0,
     'units_per_stocking_unit': 10, 'last_sale_price_per_sellable_unit': 2},
]


@pytest.fixture
def products():
    return [dict(p) for p in PRODUCTS]


@pytest.fixture
def store():
    return InMemoryLocalStore()


@pytest.fixture
def backend(products):
    return MockBackend(products=products)
