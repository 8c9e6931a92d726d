# Tests for payload translation and server-response merge

from offline_sync.models import OfflineSale, OfflineSaleItem, Payment, STOCKING
from offline_sync.reconcile import merge_payments, merge_synced_sale, to_create_sale_payload


def _sale(**kwargs):
    defaults = dict(
        temp_id='T1',
        status='completed',
        sale_date='2024-01-01T09:30:00',
        items=[OfflineSaleItem(product_id=1, quantity=2, unit_price=20, unit_type=STOCKING,
                               product={'id': 1, 'units_per_stocking_unit': 5})],
        payments=[Payment(method='visa', amount=50, payment_date='2024-01-01', client_ref='p1')],
        total_amount=40,
        paid_amount=50,
        discount_amount=5,
        discount_type='fixed',
    )
    defaults.update(kwargs)
    return OfflineSale(**defaults)


class TestTranslation:
    """Test OfflineSale -> create-sale payload"""

    def test_stocking_units_converted_to_sellable(self):
        payload = to_create_sale_payload(_sale())

        item = payload['items'][0]
        assert item['quantity'] == 10
        assert item['unit_price'] == 4
        assert item['quantity'] * item['unit_price'] == 2 * 20

    def test_factor_from_cache_when_item_has_no_snapshot(self):
        sale = _sale(items=[OfflineSaleItem(product_id=9, quantity=3, unit_price=12, unit_type=STOCKING)])

        payload = to_create_sale_payload(sale, {9: {'id': 9, 'units_per_stocking_unit': 4}})

        assert payload['items'][0]['quantity'] == 12
        assert payload['items'][0]['unit_price'] == 3

    def test_sellable_items_unchanged(self):
        sale = _sale(items=[OfflineSaleItem(product_id=2, quantity=3, unit_price=7, purchase_item_id=44)])

        item = to_create_sale_payload(sale)['items'][0]

        assert item == {'product_id': 2, 'quantity': 3, 'unit_price': 7, 'purchase_item_id': 44}

    def test_zero_payments_dropped_and_dates_normalized(self):
        sale = _sale(payments=[
            Payment(method='cash', amount=0, payment_date='2024-01-01'),
            Payment(method='cash', amount=30, payment_date='2024-01-02T18:00:00Z'),
        ])

        payments = to_create_sale_payload(sale)['payments']

        assert len(payments) == 1
        assert payments[0]['payment_date'] == '2024-01-02'

    def test_discount_and_header_fields_sent(self):
        payload = to_create_sale_payload(_sale(shift_id=None))

        assert payload['discount_amount'] == 5
        assert payload['discount_type'] == 'fixed'
        assert payload['sale_date'] == '2024-01-01'
        assert payload['status'] == 'completed'
        assert payload['client_reference'] == 'T1'
        assert 'shift_id' in payload and payload['shift_id'] is None

    def test_money_sent_at_cent_precision(self):
        sale = _sale(payments=[Payment(method='visa', amount=0.1 * 3, payment_date='2024-01-01')],
                     discount_amount=0.1 + 0.2)

        payload = to_create_sale_payload(sale)

        assert payload['payments'][0]['amount'] == 0.3
        assert payload['discount_amount'] == 0.3

    def test_no_discount_keys_without_discount(self):
        payload = to_create_sale_payload(_sale(discount_amount=None, discount_type=None))

        assert 'discount_amount' not in payload


class TestMerge:
    """Test server sale -> local sale"""

    def test_method_backfilled_by_amount_and_date(self):
        offline = [Payment(method='visa', amount=50, payment_date='2024-01-01')]

        merged = merge_payments([{'amount': 50, 'payment_date': '2024-01-01'}], offline)

        assert merged[0].method == 'visa'

    def test_fallback_match_compares_cents(self):
        offline = [Payment(method='visa', amount=0.1 * 3, payment_date='2024-01-01')]

        merged = merge_payments([{'amount': '0.30', 'payment_date': '2024-01-01'}], offline)

        assert merged[0].method == 'visa'
        assert merged[0].client_ref == offline[0].client_ref

    def test_unmatched_payment_defaults_to_cash(self):
        offline = [Payment(method='visa', amount=50, payment_date='2024-01-01')]

        merged = merge_payments([{'amount': 70, 'payment_date': '2024-01-01'}], offline)

        assert merged[0].method == 'cash'

    def test_server_method_wins(self):
        offline = [Payment(method='visa', amount=50, payment_date='2024-01-01')]

        merged = merge_payments([{'amount': 50, 'payment_date': '2024-01-01', 'method': 'card'}], offline)

        assert merged[0].method == 'card'

    def test_equal_tenders_matched_exactly_by_client_ref(self):
        offline = [
            Payment(method='cash', amount=25, payment_date='2024-01-01', client_ref='a'),
            Payment(method='visa', amount=25, payment_date='2024-01-01', client_ref='b'),
        ]
        server = [
            {'amount': 25, 'payment_date': '2024-01-01', 'client_ref': 'b'},
            {'amount': 25, 'payment_date': '2024-01-01', 'client_ref': 'a'},
        ]

        merged = merge_payments(server, offline)

        assert [p.method for p in merged] == ['visa', 'cash']

    def test_each_offline_payment_used_once(self):
        offline = [
            Payment(method='cash', amount=25, payment_date='2024-01-01'),
            Payment(method='visa', amount=25, payment_date='2024-01-01'),
        ]
        server = [{'amount': 25, 'payment_date': '2024-01-01'}] * 2

        merged = merge_payments(server, offline)

        assert [p.method for p in merged] == ['cash', 'visa']

    def test_empty_server_payments_keep_offline_list(self):
        offline = [Payment(method=None, amount=50, payment_date='2024-01-01')]

        merged = merge_payments([], offline)

        assert len(merged) == 1
        assert merged[0].method == 'cash'
        assert merged[0].amount == 50

    def test_merge_takes_server_ids_and_keeps_local_fields(self):
        sale = _sale()
        created = {'id': 321, 'invoice_number': 'INV-321', 'sale_order_number': 8,
                   'paid_amount': '50.00', 'discount_amount': None,
                   'payments': [{'id': 1, 'amount': '50.00', 'payment_date': '2024-01-01'}]}

        merged = merge_synced_sale(sale, created)

        assert merged.id == 321
        assert merged.is_synced is True
        assert merged.invoice_number == 'INV-321'
        assert merged.sale_order_number == 8
        assert merged.paid_amount == 50
        assert merged.payments[0].method == 'visa'
        assert merged.temp_id == 'T1'
        assert merged.items == sale.items
        assert merged.discount_amount == 5
        assert merged.discount_type == 'fixed'

    def test_missing_paid_amount_falls_back_to_offline(self):
        merged = merge_synced_sale(_sale(), {'id': 1, 'payments': []})

        assert merged.paid_amount == 50
