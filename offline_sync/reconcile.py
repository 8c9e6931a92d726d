# Reconcile - wire translation and merge of server responses
# OfflineSale -> create-sale payload on the way out, server sale -> OfflineSale on the way back

from dataclasses import replace
from typing import Dict, List, Optional

from .models import STOCKING, OfflineSale, OfflineSaleItem, Payment, normalize_date, round_money


DEFAULT_PAYMENT_METHOD = 'cash'


def _factor(item: OfflineSaleItem, products: Optional[Dict[int, Dict]]) -> float:
    if item.product is not None:
        return item.units_per_stocking_unit
    cached = (products or {}).get(item.product_id) or {}
    factor = cached.get('units_per_stocking_unit')
    return float(factor) if factor else 1.0


def translate_item(item: OfflineSaleItem, products: Optional[Dict[int, Dict]] = None) -> Dict:
    """Backend wants sellable units; stocking lines are scaled by the product factor"""
    quantity = float(item.quantity)
    unit_price = float(item.unit_price)
    if item.unit_type == STOCKING:
        factor = _factor(item, products)
        quantity = quantity * factor
        unit_price = unit_price / factor
    return {
        'product_id': item.product_id,
        'quantity': quantity,
        'unit_price': unit_price,
        'purchase_item_id': item.purchase_item_id,
    }


def to_create_sale_payload(sale: OfflineSale, products: Optional[Dict[int, Dict]] = None) -> Dict:
    """Build the POST /sales body.

    ``products`` is the local product cache keyed by id; it is only consulted
    for lines that carry no product snapshot of their own.
    """
    payload = {
        'client_id': sale.client_id,
        'sale_date': normalize_date(sale.sale_date),
        'status': 'completed',
        'notes': sale.notes,
        # Sent even when None so the server does not guess a shift
        'shift_id': sale.shift_id,
        'client_reference': sale.temp_id,
        'items': [translate_item(item, products) for item in sale.items],
        'payments': [
            {
                'method': p.method,
                'amount': round_money(p.amount),
                'payment_date': normalize_date(p.payment_date),
                'reference_number': p.reference_number,
                'notes': p.notes,
                'client_ref': p.client_ref,
            }
            for p in sale.payments
            if float(p.amount) > 0
        ],
    }
    if sale.discount_amount:
        payload['discount_amount'] = round_money(sale.discount_amount)
        payload['discount_type'] = sale.discount_type
    return payload


def _take_match(server_payment: Dict, candidates: List[Payment]) -> Optional[Payment]:
    """Pop the offline payment that produced server_payment.

    Exact match on the client reference first; otherwise the first unused
    payment with the same amount (in cents) and date.
    """
    ref = server_payment.get('client_ref') or server_payment.get('client_reference')
    match = None
    if ref:
        match = next((p for p in candidates if p.client_ref == ref), None)
    if match is None:
        amount = round_money(server_payment.get('amount'))
        day = normalize_date(server_payment.get('payment_date'))
        match = next(
            (p for p in candidates
             if round_money(p.amount) == amount and normalize_date(p.payment_date) == day),
            None,
        )
    if match is not None:
        candidates.remove(match)
    return match


def merge_payments(server_payments: List[Dict], offline_payments: List[Payment]) -> List[Payment]:
    if not server_payments:
        return [replace(p, method=p.method or DEFAULT_PAYMENT_METHOD) for p in offline_payments]

    unused = list(offline_payments)
    merged = []
    for server_payment in server_payments:
        match = _take_match(server_payment, unused)
        data = dict(server_payment)
        data['method'] = (server_payment.get('method')
                          or (match.method if match else None)
                          or DEFAULT_PAYMENT_METHOD)
        data['payment_date'] = normalize_date(server_payment.get('payment_date'))
        if match is not None:
            data['client_ref'] = match.client_ref
            data.setdefault('reference_number', match.reference_number)
            data.setdefault('notes', match.notes)
        merged.append(Payment.from_dict(data))
    return merged


def merge_synced_sale(offline_sale: OfflineSale, created: Dict) -> OfflineSale:
    """Fold the server's sale into the local one; local items and discount win"""
    paid = created.get('paid_amount')
    return replace(
        offline_sale,
        is_synced=True,
        id=int(created['id']),
        invoice_number=created.get('invoice_number'),
        sale_order_number=created.get('sale_order_number'),
        payments=merge_payments(created.get('payments') or [], offline_sale.payments),
        paid_amount=round_money(paid) if paid else round_money(offline_sale.paid_amount),
        sync_error=None,
    )
