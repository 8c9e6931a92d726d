# Draft Aggregate Builder - builds and edits an offline sale in memory
# Every edit returns a new OfflineSale with totals recomputed; nothing here does I/O

import math
from dataclasses import replace
from typing import Dict, Optional

from .errors import InsufficientStockError
from .models import (
    DRAFT, FIXED, PERCENTAGE, SELLABLE, STOCKING,
    OfflineSale, OfflineSaleItem, Payment, normalize_date, round_money,
)


UNIT_TYPES = (SELLABLE, STOCKING)
DISCOUNT_TYPES = (PERCENTAGE, FIXED)


def create_draft_sale(shift_id: Optional[int] = None, user_id: Optional[int] = None) -> OfflineSale:
    """New empty draft with a fresh temp_id"""
    return OfflineSale(status=DRAFT, shift_id=shift_id, user_id=user_id)


def calculate_totals(sale: OfflineSale) -> OfflineSale:
    """Recompute total_amount = max(0, gross - discount), rounded to cents.

    The discount fields are passed through explicitly so that no caller
    composing a new sale from this one can drop them.
    """
    gross = sum(float(item.unit_price) * float(item.quantity) for item in sale.items)

    total = gross
    if sale.discount_amount:
        amount = float(sale.discount_amount)
        if sale.discount_type == PERCENTAGE:
            total = gross - gross * amount / 100
        else:
            total = gross - amount

    return replace(
        sale,
        total_amount=round_money(total) if total > 0 else 0.0,
        discount_amount=sale.discount_amount,
        discount_type=sale.discount_type,
    )


def _ensure_draft(sale: OfflineSale):
    if sale.status != DRAFT:
        raise ValueError(f"Sale {sale.temp_id} is {sale.status}; only drafts can be edited")


def units_per_stocking_unit(product: Optional[Dict]) -> float:
    factor = (product or {}).get('units_per_stocking_unit')
    return float(factor) if factor else 1.0


def product_stock(product: Optional[Dict]) -> float:
    """Stock in sellable units"""
    product = product or {}
    stock = product.get('current_stock_quantity')
    if stock is None:
        stock = product.get('stock_quantity')
    return float(stock or 0)


def price_for_unit_type(product: Dict, unit_type: str = SELLABLE) -> float:
    """Last sellable-unit sale price (or first batch price), scaled for stocking units"""
    price = float(product.get('last_sale_price_per_sellable_unit') or 0)
    batches = product.get('available_batches') or []
    if price == 0 and batches:
        price = float(batches[0].get('sale_price') or 0)
    if unit_type == STOCKING:
        return price * units_per_stocking_unit(product)
    return price


def _to_sellable(quantity: float, unit_type: str, factor: float) -> float:
    return quantity * factor if unit_type == STOCKING else quantity


def _with_items(sale: OfflineSale, items) -> OfflineSale:
    return calculate_totals(replace(sale, items=list(items)))


def _find_item(sale: OfflineSale, product_id: int) -> OfflineSaleItem:
    for item in sale.items:
        if item.product_id == product_id:
            return item
    raise KeyError(f"Product {product_id} is not on sale {sale.temp_id}")


def add_product(sale: OfflineSale, product: Dict, unit_type: str = SELLABLE) -> OfflineSale:
    """Add one unit of product, merging into an existing line for the same product"""
    _ensure_draft(sale)
    if unit_type not in UNIT_TYPES:
        raise ValueError(f"Unknown unit type: {unit_type}")

    factor = units_per_stocking_unit(product)
    stock = product_stock(product)
    if stock <= 0:
        raise InsufficientStockError(f"{product.get('name')} is out of stock", available=stock)
    if unit_type == STOCKING and math.floor(stock / factor) <= 0:
        raise InsufficientStockError(
            f"Not enough stock of {product.get('name')} for one stocking unit", available=stock
        )

    price = price_for_unit_type(product, unit_type)
    existing = next((i for i in sale.items if i.product_id == product['id']), None)

    if existing is None:
        new_item = OfflineSaleItem(
            product_id=product['id'],
            product_name=product.get('name') or '',
            quantity=1,
            unit_price=price,
            unit_type=unit_type,
            product=dict(product),
        )
        return _with_items(sale, sale.items + [new_item])

    if existing.unit_type == unit_type:
        updated = replace(existing, quantity=existing.quantity + 1)
    else:
        # Different unit: combine in sellable units, then express in the new unit
        total_sellable = (_to_sellable(existing.quantity, existing.unit_type, factor)
                          + _to_sellable(1, unit_type, factor))
        quantity = math.floor(total_sellable / factor) if unit_type == STOCKING else total_sellable
        updated = replace(existing, quantity=quantity, unit_price=price, unit_type=unit_type)

    return _with_items(sale, [updated if i is existing else i for i in sale.items])


def update_quantity(sale: OfflineSale, product_id: int, quantity: float) -> OfflineSale:
    _ensure_draft(sale)
    if quantity <= 0:
        raise ValueError("Quantity must be positive")
    item = _find_item(sale, product_id)
    if item.product is not None:
        stock = product_stock(item.product)
        if _to_sellable(quantity, item.unit_type, item.units_per_stocking_unit) > stock:
            raise InsufficientStockError(
                f"Not enough stock of {item.product_name}: {stock:g} available", available=stock
            )
    return _with_items(sale, [replace(i, quantity=quantity) if i is item else i for i in sale.items])


def update_unit_price(sale: OfflineSale, product_id: int, unit_price: float) -> OfflineSale:
    _ensure_draft(sale)
    item = _find_item(sale, product_id)
    return _with_items(sale, [replace(i, unit_price=unit_price) if i is item else i for i in sale.items])


def switch_unit_type(sale: OfflineSale, product_id: int, unit_type: str) -> OfflineSale:
    """Re-express a line in the other unit, repricing it from the product snapshot"""
    _ensure_draft(sale)
    if unit_type not in UNIT_TYPES:
        raise ValueError(f"Unknown unit type: {unit_type}")
    item = _find_item(sale, product_id)
    if item.unit_type == unit_type:
        return sale

    factor = item.units_per_stocking_unit
    sellable = _to_sellable(item.quantity, item.unit_type, factor)
    if unit_type == STOCKING:
        quantity = math.floor(sellable / factor)
        if quantity == 0:
            raise InsufficientStockError(
                f"{sellable:g} units of {item.product_name} do not fill one stocking unit of {factor:g}",
                available=sellable,
            )
    else:
        quantity = sellable

    price = price_for_unit_type(item.product or {}, unit_type)
    updated = replace(item, quantity=quantity, unit_price=price, unit_type=unit_type)
    return _with_items(sale, [updated if i is item else i for i in sale.items])


def remove_item(sale: OfflineSale, product_id: int) -> OfflineSale:
    _ensure_draft(sale)
    return _with_items(sale, [i for i in sale.items if i.product_id != product_id])


def set_batch(sale: OfflineSale, product_id: int, batch_id: Optional[int], unit_price: float) -> OfflineSale:
    """Pin a line to a purchase batch (purchase_item_id) and its price"""
    _ensure_draft(sale)
    item = _find_item(sale, product_id)
    updated = replace(item, purchase_item_id=batch_id, unit_price=unit_price)
    return _with_items(sale, [updated if i is item else i for i in sale.items])


def set_discount(sale: OfflineSale, amount: Optional[float], discount_type: Optional[str]) -> OfflineSale:
    _ensure_draft(sale)
    if amount and discount_type not in DISCOUNT_TYPES:
        raise ValueError(f"Unknown discount type: {discount_type}")
    if amount is not None and amount < 0:
        raise ValueError("Discount cannot be negative")
    if not amount:
        amount, discount_type = None, None
    return calculate_totals(replace(sale, discount_amount=amount, discount_type=discount_type))


def _with_payments(sale: OfflineSale, payments) -> OfflineSale:
    payments = list(payments)
    return calculate_totals(replace(
        sale,
        payments=payments,
        paid_amount=round_money(sum(float(p.amount) for p in payments)),
    ))


def add_payment(sale: OfflineSale, method: str, amount: float, payment_date=None,
                reference_number: str = None, notes: str = None) -> OfflineSale:
    _ensure_draft(sale)
    payment = Payment(
        method=method,
        amount=round_money(amount),
        payment_date=normalize_date(payment_date),
        reference_number=reference_number,
        notes=notes,
    )
    return _with_payments(sale, sale.payments + [payment])


def remove_payment(sale: OfflineSale, client_ref: str) -> OfflineSale:
    _ensure_draft(sale)
    return _with_payments(sale, [p for p in sale.payments if p.client_ref != client_ref])
