# Models - offline sale aggregate and sync queue actions
# Everything here is plain data; persistence lives in local_store, HTTP in sync_client

import time
import uuid
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, date
from typing import Any, ClassVar, Dict, List, Optional, Union


SELLABLE = 'sellable'
STOCKING = 'stocking'

DRAFT = 'draft'
COMPLETED = 'completed'

PERCENTAGE = 'percentage'
FIXED = 'fixed'

ACTION_PENDING = 'pending'
ACTION_FAILED = 'failed'


def new_temp_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


def today_iso() -> str:
    return date.today().isoformat()


def normalize_date(value) -> str:
    """Reduce a date/datetime/ISO string to YYYY-MM-DD (today if empty)"""
    if not value:
        return today_iso()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).split('T')[0].split(' ')[0]


def round_money(value) -> float:
    """Currency precision (2 dp); accepts the decimal strings the backend returns"""
    return round(float(value or 0), 2)


def _known(cls, data: Dict) -> Dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Payment:
    """One tender applied to a sale"""
    method: Optional[str]
    amount: float
    payment_date: str = field(default_factory=today_iso)
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    # Client-assigned, sent with the sale so the merge can match exactly
    client_ref: str = field(default_factory=new_temp_id)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Payment':
        data = _known(cls, data)
        data['amount'] = float(data.get('amount') or 0)
        data.setdefault('method', None)
        if not data.get('client_ref'):
            data['client_ref'] = new_temp_id()
        return cls(**data)


@dataclass
class OfflineSaleItem:
    """One line of a sale; quantity and price are in the line's unit_type"""
    product_id: int
    quantity: float
    unit_price: float
    product_name: str = ''
    purchase_item_id: Optional[int] = None
    unit_type: str = SELLABLE
    # Snapshot of the cached product at the time it was added
    product: Optional[Dict[str, Any]] = None

    @property
    def units_per_stocking_unit(self) -> float:
        factor = (self.product or {}).get('units_per_stocking_unit')
        return float(factor) if factor else 1.0

    @property
    def line_total(self) -> float:
        return float(self.unit_price) * float(self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'OfflineSaleItem':
        return cls(**_known(cls, data))


@dataclass
class OfflineSale:
    """A sale created on this terminal, synced or not"""
    temp_id: str = field(default_factory=new_temp_id)
    id: int = 0
    is_synced: bool = False
    status: str = DRAFT
    items: List[OfflineSaleItem] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    total_amount: float = 0.0
    paid_amount: float = 0.0
    discount_amount: Optional[float] = None
    discount_type: Optional[str] = None
    shift_id: Optional[int] = None
    user_id: Optional[int] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    notes: Optional[str] = None
    sale_date: str = field(default_factory=today_iso)
    invoice_number: Optional[str] = None
    sale_order_number: Optional[int] = None
    offline_created_at: int = field(default_factory=now_ms)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    sync_error: Optional[str] = None

    @property
    def product_ids(self) -> List[int]:
        return [item.product_id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'OfflineSale':
        data = _known(cls, data)
        data['items'] = [OfflineSaleItem.from_dict(i) for i in data.get('items') or []]
        data['payments'] = [Payment.from_dict(p) for p in data.get('payments') or []]
        return cls(**data)


@dataclass
class CreateSaleAction:
    """Queued request: create this sale on the server"""
    payload: OfflineSale
    id: Optional[int] = None
    enqueued_at: int = field(default_factory=now_ms)
    status: str = ACTION_PENDING
    retry_count: int = 0
    last_error: Optional[str] = None

    type: ClassVar[str] = 'CREATE_SALE'

    @property
    def temp_id(self) -> str:
        return self.payload.temp_id

    def payload_to_dict(self) -> Dict[str, Any]:
        return self.payload.to_dict()

    @classmethod
    def payload_from_dict(cls, data: Dict) -> OfflineSale:
        return OfflineSale.from_dict(data)


@dataclass
class UnknownAction:
    """Row whose type no handler understands; kept so it can be reported"""
    type: str
    raw_payload: Any
    id: Optional[int] = None
    enqueued_at: int = field(default_factory=now_ms)
    status: str = ACTION_PENDING
    retry_count: int = 0
    last_error: Optional[str] = None

    @property
    def temp_id(self) -> Optional[str]:
        if isinstance(self.raw_payload, dict):
            return self.raw_payload.get('temp_id')
        return None

    def payload_to_dict(self) -> Any:
        return self.raw_payload


SyncAction = Union[CreateSaleAction, UnknownAction]

ACTION_TYPES = {
    CreateSaleAction.type: CreateSaleAction,
}


def action_from_record(record: Dict) -> SyncAction:
    """Rebuild a typed action from its stored form"""
    action_type = record.get('type')
    meta = {
        'id': record.get('id'),
        'enqueued_at': record.get('enqueued_at') or now_ms(),
        'status': record.get('status') or ACTION_PENDING,
        'retry_count': record.get('retry_count') or 0,
        'last_error': record.get('last_error'),
    }
    cls = ACTION_TYPES.get(action_type)
    if cls is None:
        return UnknownAction(type=str(action_type), raw_payload=record.get('payload'), **meta)
    return cls(payload=cls.payload_from_dict(record.get('payload') or {}), **meta)


@dataclass
class SyncOutcome:
    """Result of one action within a processing pass"""
    id: int
    success: bool
    error: Optional[BaseException] = None


@dataclass
class SyncResult:
    results: List[SyncOutcome] = field(default_factory=list)
    updated_products: List[Dict[str, Any]] = field(default_factory=list)

    def find(self, action_id: int) -> Optional[SyncOutcome]:
        for outcome in self.results:
            if outcome.id == action_id:
                return outcome
        return None
