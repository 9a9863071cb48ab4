from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_minor_units(amount: int) -> str:
    """Render integer minor units (cents) as a decimal string, e.g. 10050 -> "100.50"."""
    sign = "-" if amount < 0 else ""
    whole, cents = divmod(abs(amount), 100)
    return f"{sign}{whole}.{cents:02d}"


class BillStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


# ---- ledger aggregate ------------------------------------------------------

class Item(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    cost: int
    qty: int

    @computed_field
    @property
    def line_total(self) -> int:
        return self.cost * self.qty


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    bill_id: str
    amount: int
    method: str
    idempotency_key: str
    recorded_at: datetime


class Bill(BaseModel):
    """
    Invoice for one patient encounter.

    total, amount_paid, remaining and status are derived from items, payments
    and the cancelled flag. They are written with each snapshot so the store
    can filter on them, and ignored when a snapshot is loaded back.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    patient_ref: str
    items: Tuple[Item, ...]
    payments: Tuple[Payment, ...] = ()
    cancelled: bool = False
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def total(self) -> int:
        return sum(item.line_total for item in self.items)

    @computed_field
    @property
    def amount_paid(self) -> int:
        return sum(p.amount for p in self.payments)

    @computed_field
    @property
    def remaining(self) -> int:
        return self.total - self.amount_paid

    @computed_field
    @property
    def status(self) -> BillStatus:
        if self.cancelled:
            return BillStatus.CANCELLED
        total, paid = self.total, self.amount_paid
        if total > 0 and paid == total:
            return BillStatus.PAID
        if 0 < paid < total:
            return BillStatus.PARTIAL
        return BillStatus.PENDING

    def find_payment(self, idempotency_key: str) -> Optional[Payment]:
        for payment in self.payments:
            if payment.idempotency_key == idempotency_key:
                return payment
        return None

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["_id"] = doc.pop("id")
        doc["items"] = list(doc["items"])
        doc["payments"] = list(doc["payments"])
        doc["status"] = self.status.value
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Bill":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


# ---- request bodies --------------------------------------------------------

class ItemIn(BaseModel):
    description: str
    cost: StrictInt = Field(description="Unit cost in minor currency units (cents)")
    qty: StrictInt = 1


class CreateBillIn(BaseModel):
    # the web UI posts `patientId`
    patient_ref: str = Field(min_length=1, validation_alias=AliasChoices("patient_ref", "patientId"))
    items: List[ItemIn]


class PaymentIn(BaseModel):
    amount: StrictInt = Field(description="Amount in minor currency units (cents)")
    method: str = Field(min_length=1)
    idempotency_key: Optional[str] = Field(
        default=None,
        min_length=1,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
    )


# ---- responses (decimal display happens only here) -------------------------

class ItemView(BaseModel):
    description: str
    cost: int
    qty: int
    line_total: int
    line_total_display: str

    @classmethod
    def from_item(cls, item: Item) -> "ItemView":
        return cls(
            description=item.description,
            cost=item.cost,
            qty=item.qty,
            line_total=item.line_total,
            line_total_display=format_minor_units(item.line_total),
        )


class PaymentView(BaseModel):
    id: str
    bill_id: str
    amount: int
    amount_display: str
    method: str
    idempotency_key: str
    recorded_at: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentView":
        return cls(amount_display=format_minor_units(payment.amount), **payment.model_dump())


class BillView(BaseModel):
    id: str
    patient_ref: str
    items: List[ItemView]
    payments: List[PaymentView]
    total: int
    total_display: str
    amount_paid: int
    amount_paid_display: str
    remaining: int
    remaining_display: str
    status: BillStatus
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_bill(cls, bill: Bill) -> "BillView":
        return cls(
            id=bill.id,
            patient_ref=bill.patient_ref,
            items=[ItemView.from_item(i) for i in bill.items],
            payments=[PaymentView.from_payment(p) for p in bill.payments],
            total=bill.total,
            total_display=format_minor_units(bill.total),
            amount_paid=bill.amount_paid,
            amount_paid_display=format_minor_units(bill.amount_paid),
            remaining=bill.remaining,
            remaining_display=format_minor_units(bill.remaining),
            status=bill.status,
            version=bill.version,
            created_at=bill.created_at,
            updated_at=bill.updated_at,
        )


class PaymentResult(BaseModel):
    bill: BillView
    payment: PaymentView
