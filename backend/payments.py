import uuid
from datetime import datetime
from typing import Optional, Tuple

from catalog import validate_amount
from errors import InvalidStateError, OverpaymentError, ValidationError
from schemas import Bill, BillStatus, Payment, utcnow

PAYABLE = {BillStatus.PENDING, BillStatus.PARTIAL}


def apply_payment(
    bill: Bill,
    amount: int,
    method: str,
    idempotency_key: str,
    now: Optional[datetime] = None,
) -> Tuple[Bill, Payment]:
    """
    Apply one payment to `bill` and return the candidate bill with the payment.

    A key already recorded on the bill is a client retry: the original
    payment comes back with the bill object itself, which tells the
    consistency guard there is nothing to write.
    """
    if not isinstance(idempotency_key, str) or not idempotency_key.strip():
        raise ValidationError("idempotency key must be a non-empty string", value=idempotency_key)

    existing = bill.find_payment(idempotency_key)
    if existing is not None:
        return bill, existing

    amount = validate_amount(amount)
    if not isinstance(method, str) or not method.strip():
        raise ValidationError("payment method must be a non-empty string", value=method)

    if bill.status not in PAYABLE:
        raise InvalidStateError(bill.id, bill.status.value, "pay", [s.value for s in PAYABLE])

    remaining = bill.remaining
    if amount > remaining:
        raise OverpaymentError(bill.id, amount, remaining)

    payment = Payment(
        id=uuid.uuid4().hex,
        bill_id=bill.id,
        amount=amount,
        method=method.strip(),
        idempotency_key=idempotency_key,
        recorded_at=now or utcnow(),
    )
    return bill.model_copy(update={"payments": bill.payments + (payment,)}), payment
