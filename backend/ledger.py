"""
Bill ledger: creation, item addition, payments, cancellation and reads.

Every mutation runs through ConsistencyGuard.with_bill; reads go straight
to the store and may be one committed version behind an in-flight write.
"""
import uuid
from typing import Any, Dict, Iterator, Optional, Tuple

import structlog

from catalog import check_total, validate_item, validate_items
from database import BillStore
from errors import (
    DependencyUnavailableError,
    InvalidStateError,
    LedgerInvariantError,
    NotFoundError,
    UnknownPatientError,
    ValidationError,
)
from guard import ConsistencyGuard, check_invariants
from identity import IdentityLookupError
from payments import apply_payment
from schemas import Bill, BillStatus, Payment, utcnow
from settings import LEDGER_MAX_RETRIES

log = structlog.get_logger(__name__)


class BillLedger:
    def __init__(self, store: BillStore, identity, max_retries: int = LEDGER_MAX_RETRIES):
        self.store = store
        self.identity = identity
        self.guard = ConsistencyGuard(store, max_retries=max_retries)

    def create_bill(self, patient_ref: str, items) -> Bill:
        try:
            exists = self.identity.verify_patient_exists(patient_ref)
        except IdentityLookupError as exc:
            raise DependencyUnavailableError("patient service", str(exc)) from exc
        if not exists:
            raise UnknownPatientError(patient_ref)

        validated = validate_items(items)
        now = utcnow()
        bill = Bill(
            id=uuid.uuid4().hex,
            patient_ref=patient_ref,
            items=validated,
            created_at=now,
            updated_at=now,
        )
        check_invariants(bill)
        self.store.insert(bill)
        log.info("bill_created", bill_id=bill.id, patient_ref=patient_ref, total=bill.total, items=len(validated))
        return bill

    def add_item(self, bill_id: str, item) -> Bill:
        def mutate(bill: Bill) -> Tuple[Bill, None]:
            if bill.status != BillStatus.PENDING:
                raise InvalidStateError(bill.id, bill.status.value, "add items to", [BillStatus.PENDING.value])
            new_item = validate_item(item)
            updated = bill.model_copy(update={"items": bill.items + (new_item,)})
            check_total(updated.total)
            if updated.amount_paid > updated.total:
                raise LedgerInvariantError(
                    f"bill {bill.id} amount paid {updated.amount_paid} exceeds total {updated.total}",
                    bill_id=bill.id,
                )
            return updated, None

        bill, _ = self.guard.with_bill(bill_id, mutate)
        log.info("bill_item_added", bill_id=bill_id, total=bill.total, version=bill.version)
        return bill

    def pay_bill(self, bill_id: str, amount: int, method: str, idempotency_key: str) -> Tuple[Bill, Payment]:
        def mutate(bill: Bill) -> Tuple[Bill, Tuple[Payment, bool]]:
            candidate, payment = apply_payment(bill, amount, method, idempotency_key)
            return candidate, (payment, candidate is bill)

        bill, (payment, replayed) = self.guard.with_bill(bill_id, mutate)
        if replayed:
            if payment.amount != amount:
                log.warning(
                    "bill_payment_key_reused",
                    bill_id=bill_id,
                    idempotency_key=idempotency_key,
                    recorded_amount=payment.amount,
                    requested_amount=amount,
                )
            log.info("bill_payment_replayed", bill_id=bill_id, payment_id=payment.id, version=bill.version)
            return bill, payment

        log.info(
            "bill_payment_applied",
            bill_id=bill_id,
            payment_id=payment.id,
            amount=payment.amount,
            amount_paid=bill.amount_paid,
            status=bill.status.value,
            version=bill.version,
        )
        return bill, payment

    def cancel_bill(self, bill_id: str) -> Bill:
        def mutate(bill: Bill) -> Tuple[Bill, None]:
            if bill.amount_paid != 0 or bill.status not in (BillStatus.PENDING, BillStatus.PARTIAL):
                raise InvalidStateError(bill.id, bill.status.value, "cancel", [BillStatus.PENDING.value])
            return bill.model_copy(update={"cancelled": True}), None

        bill, _ = self.guard.with_bill(bill_id, mutate)
        log.info("bill_cancelled", bill_id=bill_id, version=bill.version)
        return bill

    def get_bill(self, bill_id: str) -> Bill:
        bill = self.store.load(bill_id)
        if bill is None:
            raise NotFoundError(bill_id)
        return bill

    def list_bills(self, patient_ref: Optional[str] = None, status: Optional[BillStatus] = None,
                   limit: int = 0) -> Iterator[Bill]:
        filter_dict: Dict[str, Any] = {}
        if patient_ref:
            filter_dict["patient_ref"] = patient_ref
        if status:
            try:
                filter_dict["status"] = BillStatus(status).value
            except ValueError:
                raise ValidationError(
                    f"unknown status {status!r}", value=status, allowed=[s.value for s in BillStatus]
                )
        return self.store.find(filter_dict, limit=limit)
