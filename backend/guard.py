from typing import Callable, Tuple, TypeVar

import structlog

from database import BillStore
from errors import ConcurrentModificationError, LedgerInvariantError, NotFoundError
from schemas import Bill, utcnow
from settings import LEDGER_MAX_RETRIES

T = TypeVar("T")

log = structlog.get_logger(__name__)


def check_invariants(bill: Bill) -> None:
    """Raise LedgerInvariantError if `bill` must not be persisted."""
    if not bill.items:
        raise LedgerInvariantError(f"bill {bill.id} has no items", bill_id=bill.id)
    if bill.amount_paid > bill.total:
        raise LedgerInvariantError(
            f"bill {bill.id} amount paid {bill.amount_paid} exceeds total {bill.total}",
            bill_id=bill.id,
            amount_paid=bill.amount_paid,
            total=bill.total,
        )
    keys = [p.idempotency_key for p in bill.payments]
    if len(keys) != len(set(keys)):
        raise LedgerInvariantError(f"bill {bill.id} has duplicate idempotency keys", bill_id=bill.id)


class ConsistencyGuard:
    """
    Optimistic read-compute-write loop for a single bill.

    `fn` receives the latest committed snapshot and returns
    `(candidate, result)`; the committed bill and `result` are handed back
    to the caller. Returning the snapshot itself as the candidate
    means "no change" and skips the write. `fn` may be called more than
    once (the first attempt plus up to `max_retries` retries), so it must
    not have side effects outside the returned values.
    """

    def __init__(self, store: BillStore, max_retries: int = LEDGER_MAX_RETRIES):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.store = store
        self.max_retries = max_retries

    def with_bill(self, bill_id: str, fn: Callable[[Bill], Tuple[Bill, T]]) -> Tuple[Bill, T]:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            bill = self.store.load(bill_id)
            if bill is None:
                raise NotFoundError(bill_id)

            candidate, result = fn(bill)
            if candidate is bill:
                return bill, result

            candidate = candidate.model_copy(update={"version": bill.version + 1, "updated_at": utcnow()})
            check_invariants(candidate)

            if self.store.replace_if_version(candidate, bill.version):
                return candidate, result

            log.warning(
                "bill_version_conflict",
                bill_id=bill_id,
                attempt=attempt,
                expected_version=bill.version,
            )

        raise ConcurrentModificationError(bill_id, attempts)
