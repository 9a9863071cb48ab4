from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every failure the billing ledger reports to callers."""

    code = "ledger_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# Validation: caller's fault, never retried

class ValidationError(LedgerError):
    code = "validation_error"


class EmptyItemsError(ValidationError):
    code = "empty_items"

    def __init__(self):
        super().__init__("a bill needs at least 1 item, got 0", count=0, minimum=1)


class InvalidItemError(ValidationError):
    code = "invalid_item"

    def __init__(self, message: str, field: str, value: Any, index: Optional[int] = None, **bound: Any):
        if index is not None:
            message = f"item {index}: {message}"
        super().__init__(message, field=field, value=value, index=index, **bound)


class InvalidAmountError(ValidationError):
    code = "invalid_amount"


# State conflicts: caller may retry after inspecting the bill

class InvalidStateError(LedgerError):
    code = "invalid_state"

    def __init__(self, bill_id: str, status: str, operation: str, allowed):
        allowed = sorted(allowed)
        super().__init__(
            f"cannot {operation} bill {bill_id} in status {status}; allowed: {', '.join(allowed)}",
            bill_id=bill_id,
            status=status,
            operation=operation,
            allowed=allowed,
        )


class OverpaymentError(LedgerError):
    code = "overpayment"

    def __init__(self, bill_id: str, amount: int, remaining: int):
        super().__init__(
            f"amount {amount} exceeds remaining balance {remaining}",
            bill_id=bill_id,
            amount=amount,
            remaining=remaining,
        )


class ConcurrentModificationError(LedgerError):
    code = "concurrent_modification"

    def __init__(self, bill_id: str, attempts: int):
        super().__init__(
            f"bill {bill_id} kept changing underneath us; gave up after {attempts} attempts",
            bill_id=bill_id,
            attempts=attempts,
        )


class NotFoundError(LedgerError):
    code = "not_found"

    def __init__(self, bill_id: str):
        super().__init__(f"bill {bill_id} not found", bill_id=bill_id)


class UnknownPatientError(LedgerError):
    code = "unknown_patient"

    def __init__(self, patient_ref: str):
        super().__init__(f"patient {patient_ref} does not exist", patient_ref=patient_ref)


class DependencyUnavailableError(LedgerError):
    code = "dependency_unavailable"

    def __init__(self, dependency: str, reason: str):
        super().__init__(f"{dependency} unavailable: {reason}", dependency=dependency, reason=reason)


class LedgerInvariantError(LedgerError):
    """A candidate bill broke an invariant; nothing was written."""

    code = "invariant_violation"
