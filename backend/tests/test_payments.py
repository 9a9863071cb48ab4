import pytest

from errors import InvalidAmountError, InvalidStateError, OverpaymentError, ValidationError
from payments import apply_payment
from schemas import Bill, BillStatus, Item, utcnow


def make_bill(cost=10000, cancelled=False):
    now = utcnow()
    return Bill(
        id="b1",
        patient_ref="P1",
        items=(Item(description="Consultation", cost=cost, qty=1),),
        cancelled=cancelled,
        created_at=now,
        updated_at=now,
    )


def test_partial_payment():
    bill, payment = apply_payment(make_bill(), 4000, "cash", "k1")
    assert payment.amount == 4000
    assert payment.bill_id == "b1"
    assert bill.amount_paid == 4000
    assert bill.remaining == 6000
    assert bill.status == BillStatus.PARTIAL


def test_paying_exact_remaining_marks_paid():
    bill, _ = apply_payment(make_bill(), 4000, "cash", "k1")
    bill, _ = apply_payment(bill, 6000, "card", "k2")
    assert bill.amount_paid == 10000
    assert bill.status == BillStatus.PAID


def test_one_unit_over_remaining_is_rejected():
    bill, _ = apply_payment(make_bill(), 4000, "cash", "k1")
    with pytest.raises(OverpaymentError) as exc:
        apply_payment(bill, 6001, "cash", "k2")
    assert exc.value.details == {"bill_id": "b1", "amount": 6001, "remaining": 6000}
    assert bill.amount_paid == 4000


def test_overpayment_message_names_amount_and_remaining():
    bill, _ = apply_payment(make_bill(cost=100), 40, "cash", "k1")
    with pytest.raises(OverpaymentError) as exc:
        apply_payment(bill, 150, "cash", "k2")
    assert exc.value.message == "amount 150 exceeds remaining balance 60"


def test_known_key_returns_original_payment_unchanged():
    bill, first = apply_payment(make_bill(), 4000, "cash", "k1")
    again, second = apply_payment(bill, 4000, "cash", "k1")
    assert again is bill
    assert second == first
    assert len(again.payments) == 1


def test_known_key_wins_over_validation():
    bill, first = apply_payment(make_bill(), 10000, "cash", "k1")
    # bill is paid now, but the retry still gets its original answer
    again, second = apply_payment(bill, 10000, "cash", "k1")
    assert again is bill
    assert second.id == first.id


def test_paid_bill_rejects_payment_with_state_error():
    bill, _ = apply_payment(make_bill(), 10000, "cash", "k1")
    with pytest.raises(InvalidStateError) as exc:
        apply_payment(bill, 1, "cash", "k3")
    assert exc.value.details["status"] == "paid"


def test_cancelled_bill_rejects_payment():
    with pytest.raises(InvalidStateError):
        apply_payment(make_bill(cancelled=True), 100, "cash", "k1")


@pytest.mark.parametrize("amount", [0, -100, 12.5])
def test_invalid_amount(amount):
    with pytest.raises(InvalidAmountError):
        apply_payment(make_bill(), amount, "cash", "k1")


@pytest.mark.parametrize("key", ["", "  ", None])
def test_idempotency_key_required(key):
    with pytest.raises(ValidationError):
        apply_payment(make_bill(), 100, "cash", key)


def test_method_required():
    with pytest.raises(ValidationError):
        apply_payment(make_bill(), 100, "", "k1")
