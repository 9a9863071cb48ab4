"""
Line-item and amount validation.

Money is integer minor units (cents) everywhere; floats, strings and bools
are rejected rather than coerced. Nothing here does I/O.
"""
from typing import Any, Iterable, Mapping, Optional, Tuple

from errors import EmptyItemsError, InvalidAmountError, InvalidItemError
from schemas import Item

# Largest amount a stored bill can hold (MongoDB int64)
MAX_MINOR_UNITS = 2**63 - 1


def _is_int(value: Any) -> bool:
    # bool is an int subclass, but True is not a price
    return isinstance(value, int) and not isinstance(value, bool)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def validate_item(item: Any, index: Optional[int] = None) -> Item:
    """Validate one raw line item (a mapping or an `ItemIn`) and return a normalized `Item`."""
    description = _field(item, "description")
    cost = _field(item, "cost")
    qty = _field(item, "qty")

    if not isinstance(description, str) or not description.strip():
        raise InvalidItemError("description must be a non-empty string", "description", description, index)
    if not _is_int(cost):
        raise InvalidItemError(
            f"cost {cost!r} is not an integer amount of minor units", "cost", cost, index
        )
    if cost < 0:
        raise InvalidItemError(f"cost {cost} is below minimum 0", "cost", cost, index, minimum=0)
    if not _is_int(qty):
        raise InvalidItemError(f"qty {qty!r} is not an integer", "qty", qty, index)
    if qty < 1:
        raise InvalidItemError(f"qty {qty} is below minimum 1", "qty", qty, index, minimum=1)
    if cost * qty > MAX_MINOR_UNITS:
        raise InvalidItemError(
            f"line total {cost * qty} exceeds maximum {MAX_MINOR_UNITS}",
            "line_total",
            cost * qty,
            index,
            maximum=MAX_MINOR_UNITS,
        )

    return Item(description=description.strip(), cost=cost, qty=qty)


def validate_items(items: Iterable[Any]) -> Tuple[Item, ...]:
    """Validate every item in input order; order matters for display only."""
    validated = tuple(validate_item(item, index) for index, item in enumerate(items or ()))
    if not validated:
        raise EmptyItemsError()
    check_total(sum(item.line_total for item in validated))
    return validated


def check_total(total: int) -> int:
    """Reject a bill total the store cannot hold."""
    if total > MAX_MINOR_UNITS:
        raise InvalidItemError(
            f"bill total {total} exceeds maximum {MAX_MINOR_UNITS}", "total", total, maximum=MAX_MINOR_UNITS
        )
    return total


def validate_amount(amount: Any) -> int:
    if not _is_int(amount):
        raise InvalidAmountError(
            f"amount {amount!r} is not an integer amount of minor units", value=amount
        )
    if amount <= 0:
        raise InvalidAmountError(f"amount {amount} must be greater than 0", value=amount, minimum=1)
    return amount
