"""
Quantity Ledger - conservation bookkeeping for stages and process records

    input = output + loss + pending

All arithmetic is Decimal. Functions take a StageQuantities and return a new
one; nothing here touches the database.
"""
from decimal import Decimal, InvalidOperation
from typing import Optional

from models.production import StageQuantities, StageStatus, ZERO
from services.production_errors import QuantityInvariantViolation, InvalidTransition

INPUT_OPEN_STATUSES = {StageStatus.PENDING, StageStatus.IN_PROGRESS}
OUTPUT_OPEN_STATUSES = {StageStatus.IN_PROGRESS, StageStatus.ON_HOLD, StageStatus.QUALITY_HOLD}


def to_quantity(value, field: str = "quantity") -> Decimal:
    """Coerce a figure to a non-negative Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    try:
        qty = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise QuantityInvariantViolation(f"{field} is not a number: {value!r}")
    if not qty.is_finite():
        raise QuantityInvariantViolation(f"{field} must be finite")
    if qty < 0:
        raise QuantityInvariantViolation(f"{field} must be non-negative (got {qty})")
    return qty


def _derive(input_qty: Decimal, output_qty: Decimal, loss_qty: Decimal) -> StageQuantities:
    return StageQuantities(
        input_quantity=input_qty,
        output_quantity=output_qty,
        loss_quantity=loss_qty,
        pending_quantity=input_qty - output_qty - loss_qty,
    )


def record_input(quantities: StageQuantities, status: StageStatus, input_quantity) -> StageQuantities:
    """Set the stage input; only while the stage is pending or in progress."""
    if status not in INPUT_OPEN_STATUSES:
        raise InvalidTransition("record input", status.value)
    input_qty = to_quantity(input_quantity, "input_quantity")
    booked = quantities.output_quantity + quantities.loss_quantity
    if booked > input_qty:
        raise QuantityInvariantViolation(
            f"Input ({input_qty}) cannot be less than output + loss already recorded ({booked})"
        )
    return _derive(input_qty, quantities.output_quantity, quantities.loss_quantity)


def record_output(quantities: StageQuantities, output_quantity, loss_quantity=None) -> StageQuantities:
    """Book output and loss against the current input.

    output + loss may equal input (pending becomes 0) but never exceed it.
    Each call replaces the previous figures; they are cumulative totals.
    """
    output_qty = to_quantity(output_quantity, "output_quantity")
    loss_qty = to_quantity(loss_quantity, "loss_quantity")
    total = output_qty + loss_qty
    if total > quantities.input_quantity:
        raise QuantityInvariantViolation(
            f"Total output ({total}) cannot exceed input ({quantities.input_quantity})"
        )
    return _derive(quantities.input_quantity, output_qty, loss_qty)


def book_output(quantities: StageQuantities, output_quantity=None, loss_quantity=None) -> StageQuantities:
    """Book a partial output update; a figure left out keeps its recorded value."""
    if output_quantity is None and loss_quantity is None:
        return quantities
    if output_quantity is None:
        output_quantity = quantities.output_quantity
    if loss_quantity is None:
        loss_quantity = quantities.loss_quantity
    return record_output(quantities, output_quantity, loss_quantity)


def ensure_output_open(status: StageStatus) -> None:
    if status not in OUTPUT_OPEN_STATUSES:
        raise InvalidTransition("record output", status.value)


def is_fully_consumed(quantities: StageQuantities) -> bool:
    return quantities.pending_quantity == 0


def check_conservation(quantities: StageQuantities) -> bool:
    input_qty, output_qty, loss_qty, pending_qty = quantities.as_tuple()
    return (
        min(input_qty, output_qty, loss_qty, pending_qty) >= 0
        and input_qty == output_qty + loss_qty + pending_qty
    )


def repair_pending(quantities: StageQuantities) -> Optional[StageQuantities]:
    """Recompute pending from input/output/loss.

    Returns the repaired ledger, or None if it already balances. Output + loss
    beyond input cannot be repaired by arithmetic and is reported instead.
    """
    if check_conservation(quantities):
        return None
    booked = quantities.output_quantity + quantities.loss_quantity
    if booked > quantities.input_quantity:
        raise QuantityInvariantViolation(
            f"Recorded output + loss ({booked}) exceeds input ({quantities.input_quantity})"
        )
    return _derive(quantities.input_quantity, quantities.output_quantity, quantities.loss_quantity)
