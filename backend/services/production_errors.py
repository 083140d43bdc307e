"""
Production flow errors

Every failure that crosses the production-flow service boundary is one of
these types. Routers never inspect messages; they rely on `code` and
`status_code`.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class ProductionError(Exception):
    code = "production_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class InvalidTransition(ProductionError):
    """Requested operation is not legal from the stage's current status"""
    code = "invalid_transition"
    status_code = 409

    def __init__(self, operation: str, current_status: str, stage_number: Optional[int] = None):
        where = f"Stage {stage_number}" if stage_number is not None else "Stage"
        super().__init__(f"Cannot {operation} - {where} is {current_status}")
        self.operation = operation
        self.current_status = current_status
        self.stage_number = stage_number


class QuantityInvariantViolation(ProductionError):
    """Output + loss would exceed recorded input (or a figure is negative)"""
    code = "quantity_invariant_violation"
    status_code = 422


class InvalidStagePayload(ProductionError):
    """Payload tagged for a different process type than the stage"""
    code = "invalid_stage_payload"
    status_code = 400


class ConcurrencyTimeout(ProductionError):
    """Stage lock (or a conflicting revision) did not clear in time"""
    code = "concurrency_timeout"
    status_code = 503


class NotFound(ProductionError):
    code = "not_found"
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id: str):
        super().__init__(f"Production order not found: {order_id}")
        self.order_id = order_id


class StageNotFound(NotFound):
    def __init__(self, order_id: str, stage_number: int):
        super().__init__(f"Production stage {stage_number} not found on order {order_id}")
        self.order_id = order_id
        self.stage_number = stage_number


class ProcessRecordNotFound(NotFound):
    def __init__(self, record_id: str):
        super().__init__(f"Process record not found: {record_id}")
        self.record_id = record_id


class StaleRevision(Exception):
    """Compare-and-swap save lost against a concurrent writer.

    Internal to the service layer: it is retried against fresh state and
    surfaces as ConcurrencyTimeout once the wait runs out.
    """

    def __init__(self, key: str, expected_revision: int):
        super().__init__(f"{key} changed since revision {expected_revision}")
        self.key = key
        self.expected_revision = expected_revision


@dataclass
class QuantityMismatch:
    """Divergence found between a process record and its stage.

    Never raised; logged as a warning and reconciled (process record wins).
    """
    order_id: str
    stage_number: int
    record_id: str
    stage_quantities: tuple
    record_quantities: tuple

    def describe(self) -> str:
        labels = ("input", "output", "loss", "pending")
        diffs = [
            f"{label} {Decimal(s)} -> {Decimal(r)}"
            for label, s, r in zip(labels, self.stage_quantities, self.record_quantities)
            if s != r
        ]
        return (f"QuantityMismatch on {self.order_id} stage {self.stage_number} "
                f"(record {self.record_id}): {', '.join(diffs)}")
