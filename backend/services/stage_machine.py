"""
Stage State Machine

    pending -> in_progress -> completed
    in_progress <-> on_hold / quality_hold
    any non-terminal -> cancelled

Every operation works on a copy of the stage and returns it, so a failed
transition never leaves a half-updated stage behind.
"""
from datetime import datetime
from typing import Optional

from models.production import (
    Stage, StageStatus, StageOutput, TERMINAL_STAGE_STATUSES, utc_now,
)
from services import quantity_ledger
from services.production_errors import InvalidTransition, InvalidStagePayload

START = "start"
COMPLETE = "complete"
HOLD = "hold"
RESUME = "resume"
CANCEL = "cancel"

OPERATIONS = (START, COMPLETE, HOLD, RESUME, CANCEL)

# (current status, operation) -> next status. hold resolves to quality_hold
# at call time when the reason is a quality reason.
TRANSITIONS = {
    (StageStatus.PENDING, START): StageStatus.IN_PROGRESS,
    (StageStatus.IN_PROGRESS, COMPLETE): StageStatus.COMPLETED,
    (StageStatus.IN_PROGRESS, HOLD): StageStatus.ON_HOLD,
    (StageStatus.ON_HOLD, RESUME): StageStatus.IN_PROGRESS,
    (StageStatus.QUALITY_HOLD, RESUME): StageStatus.IN_PROGRESS,
}
for _status in StageStatus:
    if _status not in TERMINAL_STAGE_STATUSES:
        TRANSITIONS[(_status, CANCEL)] = StageStatus.CANCELLED


def next_status(current: StageStatus, operation: str, stage_number: Optional[int] = None) -> StageStatus:
    try:
        return TRANSITIONS[(current, operation)]
    except KeyError:
        raise InvalidTransition(operation, current.value, stage_number)


def can_apply(stage: Stage, operation: str) -> bool:
    return (stage.status, operation) in TRANSITIONS


def _advance(stage: Stage, operation: str, actor: Optional[str]) -> Stage:
    target = next_status(stage.status, operation, stage.stage_number)
    updated = stage.model_copy(deep=True)
    updated.status = target
    updated.revision = stage.revision + 1
    if actor:
        updated.last_actor_id = actor
    return updated


def start(stage: Stage, actor: Optional[str] = None, notes: Optional[str] = None,
          now: Optional[datetime] = None) -> Stage:
    updated = _advance(stage, START, actor)
    updated.timing.actual_start_time = now or utc_now()
    if notes:
        updated.notes = notes
    return updated


def apply_output(stage: Stage, output: StageOutput) -> Stage:
    """Book a typed output payload into the stage ledger (no status change)."""
    if output.process_type != stage.process_type.value:
        raise InvalidStagePayload(
            f"Stage {stage.stage_number} is {stage.process_type.value}, payload is for {output.process_type}"
        )
    updated = stage.model_copy(deep=True)
    if output.input_quantity is not None:
        updated.quantities = quantity_ledger.record_input(updated.quantities, updated.status, output.input_quantity)
    output_qty, loss_qty = output.output_and_loss()
    updated.quantities = quantity_ledger.book_output(updated.quantities, output_qty, loss_qty)
    return updated


def complete(stage: Stage, output: Optional[StageOutput] = None, actor: Optional[str] = None,
             notes: Optional[str] = None, now: Optional[datetime] = None) -> Stage:
    """Complete an in-progress stage, validating any quantities first.

    Pending quantity may stay above zero; it remains on the stage as
    residual loss-in-transit.
    """
    target = next_status(stage.status, COMPLETE, stage.stage_number)
    updated = apply_output(stage, output) if output is not None else stage.model_copy(deep=True)
    ended = now or utc_now()
    updated.status = target
    updated.revision = stage.revision + 1
    updated.timing.actual_end_time = ended
    started = updated.timing.actual_start_time
    if started:
        updated.timing.actual_duration_minutes = round((ended - started).total_seconds() / 60)
    if actor:
        updated.last_actor_id = actor
    if notes:
        updated.notes = notes
    return updated


def hold(stage: Stage, reason: str, quality: bool = False, actor: Optional[str] = None) -> Stage:
    updated = _advance(stage, HOLD, actor)
    if quality:
        updated.status = StageStatus.QUALITY_HOLD
    updated.hold_reason = reason
    return updated


def resume(stage: Stage, actor: Optional[str] = None, notes: Optional[str] = None) -> Stage:
    updated = _advance(stage, RESUME, actor)
    updated.hold_reason = None
    if notes:
        updated.notes = notes
    return updated


def resume_or_start(stage: Stage, actor: Optional[str] = None, notes: Optional[str] = None,
                    now: Optional[datetime] = None) -> Stage:
    """Resume a held stage; if it was never started, start it instead.

    Used when the caller does not know the stage's history (process modules).
    """
    try:
        return resume(stage, actor=actor, notes=notes)
    except InvalidTransition:
        return start(stage, actor=actor, notes=notes, now=now)


def cancel(stage: Stage, reason: str, actor: Optional[str] = None) -> Stage:
    # quantities are frozen as-is
    updated = _advance(stage, CANCEL, actor)
    updated.cancel_reason = reason
    updated.hold_reason = None
    return updated
