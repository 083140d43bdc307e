"""
Production Order Aggregate

The only place stages are swapped into an order. Overall status, progress
and the out-of-sequence flag are re-derived from the stage list on every
write and are never set any other way.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, List

from models.production import (
    ProductionOrder, ProductionOrderCreate, Stage, StageStatus, StageTiming,
    OrderStatus, OrderStatusView, DEFAULT_FLOW_STAGES, HELD_STAGE_STATUSES, utc_now,
)
from services.production_errors import StageNotFound

ACTIVE_STAGE_STATUSES = {
    StageStatus.IN_PROGRESS, StageStatus.COMPLETED, StageStatus.ON_HOLD, StageStatus.QUALITY_HOLD,
}


def derive_overall_status(stages: Iterable[Stage]) -> OrderStatus:
    statuses = [s.status for s in stages]
    if not statuses:
        return OrderStatus.PLANNED

    # 1. everything cancelled
    if all(s == StageStatus.CANCELLED for s in statuses):
        return OrderStatus.CANCELLED
    # 2. something held and nothing running
    if any(s in HELD_STAGE_STATUSES for s in statuses) and StageStatus.IN_PROGRESS not in statuses:
        return OrderStatus.ON_HOLD
    # 3. all live stages completed
    live = [s for s in statuses if s != StageStatus.CANCELLED]
    if all(s == StageStatus.COMPLETED for s in live):
        return OrderStatus.COMPLETED
    # 4. any activity at all
    if any(s in ACTIVE_STAGE_STATUSES for s in statuses):
        return OrderStatus.IN_PROGRESS
    return OrderStatus.PLANNED


def derive_progress(stages: Iterable[Stage]) -> int:
    live = [s for s in stages if s.status != StageStatus.CANCELLED]
    if not live:
        return 0
    completed = sum(1 for s in live if s.status == StageStatus.COMPLETED)
    pct = Decimal(completed * 100) / Decimal(len(live))
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def derive_out_of_sequence(stages: Iterable[Stage]) -> List[int]:
    """Stages that have moved while an earlier live stage is still unfinished.

    Factories do run stages out of order, so this is a flag for the
    dashboard, not a rejection.
    """
    flagged = []
    blocked = False
    for stage in sorted(stages, key=lambda s: s.stage_number):
        if blocked and stage.status in ACTIVE_STAGE_STATUSES:
            flagged.append(stage.stage_number)
        if stage.status not in (StageStatus.COMPLETED, StageStatus.CANCELLED):
            blocked = True
    return flagged


def refresh(order: ProductionOrder) -> ProductionOrder:
    order.overall_status = derive_overall_status(order.stages)
    order.progress_percentage = derive_progress(order.stages)
    order.out_of_sequence_stages = derive_out_of_sequence(order.stages)
    return order


def build_order(data: ProductionOrderCreate) -> ProductionOrder:
    """Create an order with every stage pre-allocated as pending."""
    templates = data.stages or DEFAULT_FLOW_STAGES
    stages = [
        Stage(
            stage_number=number,
            stage_name=template.stage_name,
            process_type=template.process_type,
            timing=StageTiming(
                planned_start_time=template.planned_start_time,
                planned_end_time=template.planned_end_time,
                planned_duration_minutes=template.planned_duration_minutes,
            ),
            notes=template.notes,
        )
        for number, template in enumerate(templates, start=1)
    ]
    order = ProductionOrder(
        product_name=data.product_name,
        company_id=data.company_id,
        production_order_number=data.production_order_number,
        customer_name=data.customer_name,
        planned_quantity=data.planned_quantity,
        stages=stages,
    )
    return refresh(order)


def get_stage(order: ProductionOrder, stage_number: int) -> Stage:
    stage = order.find_stage(stage_number)
    if stage is None:
        raise StageNotFound(order.order_id, stage_number)
    return stage


def apply_to_stage(order: ProductionOrder, stage_number: int,
                   mutate: Callable[[Stage], Stage]) -> Stage:
    """Run `mutate` on one stage and write the result back with fresh aggregates.

    `mutate` receives the current stage and returns its replacement; if it
    raises, the order is left untouched.
    """
    current = get_stage(order, stage_number)
    replacement = mutate(current)
    order.stages = [replacement if s.stage_number == stage_number else s for s in order.stages]
    order.updated_at = utc_now()
    refresh(order)
    return replacement


def status_view(order: ProductionOrder) -> OrderStatusView:
    return OrderStatusView(
        order_id=order.order_id,
        overall_status=order.overall_status,
        progress_percentage=order.progress_percentage,
        out_of_sequence_stages=order.out_of_sequence_stages,
        stages=order.stages,
    )
