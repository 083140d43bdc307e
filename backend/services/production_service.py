"""
Production Flow Service - the stage transition surface used by the routers
and the process module mirror.

Every stage mutation follows the same path:
    stage lock -> load order -> state machine / ledger -> re-derive aggregate
    -> compare-and-swap save -> audit (fire-and-forget)

A lost compare-and-swap (another worker process, or another stage of the
same order saved first) reloads and re-applies the operation against the
fresh document. Operations are defined on current state, so re-applying
them is safe.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from config import STALE_REVISION_BACKOFF_SECONDS
from models.production import (
    ProductionOrder, ProductionOrderCreate, Stage, StageStatus, OrderStatus, ProcessType,
    StageStartRequest, StageCompleteRequest, StageHoldRequest, StageResumeRequest,
    StageCancelRequest, StageInputRequest, StageQuantities, StageOutput, OrderStatusView,
    TERMINAL_STAGE_STATUSES,
)
from services import stage_machine, quantity_ledger, production_order
from services.audit_sink import AuditDispatcher
from services.stage_guard import StageGuard
from services.production_errors import ConcurrencyTimeout, OrderNotFound, StaleRevision

logger = logging.getLogger(__name__)


class ProductionFlowService:
    def __init__(self, orders, audit=None, guard: Optional[StageGuard] = None,
                 backoff: float = STALE_REVISION_BACKOFF_SECONDS):
        self.orders = orders
        self.audit = audit if isinstance(audit, AuditDispatcher) else AuditDispatcher(audit)
        self.guard = guard or StageGuard()
        self.backoff = backoff

    # ============== Orders ==============

    async def create_order(self, data: ProductionOrderCreate) -> ProductionOrder:
        order = production_order.build_order(data)
        await self.orders.insert_order(order)
        logger.info(f"Production order {order.order_id} created with {len(order.stages)} stages")
        return order

    async def get_order(self, order_id: str) -> ProductionOrder:
        order = await self.orders.load_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(self, company_id: Optional[str] = None, status: Optional[str] = None):
        return await self.orders.list_orders(company_id=company_id, status=status)

    async def get_order_status(self, order_id: str) -> OrderStatusView:
        order = await self.get_order(order_id)
        return production_order.status_view(order)

    async def get_stage(self, order_id: str, stage_number: int) -> Stage:
        order = await self.get_order(order_id)
        return production_order.get_stage(order, stage_number)

    # ============== Stage transitions ==============

    async def start_stage(self, order_id: str, stage_number: int,
                          data: Optional[StageStartRequest] = None) -> Stage:
        data = data or StageStartRequest()
        return await self.mutate_stage(
            order_id, stage_number, "start",
            lambda stage: stage_machine.start(stage, actor=data.started_by, notes=data.notes),
            actor=data.started_by,
        )

    async def complete_stage(self, order_id: str, stage_number: int,
                             data: Optional[StageCompleteRequest] = None) -> Stage:
        data = data or StageCompleteRequest()
        return await self.mutate_stage(
            order_id, stage_number, "complete",
            lambda stage: stage_machine.complete(
                stage, output=data.output, actor=data.completed_by, notes=data.notes
            ),
            actor=data.completed_by,
        )

    async def hold_stage(self, order_id: str, stage_number: int, data: StageHoldRequest) -> Stage:
        return await self.mutate_stage(
            order_id, stage_number, "hold",
            lambda stage: stage_machine.hold(
                stage, data.reason, quality=data.is_quality, actor=data.held_by
            ),
            actor=data.held_by,
            details={"reason": data.reason, "category": data.category.value},
        )

    async def resume_stage(self, order_id: str, stage_number: int,
                           data: Optional[StageResumeRequest] = None) -> Stage:
        data = data or StageResumeRequest()
        return await self.mutate_stage(
            order_id, stage_number, "resume",
            lambda stage: stage_machine.resume(stage, actor=data.resumed_by, notes=data.notes),
            actor=data.resumed_by,
        )

    async def resume_or_start_stage(self, order_id: str, stage_number: int,
                                    actor: Optional[str] = None) -> Stage:
        return await self.mutate_stage(
            order_id, stage_number, "resume_or_start",
            lambda stage: stage_machine.resume_or_start(stage, actor=actor),
            actor=actor,
        )

    async def cancel_stage(self, order_id: str, stage_number: int, data: StageCancelRequest) -> Stage:
        return await self.mutate_stage(
            order_id, stage_number, "cancel",
            lambda stage: stage_machine.cancel(stage, data.reason, actor=data.cancelled_by),
            actor=data.cancelled_by,
            details={"reason": data.reason},
        )

    # ============== Quantities ==============

    async def record_input(self, order_id: str, stage_number: int, data: StageInputRequest) -> Stage:
        def mutate(stage: Stage) -> Stage:
            updated = stage.model_copy(deep=True)
            updated.quantities = quantity_ledger.record_input(stage.quantities, stage.status, data.input_quantity)
            updated.revision = stage.revision + 1
            return updated

        return await self.mutate_stage(order_id, stage_number, "record_input", mutate,
                                       actor=data.recorded_by)

    async def record_output(self, order_id: str, stage_number: int, output: StageOutput,
                            actor: Optional[str] = None) -> Stage:
        def mutate(stage: Stage) -> Stage:
            quantity_ledger.ensure_output_open(stage.status)
            updated = stage_machine.apply_output(stage, output)
            updated.revision = stage.revision + 1
            return updated

        return await self.mutate_stage(order_id, stage_number, "record_output", mutate, actor=actor)

    def overwrite_quantities(self, quantities: StageQuantities) -> Callable[[Stage], Stage]:
        """Mutation that replaces the stage ledger wholesale (mirror reconciliation)."""
        def mutate(stage: Stage) -> Stage:
            updated = stage.model_copy(deep=True)
            updated.quantities = quantities.model_copy()
            updated.revision = stage.revision + 1
            return updated
        return mutate

    # ============== Core mutation path ==============

    async def mutate_stage(self, order_id: str, stage_number: int, action: str,
                           mutate: Callable[[Stage], Stage], actor: Optional[str] = None,
                           details: Optional[dict] = None) -> Stage:
        async with self.guard.hold(order_id, stage_number):
            return await self.mutate_stage_locked(order_id, stage_number, action, mutate,
                                                  actor=actor, details=details)

    async def mutate_stage_locked(self, order_id: str, stage_number: int, action: str,
                                  mutate: Callable[[Stage], Stage], actor: Optional[str] = None,
                                  details: Optional[dict] = None) -> Stage:
        """Apply `mutate` to one stage; the caller must hold the stage lock."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.guard.timeout
        attempt = 0
        while True:
            order = await self.orders.load_order(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            expected_revision = order.revision
            previous = production_order.get_stage(order, stage_number)
            stage = production_order.apply_to_stage(order, stage_number, mutate)
            try:
                await self.orders.save_order(order, expected_revision)
                break
            except StaleRevision:
                attempt += 1
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning(f"Gave up on {action} for {order_id} stage {stage_number} "
                                   f"after {attempt} revision conflicts")
                    raise ConcurrencyTimeout(
                        f"Production order {order_id} kept changing - try again"
                    )
                logger.info(f"Revision conflict on {order_id} ({action} stage {stage_number}), "
                            f"retry {attempt}")
                await asyncio.sleep(min(self.backoff * attempt, remaining))

        logger.info(f"Stage {stage_number} of {order_id}: {action} "
                    f"{previous.status.value} -> {stage.status.value} "
                    f"(order {order.overall_status.value}, {order.progress_percentage}%)")
        self.audit.notify({
            "order_id": order_id,
            "stage_number": stage_number,
            "process_type": stage.process_type.value,
            "action": action,
            "from_status": previous.status.value,
            "to_status": stage.status.value,
            "actor_id": actor,
            "order_revision": order.revision,
            "overall_status": order.overall_status.value,
            "quantities": stage.quantities.model_dump(mode="json"),
            "details": details or {},
        })
        return stage

    # ============== Dashboard ==============

    async def get_flow_dashboard(self, company_id: Optional[str] = None) -> dict:
        """Order counts by status, running stages per process type, recent activity"""
        orders = await self.orders.list_orders(company_id=company_id)
        now = datetime.now(timezone.utc)

        status_counts = {status.value: 0 for status in OrderStatus}
        stage_wise = {ptype.value: 0 for ptype in ProcessType}
        delayed = 0
        flagged = 0

        for order in orders:
            status_counts[order.overall_status.value] += 1
            if order.out_of_sequence_stages:
                flagged += 1
            late = False
            for stage in order.stages:
                if stage.status == StageStatus.IN_PROGRESS:
                    stage_wise[stage.process_type.value] += 1
                planned_end = stage.timing.planned_end_time
                if planned_end and planned_end.tzinfo is None:
                    planned_end = planned_end.replace(tzinfo=timezone.utc)
                if planned_end and stage.status not in TERMINAL_STAGE_STATUSES and planned_end < now:
                    late = True
            if late:
                delayed += 1

        recent = [
            {
                "order_id": o.order_id,
                "production_order_number": o.production_order_number,
                "product_name": o.product_name,
                "overall_status": o.overall_status.value,
                "progress_percentage": o.progress_percentage,
                "updated_at": o.updated_at.isoformat(),
            }
            for o in sorted(orders, key=lambda o: o.updated_at, reverse=True)[:10]
        ]

        return {
            "total_orders": len(orders),
            "status_counts": status_counts,
            "in_progress_orders": status_counts[OrderStatus.IN_PROGRESS.value],
            "completed_orders": status_counts[OrderStatus.COMPLETED.value],
            "delayed_orders": delayed,
            "out_of_sequence_orders": flagged,
            "stage_wise_count": stage_wise,
            "recent_activities": recent,
        }
