"""
Process Module Mirror

Dyeing, printing and washing screens keep their own records, each linked to
one stage of a production order. This is the only place the two views are
kept in step:

- process events (begin / finish / pause / continue) become stage transitions
- quantity updates on a process record are copied onto the stage

When the two ledgers disagree the process record wins (it is the physical
measurement); the stage is overwritten and a QuantityMismatch is logged.
Record and stage are always written under the same stage lock.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from models.production import (
    Stage, StageStatus, StageQuantities, StageOutput, TERMINAL_STAGE_STATUSES, is_quality_hold, utc_now,
)
from models.process_record import (
    ProcessEvent, ProcessRecordCreate, ProcessEventRequest, RECORD_MODELS,
)
from services import stage_machine, quantity_ledger, production_order
from services.production_service import ProductionFlowService
from services.production_errors import (
    ConcurrencyTimeout, InvalidStagePayload, InvalidTransition, ProcessRecordNotFound,
    QuantityMismatch, StaleRevision,
)

logger = logging.getLogger(__name__)


@dataclass
class MirrorResult:
    record: object
    stage: Stage
    mismatch: Optional[QuantityMismatch] = None

    def to_dict(self) -> dict:
        return {
            "record": self.record.model_dump(mode="json"),
            "stage": self.stage.model_dump(mode="json"),
            "quantity_mismatch": self.mismatch.describe() if self.mismatch else None,
        }


class ProcessModuleMirror:
    def __init__(self, service: ProductionFlowService, records):
        self.service = service
        self.records = records

    @property
    def guard(self):
        return self.service.guard

    async def get_record(self, record_id: str):
        record = await self.records.load_record(record_id)
        if record is None:
            raise ProcessRecordNotFound(record_id)
        return record

    async def list_records(self, process_type: Optional[str] = None, company_id: Optional[str] = None,
                           order_id: Optional[str] = None):
        return await self.records.list_records(process_type=process_type, company_id=company_id,
                                               order_id=order_id)

    async def list_wip(self, process_type: Optional[str] = None, company_id: Optional[str] = None):
        """Records with material still pending (work in progress)"""
        return await self.records.list_records(process_type=process_type, company_id=company_id,
                                               has_pending=True)

    # ============== Record lifecycle ==============

    async def create_record(self, data: ProcessRecordCreate, created_by: Optional[str] = None) -> MirrorResult:
        """Create a process record and link it to its stage"""
        order = await self.service.get_order(data.order_id)
        stage = production_order.get_stage(order, data.stage_number)
        if stage.process_type.value != data.process_type:
            raise InvalidStagePayload(
                f"Stage {stage.stage_number} is {stage.process_type.value}, not {data.process_type}"
            )

        model = RECORD_MODELS[data.process_type]
        fields = data.model_dump(exclude={"input_quantity", "process_type"}, exclude_none=True)
        quantities = quantity_ledger.record_input(StageQuantities(), StageStatus.PENDING, data.input_quantity)

        async with self.guard.hold(data.order_id, data.stage_number):
            stage = await self.service.get_stage(data.order_id, data.stage_number)
            self._ensure_linkable(stage)
            record = model(**fields, company_id=order.company_id, quantities=quantities,
                           status=stage.status, created_by=created_by)
            await self.records.insert_record(record)

            def link(current: Stage) -> Stage:
                # re-checked against the reloaded stage on every save attempt
                self._ensure_linkable(current)
                updated = current.model_copy(deep=True)
                updated.process_record_id = record.record_id
                updated.quantities = record.quantities.model_copy()
                updated.revision = current.revision + 1
                return updated

            try:
                stage = await self.service.mutate_stage_locked(
                    data.order_id, data.stage_number, "link_process_record", link,
                    actor=created_by, details={"record_id": record.record_id},
                )
            except Exception:
                await self.records.delete_record(record.record_id)
                raise

        logger.info(f"{data.process_type} record {record.record_id} (lot {record.lot_number}) "
                    f"linked to {data.order_id} stage {data.stage_number}")
        return MirrorResult(record=record, stage=stage)

    @staticmethod
    def _ensure_linkable(stage: Stage):
        # completed / cancelled stages keep their quantities as they are
        if stage.status in TERMINAL_STAGE_STATUSES:
            raise InvalidTransition("link process record", stage.status.value, stage.stage_number)
        if stage.process_record_id:
            raise InvalidStagePayload(
                f"Stage {stage.stage_number} is already linked to {stage.process_record_id}"
            )

    # ============== Events ==============

    async def handle_event(self, record_id: str, request: ProcessEventRequest) -> MirrorResult:
        """Translate a process module event into the matching stage transition"""
        record = await self.get_record(record_id)
        actor = request.actor_id

        async with self.guard.hold(record.order_id, record.stage_number):
            stage = await self.service.get_stage(record.order_id, record.stage_number)

            if request.event in (ProcessEvent.BEGIN, ProcessEvent.CONTINUE):
                if stage.status == StageStatus.IN_PROGRESS:
                    # already running - a repeated begin/continue is a no-op
                    logger.info(f"{request.event.value} on {record_id}: stage {stage.stage_number} already in progress")
                else:
                    stage = await self.service.mutate_stage_locked(
                        record.order_id, record.stage_number, "resume_or_start",
                        lambda s: stage_machine.resume_or_start(s, actor=actor),
                        actor=actor, details={"record_id": record_id, "event": request.event.value},
                    )
            elif request.event == ProcessEvent.PAUSE:
                reason = request.reason or f"Paused from {record.process_type} module"
                quality = is_quality_hold(request.reason, request.category)
                stage = await self.service.mutate_stage_locked(
                    record.order_id, record.stage_number, "hold",
                    lambda s: stage_machine.hold(s, reason, quality=quality, actor=actor),
                    actor=actor, details={"record_id": record_id, "event": request.event.value, "reason": reason},
                )
            elif request.event == ProcessEvent.FINISH:
                stage = await self.service.mutate_stage_locked(
                    record.order_id, record.stage_number, "complete",
                    lambda s: stage_machine.complete(s, actor=actor),
                    actor=actor, details={"record_id": record_id, "event": request.event.value},
                )

            status = stage.status

            def sync_status(current):
                current.status = status
                current.updated_by = actor or current.updated_by
                return current

            _, record = await self._update_record(record_id, sync_status)
            stage, mismatch = await self._reconcile_locked(record, stage)

        return MirrorResult(record=record, stage=stage, mismatch=mismatch)

    # ============== Quantities ==============

    async def update_input(self, record_id: str, input_quantity, updated_by: Optional[str] = None) -> MirrorResult:
        record = await self.get_record(record_id)

        async with self.guard.hold(record.order_id, record.stage_number):
            stage = await self.service.get_stage(record.order_id, record.stage_number)

            def set_input(current):
                current.quantities = quantity_ledger.record_input(current.quantities, stage.status, input_quantity)
                current.updated_by = updated_by or current.updated_by
                return current

            return await self._write_and_reconcile(record_id, stage, set_input)

    async def update_output(self, record_id: str, output: StageOutput,
                            updated_by: Optional[str] = None) -> MirrorResult:
        """Book output on the record (washed/shrinkage meters etc.) and copy it to the stage.

        Partial updates are expected; each one is validated against the
        record's current input.
        """
        record = await self.get_record(record_id)
        if output.process_type != record.process_type:
            raise InvalidStagePayload(f"Record {record_id} is {record.process_type}, payload is for {output.process_type}")

        async with self.guard.hold(record.order_id, record.stage_number):
            stage = await self.service.get_stage(record.order_id, record.stage_number)
            if stage.status in TERMINAL_STAGE_STATUSES:
                raise InvalidTransition("record output", stage.status.value, stage.stage_number)

            def set_output(current):
                quantities = current.quantities
                if output.input_quantity is not None:
                    quantities = quantity_ledger.record_input(quantities, stage.status, output.input_quantity)
                output_qty, loss_qty = output.output_and_loss()
                current.quantities = quantity_ledger.book_output(quantities, output_qty, loss_qty)
                current.updated_by = updated_by or current.updated_by
                return current

            result = await self._write_and_reconcile(record_id, stage, set_output)

        q = result.record.quantities
        logger.info(f"{record.process_type} output updated on {record_id}: output {q.output_quantity}, "
                    f"loss {q.loss_quantity}, pending {q.pending_quantity} of {q.input_quantity}")
        return result

    # ============== Reconciliation ==============

    async def reconcile(self, record_id: str) -> MirrorResult:
        record = await self.get_record(record_id)
        async with self.guard.hold(record.order_id, record.stage_number):
            record = await self.get_record(record_id)
            stage = await self.service.get_stage(record.order_id, record.stage_number)
            stage, mismatch = await self._reconcile_locked(record, stage)
        return MirrorResult(record=record, stage=stage, mismatch=mismatch)

    async def sweep(self) -> dict:
        """Repair broken pending figures and re-reconcile every linked record"""
        summary = {"records_checked": 0, "pending_repaired": 0, "mismatches_reconciled": 0, "errors": []}
        async for record in self.records.iter_records():
            summary["records_checked"] += 1
            try:
                async with self.guard.hold(record.order_id, record.stage_number):
                    fresh = await self.get_record(record.record_id)
                    if quantity_ledger.repair_pending(fresh.quantities) is not None:
                        def repair(current):
                            current.quantities = quantity_ledger.repair_pending(current.quantities) or current.quantities
                            return current
                        _, fresh = await self._update_record(record.record_id, repair)
                        summary["pending_repaired"] += 1
                    stage = await self.service.get_stage(fresh.order_id, fresh.stage_number)
                    _, mismatch = await self._reconcile_locked(fresh, stage)
                    if mismatch:
                        summary["mismatches_reconciled"] += 1
            except Exception as e:
                logger.error(f"Reconcile sweep failed for {record.record_id}: {e}")
                summary["errors"].append({"record_id": record.record_id, "error": str(e)})
        logger.info(f"Reconcile sweep: {summary['records_checked']} checked, "
                    f"{summary['pending_repaired']} repaired, {summary['mismatches_reconciled']} reconciled")
        return summary

    def _check_drift(self, record, stage: Stage) -> Optional[QuantityMismatch]:
        if record.quantities.as_tuple() == stage.quantities.as_tuple():
            return None
        mismatch = QuantityMismatch(
            order_id=record.order_id,
            stage_number=record.stage_number,
            record_id=record.record_id,
            stage_quantities=stage.quantities.as_tuple(),
            record_quantities=record.quantities.as_tuple(),
        )
        logger.warning(mismatch.describe())
        return mismatch

    async def _copy_to_stage(self, record, stage: Stage, action: str) -> Stage:
        if record.quantities.as_tuple() == stage.quantities.as_tuple():
            return stage
        return await self.service.mutate_stage_locked(
            record.order_id, record.stage_number, action,
            self.service.overwrite_quantities(record.quantities),
            actor=record.updated_by, details={"record_id": record.record_id},
        )

    async def _reconcile_locked(self, record, stage: Stage):
        """Overwrite the stage ledger with the record's if they differ. Caller holds the lock."""
        mismatch = self._check_drift(record, stage)
        if mismatch:
            stage = await self._copy_to_stage(record, stage, "reconcile_quantities")
        return stage, mismatch

    async def _write_and_reconcile(self, record_id: str, stage: Stage, mutate) -> MirrorResult:
        previous, record = await self._update_record(record_id, mutate)
        # before this write the stage must have mirrored the record
        mismatch = self._check_drift(previous, stage)
        try:
            stage = await self._copy_to_stage(record, stage, "sync_quantities")
        except Exception:
            # stage write failed - put the record back so the pair never diverges
            def restore(current):
                current.quantities = previous.quantities.model_copy()
                current.status = previous.status
                return current
            await self._update_record(record_id, restore)
            raise
        return MirrorResult(record=record, stage=stage, mismatch=mismatch)

    async def _update_record(self, record_id: str, mutate):
        """Reload, mutate and compare-and-swap a process record. Returns (previous, updated)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.guard.timeout
        attempt = 0
        while True:
            current = await self.get_record(record_id)
            updated = mutate(current.model_copy(deep=True))
            updated.updated_at = utc_now()
            try:
                await self.records.save_record(updated, current.revision)
                return current, updated
            except StaleRevision:
                attempt += 1
                if loop.time() >= deadline:
                    raise ConcurrencyTimeout(f"Process record {record_id} kept changing - try again")
                await asyncio.sleep(self.service.backoff * attempt)
