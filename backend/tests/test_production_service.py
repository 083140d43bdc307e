"""
Production Flow Service Tests
Covers the stage transition surface end to end against the in-memory store:
- three-stage happy path and progress
- partial completion, idempotent complete retry
- quality hold / resume
- concurrent completes (same process and across processes)
- audit trail delivery
"""
import asyncio
import pytest
from decimal import Decimal

from models.production import (
    StageStatus, OrderStatus, StageInputRequest, StageCompleteRequest, StageHoldRequest,
    StageCancelRequest, StageStartRequest, HoldCategory, GenericOutput, DyeingOutput, WashingOutput,
)
from services.audit_sink import AuditDispatcher
from services.production_errors import (
    InvalidTransition, QuantityInvariantViolation, ConcurrencyTimeout, OrderNotFound, StageNotFound,
    InvalidStagePayload,
)
from services.production_service import ProductionFlowService
from services.stage_guard import StageGuard

from conftest import RecordingAuditSink


def knitting_output(output, loss="0"):
    return GenericOutput(process_type="knitting", output_quantity=Decimal(output), loss_quantity=Decimal(loss))


def dyeing_output(output, waste="0"):
    return DyeingOutput(process_type="dyeing", output_quantity=Decimal(output), waste_quantity=Decimal(waste))


class TestScenarios:
    def test_three_stage_happy_path(self, service, order):
        async def main():
            stage = await service.start_stage(order.order_id, 1)
            assert stage.status == StageStatus.IN_PROGRESS
            status = await service.get_order_status(order.order_id)
            assert status.overall_status == OrderStatus.IN_PROGRESS
            assert status.progress_percentage == 0

            await service.record_input(order.order_id, 1, StageInputRequest(input_quantity=Decimal("100")))
            stage = await service.complete_stage(
                order.order_id, 1, StageCompleteRequest(output=knitting_output("100"))
            )
            assert stage.status == StageStatus.COMPLETED
            assert stage.quantities.pending_quantity == Decimal("0")
            return await service.get_order_status(order.order_id)

        status = asyncio.run(main())
        assert status.progress_percentage == 33
        assert status.overall_status == OrderStatus.IN_PROGRESS

    def test_partial_completion_then_repeat_complete_fails(self, service, order):
        async def main():
            await service.record_input(order.order_id, 2, StageInputRequest(input_quantity=Decimal("50")))
            await service.start_stage(order.order_id, 2)
            stage = await service.complete_stage(
                order.order_id, 2, StageCompleteRequest(output=dyeing_output("30", "5"))
            )
            assert stage.quantities.pending_quantity == Decimal("15")
            with pytest.raises(InvalidTransition):
                await service.complete_stage(order.order_id, 2, StageCompleteRequest(output=dyeing_output("50", "5")))
            return await service.get_stage(order.order_id, 2)

        stage = asyncio.run(main())
        assert stage.status == StageStatus.COMPLETED
        assert stage.quantities.output_quantity == Decimal("30")
        assert stage.quantities.pending_quantity == Decimal("15")

    def test_quality_hold_and_resume(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 2)
            held = await service.hold_stage(order.order_id, 2, StageHoldRequest(reason="quality_hold"))
            assert held.status == StageStatus.QUALITY_HOLD
            assert held.hold_reason == "quality_hold"
            status = await service.get_order_status(order.order_id)
            assert status.overall_status == OrderStatus.ON_HOLD
            return await service.resume_stage(order.order_id, 2)

        resumed = asyncio.run(main())
        assert resumed.status == StageStatus.IN_PROGRESS
        assert resumed.hold_reason is None

    def test_hold_category_quality(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 1)
            return await service.hold_stage(
                order.order_id, 1, StageHoldRequest(reason="GSM below target", category=HoldCategory.QUALITY)
            )

        assert asyncio.run(main()).status == StageStatus.QUALITY_HOLD


class TestIdempotentRetry:
    def test_complete_twice_stores_same_state_as_once(self, service, order_repo, order):
        payload = StageCompleteRequest(output=knitting_output("80", "5"))

        async def main():
            await service.record_input(order.order_id, 1, StageInputRequest(input_quantity=Decimal("100")))
            await service.start_stage(order.order_id, 1)
            await service.complete_stage(order.order_id, 1, payload)
            after_first = dict(order_repo.docs[order.order_id])
            with pytest.raises(InvalidTransition):
                await service.complete_stage(order.order_id, 1, payload)
            return after_first

        after_first = asyncio.run(main())
        assert order_repo.docs[order.order_id] == after_first


class TestQuantities:
    def test_over_output_is_rejected_and_nothing_saved(self, service, order_repo, order):
        async def main():
            await service.record_input(order.order_id, 1, StageInputRequest(input_quantity=Decimal("100")))
            await service.start_stage(order.order_id, 1)
            revision = order_repo.docs[order.order_id]["revision"]
            with pytest.raises(QuantityInvariantViolation):
                await service.complete_stage(order.order_id, 1, StageCompleteRequest(output=knitting_output("99", "2")))
            assert order_repo.docs[order.order_id]["revision"] == revision
            return await service.get_stage(order.order_id, 1)

        stage = asyncio.run(main())
        assert stage.status == StageStatus.IN_PROGRESS

    def test_record_output_on_running_stage(self, service, order):
        async def main():
            await service.record_input(order.order_id, 3, StageInputRequest(input_quantity=Decimal("200")))
            await service.start_stage(order.order_id, 3)
            await service.record_output(
                order.order_id, 3, WashingOutput(process_type="washing", washed_meter=Decimal("120"),
                                                 shrinkage_meter=Decimal("6"))
            )
            return await service.get_stage(order.order_id, 3)

        stage = asyncio.run(main())
        assert stage.quantities.pending_quantity == Decimal("74")
        assert stage.status == StageStatus.IN_PROGRESS

    def test_record_output_rejected_before_start(self, service, order):
        async def main():
            await service.record_input(order.order_id, 1, StageInputRequest(input_quantity=Decimal("10")))
            await service.record_output(order.order_id, 1, knitting_output("5"))

        with pytest.raises(InvalidTransition):
            asyncio.run(main())

    def test_record_output_with_wrong_process_payload(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 1)
            await service.record_output(order.order_id, 1, dyeing_output("5"))

        with pytest.raises(InvalidStagePayload):
            asyncio.run(main())

    def test_input_frozen_after_completion(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 1)
            await service.complete_stage(order.order_id, 1)
            await service.record_input(order.order_id, 1, StageInputRequest(input_quantity=Decimal("10")))

        with pytest.raises(InvalidTransition):
            asyncio.run(main())

    def test_cancel_freezes_quantities(self, service, order):
        async def main():
            await service.record_input(order.order_id, 2, StageInputRequest(input_quantity=Decimal("40")))
            await service.start_stage(order.order_id, 2)
            stage = await service.cancel_stage(order.order_id, 2, StageCancelRequest(reason="lot rejected"))
            return stage, await service.get_order_status(order.order_id)

        stage, status = asyncio.run(main())
        assert stage.status == StageStatus.CANCELLED
        assert stage.quantities.input_quantity == Decimal("40")
        assert stage.quantities.pending_quantity == Decimal("40")
        assert status.overall_status == OrderStatus.PLANNED


class TestLookups:
    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFound):
            asyncio.run(service.start_stage("po_missing", 1))

    def test_unknown_stage(self, service, order):
        with pytest.raises(StageNotFound):
            asyncio.run(service.start_stage(order.order_id, 7))

    def test_out_of_sequence_start_is_allowed_and_flagged(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 3)
            return await service.get_order_status(order.order_id)

        status = asyncio.run(main())
        assert status.out_of_sequence_stages == [3]
        assert status.overall_status == OrderStatus.IN_PROGRESS

    def test_resume_or_start(self, service, order):
        async def main():
            first = await service.resume_or_start_stage(order.order_id, 1)
            await service.hold_stage(order.order_id, 1, StageHoldRequest(reason="power cut"))
            second = await service.resume_or_start_stage(order.order_id, 1)
            return first, second

        first, second = asyncio.run(main())
        assert first.status == StageStatus.IN_PROGRESS
        assert second.status == StageStatus.IN_PROGRESS
        assert second.timing.actual_start_time == first.timing.actual_start_time


class TestConcurrency:
    def test_concurrent_completes_only_one_succeeds(self, service, order):
        async def main():
            await service.record_input(order.order_id, 3, StageInputRequest(input_quantity=Decimal("100")))
            await service.start_stage(order.order_id, 3)
            payload = StageCompleteRequest(output=WashingOutput(process_type="washing", washed_meter=Decimal("90"),
                                                                shrinkage_meter=Decimal("10")))
            return await asyncio.gather(
                service.complete_stage(order.order_id, 3, payload),
                service.complete_stage(order.order_id, 3, payload),
                return_exceptions=True,
            )

        results = asyncio.run(main())
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (InvalidTransition, ConcurrencyTimeout))

    def test_completes_from_separate_processes_only_one_succeeds(self, order_repo, order):
        """Two services with their own locks share one store - revision CAS decides"""
        a = ProductionFlowService(order_repo, guard=StageGuard(timeout=1.0), backoff=0.001)
        b = ProductionFlowService(order_repo, guard=StageGuard(timeout=1.0), backoff=0.001)

        async def main():
            await a.start_stage(order.order_id, 3)
            return await asyncio.gather(
                a.complete_stage(order.order_id, 3),
                b.complete_stage(order.order_id, 3),
                return_exceptions=True,
            )

        results = asyncio.run(main())
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert any(isinstance(r, InvalidTransition) for r in results)

    def test_different_stages_of_same_order_both_persist(self, service, order):
        async def main():
            await asyncio.gather(
                service.start_stage(order.order_id, 1),
                service.start_stage(order.order_id, 2),
                service.start_stage(order.order_id, 3),
            )
            return await service.get_order_status(order.order_id)

        status = asyncio.run(main())
        assert [s.status for s in status.stages] == [StageStatus.IN_PROGRESS] * 3

    def test_busy_stage_times_out(self, order_repo, order):
        svc = ProductionFlowService(order_repo, guard=StageGuard(timeout=0.02))

        async def main():
            async with svc.guard.hold(order.order_id, 1):
                await svc.start_stage(order.order_id, 1)

        with pytest.raises(ConcurrencyTimeout):
            asyncio.run(main())


class TestAudit:
    def test_each_transition_is_audited(self, service, audit_sink, order):
        async def main():
            await service.start_stage(order.order_id, 1, StageStartRequest(started_by="user_7"))
            await service.hold_stage(order.order_id, 1, StageHoldRequest(reason="yarn shortage"))
            await service.audit.drain()

        asyncio.run(main())
        assert [e["action"] for e in audit_sink.entries] == ["start", "hold"]
        assert audit_sink.entries[0]["actor_id"] == "user_7"
        assert audit_sink.entries[1]["from_status"] == "in_progress"
        assert audit_sink.entries[1]["to_status"] == "on_hold"

    def test_audit_failure_does_not_block_transition(self, order_repo, order, caplog):
        svc = ProductionFlowService(order_repo, audit=AuditDispatcher(RecordingAuditSink(fail=True)))

        async def main():
            stage = await svc.start_stage(order.order_id, 1)
            await svc.audit.drain()
            return stage

        stage = asyncio.run(main())
        assert stage.status == StageStatus.IN_PROGRESS
        assert "Audit write failed" in caplog.text


class TestDashboard:
    def test_dashboard_counts(self, service, order):
        async def main():
            await service.start_stage(order.order_id, 2)
            return await service.get_flow_dashboard(company_id="company_1")

        dashboard = asyncio.run(main())
        assert dashboard["total_orders"] == 1
        assert dashboard["in_progress_orders"] == 1
        assert dashboard["stage_wise_count"]["dyeing"] == 1
        assert dashboard["out_of_sequence_orders"] == 1
        assert dashboard["recent_activities"][0]["order_id"] == order.order_id
