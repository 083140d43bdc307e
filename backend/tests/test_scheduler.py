"""
Scheduled Reconciliation Tests
"""
import asyncio
from decimal import Decimal

import database
import dependencies
from models.process_record import ProcessRecordCreate
from services import scheduler


class FakeCollection:
    def __init__(self):
        self.docs = []

    async def insert_one(self, doc):
        self.docs.append(doc)


class FakeDatabase:
    def __init__(self):
        self.scheduled_sync_logs = FakeCollection()


class TestReconcileJob:
    def test_sweep_runs_and_is_logged(self, mirror, record_repo, order, monkeypatch):
        fake_db = FakeDatabase()
        monkeypatch.setattr(database, "db", fake_db)
        monkeypatch.setattr(dependencies, "get_process_mirror", lambda: mirror)

        async def main():
            created = await mirror.create_record(ProcessRecordCreate(
                process_type="washing", order_id=order.order_id, stage_number=3,
                lot_number="LOT-5", input_quantity=Decimal("40"),
            ))
            record_repo.docs[created.record.record_id]["quantities"]["pending_quantity"] = "0"
            return await scheduler.reconcile_process_records()

        summary = asyncio.run(main())
        assert summary["pending_repaired"] == 1
        log = fake_db.scheduled_sync_logs.docs[0]
        assert log["sync_type"] == "process_record_reconciliation"
        assert log["summary"] == summary

    def test_status_when_not_started(self):
        status = scheduler.get_scheduler_status()
        assert status["running"] is False
