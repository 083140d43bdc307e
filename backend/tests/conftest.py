"""
Shared fixtures for production flow tests

The in-memory repositories store JSON-mode dumps, the same shape the Mongo
repositories write, so every test also exercises the round trip through
serialization. Each call yields to the event loop once so concurrent
coroutines actually interleave.
"""
import asyncio
import pytest

from models.production import ProductionOrder, ProductionOrderCreate, StageTemplate, ProcessType
from models.user import User
from services.audit_sink import AuditDispatcher
from services.order_repository import parse_process_record
from services.production_errors import StaleRevision
from services.production_service import ProductionFlowService
from services.process_mirror import ProcessModuleMirror
from services.stage_guard import StageGuard


class InMemoryOrderRepository:
    def __init__(self):
        self.docs = {}
        self.save_calls = 0

    async def load_order(self, order_id):
        await asyncio.sleep(0)
        doc = self.docs.get(order_id)
        return ProductionOrder.model_validate(doc) if doc else None

    async def insert_order(self, order):
        self.docs[order.order_id] = order.model_dump(mode="json")
        return order

    async def save_order(self, order, expected_revision):
        await asyncio.sleep(0)
        self.save_calls += 1
        current = self.docs.get(order.order_id)
        if current is None or current["revision"] != expected_revision:
            raise StaleRevision(order.order_id, expected_revision)
        order.revision = expected_revision + 1
        self.docs[order.order_id] = order.model_dump(mode="json")
        return order

    async def list_orders(self, company_id=None, status=None, limit=1000):
        orders = [ProductionOrder.model_validate(d) for d in self.docs.values()]
        if company_id:
            orders = [o for o in orders if o.company_id == company_id]
        if status:
            orders = [o for o in orders if o.overall_status.value == status]
        return orders[:limit]


class InMemoryProcessRecordRepository:
    def __init__(self):
        self.docs = {}

    async def load_record(self, record_id):
        await asyncio.sleep(0)
        doc = self.docs.get(record_id)
        return parse_process_record(doc) if doc else None

    async def insert_record(self, record):
        self.docs[record.record_id] = record.model_dump(mode="json")
        return record

    async def save_record(self, record, expected_revision):
        await asyncio.sleep(0)
        current = self.docs.get(record.record_id)
        if current is None or current["revision"] != expected_revision:
            raise StaleRevision(record.record_id, expected_revision)
        record.revision = expected_revision + 1
        self.docs[record.record_id] = record.model_dump(mode="json")
        return record

    async def delete_record(self, record_id):
        self.docs.pop(record_id, None)

    async def list_records(self, process_type=None, company_id=None, order_id=None, has_pending=None,
                           limit=1000):
        docs = self.docs.values()
        if has_pending is not None:
            # filter on the stored flag, as the Mongo query does
            docs = [d for d in docs if d["has_pending"] == has_pending]
        records = [parse_process_record(d) for d in docs]
        if process_type:
            records = [r for r in records if r.process_type == process_type]
        if company_id:
            records = [r for r in records if r.company_id == company_id]
        if order_id:
            records = [r for r in records if r.order_id == order_id]
        return records[:limit]

    async def iter_records(self, batch_size=500):
        for record_id in sorted(self.docs):
            await asyncio.sleep(0)
            yield parse_process_record(self.docs[record_id])


class RecordingAuditSink:
    def __init__(self, fail=False):
        self.entries = []
        self.fail = fail

    async def record(self, entry):
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.entries.append(entry)


THREE_STAGE_FLOW = [
    StageTemplate(stage_name="Knitting", process_type=ProcessType.KNITTING),
    StageTemplate(stage_name="Dyeing", process_type=ProcessType.DYEING),
    StageTemplate(stage_name="Washing", process_type=ProcessType.WASHING),
]

ADMIN_USER = User(user_id="user_admin", email="admin@factory.test", name="Admin", role="admin",
                  company_id="company_1")
WORKER_USER = User(user_id="user_worker", email="worker@factory.test", name="Worker", role="worker",
                   company_id="company_1")


def three_stage_order_request(**overrides):
    data = {
        "product_name": "Cotton Jersey 180 GSM",
        "company_id": "company_1",
        "stages": THREE_STAGE_FLOW,
    }
    data.update(overrides)
    return ProductionOrderCreate(**data)


@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()


@pytest.fixture
def record_repo():
    return InMemoryProcessRecordRepository()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def service(order_repo, audit_sink):
    return ProductionFlowService(order_repo, audit=AuditDispatcher(audit_sink),
                                 guard=StageGuard(timeout=1.0), backoff=0.001)


@pytest.fixture
def mirror(service, record_repo):
    return ProcessModuleMirror(service, record_repo)


@pytest.fixture
def order(service):
    """A persisted three-stage order (knitting, dyeing, washing)"""
    return asyncio.run(service.create_order(three_stage_order_request()))
