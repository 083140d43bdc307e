"""
Persistence for production orders and process records (MongoDB / Motor)

One production order is one document, stages embedded, so a stage write and
the aggregate fields it drives always land together. Saves are
compare-and-swap on `revision`; a lost race raises StaleRevision.
"""
from typing import List, Optional

from pydantic import TypeAdapter

from models.production import ProductionOrder
from models.process_record import ProcessRecord
from services.production_errors import StaleRevision


_record_adapter = TypeAdapter(ProcessRecord)


def parse_process_record(doc: dict):
    return _record_adapter.validate_python(doc)


class MongoOrderRepository:
    def __init__(self, database):
        self.collection = database.production_orders

    async def load_order(self, order_id: str) -> Optional[ProductionOrder]:
        doc = await self.collection.find_one({"order_id": order_id}, {"_id": 0})
        return ProductionOrder.model_validate(doc) if doc else None

    async def insert_order(self, order: ProductionOrder) -> ProductionOrder:
        await self.collection.insert_one(order.model_dump(mode="json"))
        return order

    async def save_order(self, order: ProductionOrder, expected_revision: int) -> ProductionOrder:
        """Write the whole order if nobody else has saved since `expected_revision`."""
        order.revision = expected_revision + 1
        doc = order.model_dump(mode="json")
        result = await self.collection.update_one(
            {"order_id": order.order_id, "revision": expected_revision},
            {"$set": doc}
        )
        if result.matched_count == 0:
            order.revision = expected_revision
            raise StaleRevision(order.order_id, expected_revision)
        return order

    async def list_orders(self, company_id: Optional[str] = None, status: Optional[str] = None,
                          limit: int = 1000) -> List[ProductionOrder]:
        query = {}
        if company_id:
            query["company_id"] = company_id
        if status:
            query["overall_status"] = status
        docs = await self.collection.find(query, {"_id": 0}).sort("updated_at", -1).to_list(limit)
        return [ProductionOrder.model_validate(d) for d in docs]


class MongoProcessRecordRepository:
    def __init__(self, database):
        self.collection = database.process_records

    async def load_record(self, record_id: str):
        doc = await self.collection.find_one({"record_id": record_id}, {"_id": 0})
        return parse_process_record(doc) if doc else None

    async def insert_record(self, record):
        await self.collection.insert_one(record.model_dump(mode="json"))
        return record

    async def save_record(self, record, expected_revision: int):
        record.revision = expected_revision + 1
        result = await self.collection.update_one(
            {"record_id": record.record_id, "revision": expected_revision},
            {"$set": record.model_dump(mode="json")}
        )
        if result.matched_count == 0:
            record.revision = expected_revision
            raise StaleRevision(record.record_id, expected_revision)
        return record

    async def delete_record(self, record_id: str):
        await self.collection.delete_one({"record_id": record_id})

    async def list_records(self, process_type: Optional[str] = None, company_id: Optional[str] = None,
                           order_id: Optional[str] = None, has_pending: Optional[bool] = None,
                           limit: int = 1000) -> list:
        query = {}
        if process_type:
            query["process_type"] = process_type
        if company_id:
            query["company_id"] = company_id
        if order_id:
            query["order_id"] = order_id
        if has_pending is not None:
            query["has_pending"] = has_pending
        docs = await self.collection.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
        return [parse_process_record(d) for d in docs]

    async def iter_records(self, batch_size: int = 500):
        """Every record, streamed from a cursor in record_id order"""
        cursor = self.collection.find({}, {"_id": 0}).sort("record_id", 1).batch_size(batch_size)
        async for doc in cursor:
            yield parse_process_record(doc)
