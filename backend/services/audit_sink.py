"""
Stage audit trail

Transitions are reported after they are saved. Delivery is fire-and-forget:
a failed audit write is logged and never undoes the transition.
"""
import asyncio
import logging
from datetime import datetime, timezone
import uuid

logger = logging.getLogger(__name__)


class MongoAuditSink:
    """Writes one document per successful transition to stage_audit_logs"""

    def __init__(self, database):
        self.collection = database.stage_audit_logs

    async def record(self, entry: dict):
        doc = {
            "audit_id": f"audit_{uuid.uuid4().hex[:12]}",
            **entry,
            "created_at": datetime.now(timezone.utc).isoformat()
        }
        await self.collection.insert_one(doc)


class AuditDispatcher:
    """Schedules audit writes without awaiting them"""

    def __init__(self, sink=None):
        self.sink = sink
        self._pending = set()

    def notify(self, entry: dict):
        if self.sink is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(entry))
        except RuntimeError:
            logger.error(f"Audit entry dropped, no running loop: {entry.get('action')}")
            return
        # keep a reference until the task finishes
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, entry: dict):
        try:
            await self.sink.record(entry)
        except Exception as e:
            logger.error(f"Audit write failed for {entry.get('order_id')} "
                         f"stage {entry.get('stage_number')} ({entry.get('action')}): {e}")

    async def drain(self):
        """Wait for in-flight audit writes (shutdown and tests)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
