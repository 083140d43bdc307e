from motor.motor_asyncio import AsyncIOMotorClient
from config import MONGO_URL, DB_NAME, TRAINING_MODE
import logging

logger = logging.getLogger(__name__)

# Use separate database for training
if TRAINING_MODE:
    ACTIVE_DB_NAME = f"{DB_NAME}_training"
else:
    ACTIVE_DB_NAME = DB_NAME

client = AsyncIOMotorClient(MONGO_URL)
db = client[ACTIVE_DB_NAME]

logger.info(f"[Database] Using: {ACTIVE_DB_NAME} {'(TRAINING MODE)' if TRAINING_MODE else '(PRODUCTION)'}")

async def create_indexes():
    """Create database indexes for the production flow collections"""
    try:
        # production_orders indexes
        await db.production_orders.create_index("order_id", unique=True)
        await db.production_orders.create_index("company_id")
        await db.production_orders.create_index("overall_status")
        await db.production_orders.create_index("updated_at")
        await db.production_orders.create_index([("stages.process_type", 1), ("stages.status", 1)])

        # process_records indexes
        await db.process_records.create_index("record_id", unique=True)
        await db.process_records.create_index([("order_id", 1), ("stage_number", 1)])
        await db.process_records.create_index("process_type")
        await db.process_records.create_index("lot_number")
        await db.process_records.create_index("company_id")
        await db.process_records.create_index([("has_pending", 1), ("process_type", 1)])

        # stage_audit_logs indexes
        await db.stage_audit_logs.create_index([("order_id", 1), ("stage_number", 1)])
        await db.stage_audit_logs.create_index("created_at")

        # auth lookups
        await db.user_sessions.create_index("session_token")

        logger.info("[Database] Indexes created successfully")
    except Exception as e:
        logger.error(f"[Database] Index creation error (may already exist): {e}")
