from fastapi import HTTPException, Request
from datetime import datetime, timezone

from database import db
from models.user import User
from services.audit_sink import AuditDispatcher, MongoAuditSink
from services.order_repository import MongoOrderRepository, MongoProcessRecordRepository
from services.process_mirror import ProcessModuleMirror
from services.production_service import ProductionFlowService
from services.stage_guard import StageGuard

# One guard per worker process: stage locks only mean something if every
# request in the process shares them
_stage_guard = StageGuard()
_audit = AuditDispatcher(MongoAuditSink(db))
_production_service = ProductionFlowService(MongoOrderRepository(db), audit=_audit, guard=_stage_guard)
_process_mirror = ProcessModuleMirror(_production_service, MongoProcessRecordRepository(db))


def get_production_service() -> ProductionFlowService:
    return _production_service


def get_process_mirror() -> ProcessModuleMirror:
    return _process_mirror


def get_audit_dispatcher() -> AuditDispatcher:
    return _audit


async def get_current_user(request: Request) -> User:
    """Resolve the caller from the session cookie or a bearer token.

    Sessions are issued by the upstream auth service; this only looks them up.
    """
    session_token = request.cookies.get("session_token")
    if not session_token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            session_token = auth_header[7:]

    if not session_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await db.user_sessions.find_one({"session_token": session_token}, {"_id": 0})
    if not session:
        raise HTTPException(status_code=401, detail="Invalid session")

    expires_at = session.get("expires_at")
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at)
    if expires_at and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at and expires_at < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Session expired")

    user_doc = await db.users.find_one({"user_id": session["user_id"]}, {"_id": 0})
    if not user_doc:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user_doc)
