"""
Process Records Router - dyeing / printing / washing module entries

Every write here is mirrored onto the linked production stage.
"""
from fastapi import APIRouter, Depends
from typing import Optional

from models.user import User
from models.process_record import (
    ProcessRecordCreate, ProcessEventRequest, ProcessInputRequest, ProcessOutputRequest,
)
from dependencies import get_current_user, get_process_mirror
from services.process_mirror import ProcessModuleMirror

router = APIRouter(prefix="/process-records", tags=["process-records"])


@router.post("")
async def create_process_record(
    data: ProcessRecordCreate,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    """Create a process record linked to a production stage"""
    result = await mirror.create_record(data, created_by=user.user_id)
    return result.to_dict()


@router.get("")
async def list_process_records(
    process_type: Optional[str] = None,
    order_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    records = await mirror.list_records(process_type=process_type, company_id=user.company_id,
                                        order_id=order_id)
    return [r.model_dump(mode="json") for r in records]


@router.get("/wip")
async def get_process_wip(
    process_type: Optional[str] = None,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    """Work in progress - records with pending quantity above zero"""
    records = await mirror.list_wip(process_type=process_type, company_id=user.company_id)
    return [r.model_dump(mode="json") for r in records]


@router.get("/{record_id}")
async def get_process_record(
    record_id: str,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    record = await mirror.get_record(record_id)
    return record.model_dump(mode="json")


@router.put("/{record_id}/input")
async def update_process_input(
    record_id: str,
    data: ProcessInputRequest,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    result = await mirror.update_input(record_id, data.input_quantity, updated_by=data.updated_by or user.user_id)
    return result.to_dict()


@router.put("/{record_id}/output")
async def update_process_output(
    record_id: str,
    data: ProcessOutputRequest,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    """Update output (e.g. washed / shrinkage meter); pending is recalculated"""
    result = await mirror.update_output(record_id, data.output, updated_by=data.updated_by or user.user_id)
    return result.to_dict()


@router.post("/{record_id}/events")
async def post_process_event(
    record_id: str,
    data: ProcessEventRequest,
    user: User = Depends(get_current_user),
    mirror: ProcessModuleMirror = Depends(get_process_mirror)
):
    """begin / finish / pause / continue - applied to the linked stage"""
    data.actor_id = data.actor_id or user.user_id
    result = await mirror.handle_event(record_id, data)
    return result.to_dict()
