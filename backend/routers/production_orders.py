"""
Production Orders Router - stage transitions and order progress
"""
from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.user import User
from models.production import (
    ProductionOrderCreate, StageStartRequest, StageCompleteRequest, StageHoldRequest,
    StageResumeRequest, StageCancelRequest, StageInputRequest, StageOutputRequest,
)
from dependencies import get_current_user, get_production_service
from services.production_service import ProductionFlowService

router = APIRouter(prefix="/production-orders", tags=["production-orders"])


def _stage_response(message: str, order_id: str, stage) -> dict:
    return {
        "message": message,
        "order_id": order_id,
        "stage": stage.model_dump(mode="json")
    }


@router.post("")
async def create_production_order(
    data: ProductionOrderCreate,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Create a production order; all stages start as pending"""
    if user.role not in ["admin", "manager"]:
        raise HTTPException(status_code=403, detail="Not authorized")

    order = await service.create_order(data)
    return order.model_dump(mode="json")


@router.get("")
async def list_production_orders(
    company_id: Optional[str] = None,
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """List production orders, newest activity first"""
    orders = await service.list_orders(company_id=company_id or user.company_id, status=status)
    return [o.model_dump(mode="json") for o in orders]


@router.get("/dashboard")
async def get_production_flow_dashboard(
    company_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Order counts by status, running stages per process, recent activity"""
    return await service.get_flow_dashboard(company_id=company_id or user.company_id)


@router.get("/{order_id}")
async def get_production_order(
    order_id: str,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    order = await service.get_order(order_id)
    return order.model_dump(mode="json")


@router.get("/{order_id}/status")
async def get_production_order_status(
    order_id: str,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Overall status, progress and every stage of an order"""
    view = await service.get_order_status(order_id)
    return view.model_dump(mode="json")


@router.post("/{order_id}/stages/{stage_number}/start")
async def start_stage(
    order_id: str,
    stage_number: int,
    data: Optional[StageStartRequest] = None,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    data = data or StageStartRequest()
    data.started_by = data.started_by or user.user_id
    stage = await service.start_stage(order_id, stage_number, data)
    return _stage_response(f"{stage.stage_name} started", order_id, stage)


@router.post("/{order_id}/stages/{stage_number}/complete")
async def complete_stage(
    order_id: str,
    stage_number: int,
    data: Optional[StageCompleteRequest] = None,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Complete an in-progress stage, optionally booking its final output"""
    data = data or StageCompleteRequest()
    data.completed_by = data.completed_by or user.user_id
    stage = await service.complete_stage(order_id, stage_number, data)
    return _stage_response(f"{stage.stage_name} completed", order_id, stage)


@router.post("/{order_id}/stages/{stage_number}/hold")
async def hold_stage(
    order_id: str,
    stage_number: int,
    data: StageHoldRequest,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Put a running stage on hold (category "quality" for a quality hold)"""
    data.held_by = data.held_by or user.user_id
    stage = await service.hold_stage(order_id, stage_number, data)
    return _stage_response(f"{stage.stage_name} on hold", order_id, stage)


@router.post("/{order_id}/stages/{stage_number}/resume")
async def resume_stage(
    order_id: str,
    stage_number: int,
    data: Optional[StageResumeRequest] = None,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    data = data or StageResumeRequest()
    data.resumed_by = data.resumed_by or user.user_id
    stage = await service.resume_stage(order_id, stage_number, data)
    return _stage_response(f"{stage.stage_name} resumed", order_id, stage)


@router.post("/{order_id}/stages/{stage_number}/cancel")
async def cancel_stage(
    order_id: str,
    stage_number: int,
    data: StageCancelRequest,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    if user.role not in ["admin", "manager"]:
        raise HTTPException(status_code=403, detail="Not authorized")

    data.cancelled_by = data.cancelled_by or user.user_id
    stage = await service.cancel_stage(order_id, stage_number, data)
    return _stage_response(f"{stage.stage_name} cancelled", order_id, stage)


@router.put("/{order_id}/stages/{stage_number}/input")
async def record_stage_input(
    order_id: str,
    stage_number: int,
    data: StageInputRequest,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Set the input quantity received by a stage"""
    data.recorded_by = data.recorded_by or user.user_id
    stage = await service.record_input(order_id, stage_number, data)
    return _stage_response("Input recorded", order_id, stage)


@router.put("/{order_id}/stages/{stage_number}/output")
async def record_stage_output(
    order_id: str,
    stage_number: int,
    data: StageOutputRequest,
    user: User = Depends(get_current_user),
    service: ProductionFlowService = Depends(get_production_service)
):
    """Book (cumulative) output and loss for a running or held stage"""
    stage = await service.record_output(order_id, stage_number, data.output, actor=user.user_id)
    return _stage_response("Output recorded", order_id, stage)
