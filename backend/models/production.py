"""
Production Flow Models - production orders and their ordered processing stages
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Annotated, List, Optional, Literal, Union
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


ZERO = Decimal("0")


class ProcessType(str, Enum):
    """Processing steps a textile production order can pass through"""
    GREY_FABRIC_INWARD = "grey_fabric_inward"
    KNITTING = "knitting"
    PRE_PROCESSING = "pre_processing"
    DYEING = "dyeing"
    PRINTING = "printing"
    WASHING = "washing"
    FIXING = "fixing"
    FINISHING = "finishing"
    QUALITY_CONTROL = "quality_control"
    CUTTING_PACKING = "cutting_packing"
    DISPATCH_INVOICE = "dispatch_invoice"


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    QUALITY_HOLD = "quality_hold"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    """Overall order status - always derived from the stage list"""
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class HoldCategory(str, Enum):
    OPERATIONAL = "operational"
    QUALITY = "quality"


QUALITY_HOLD_REASONS = ("quality", "quality_hold")


def is_quality_hold(reason: Optional[str], category: Optional[HoldCategory] = None) -> bool:
    """A hold is a quality hold by category, or by one of the bare quality reasons"""
    if category == HoldCategory.QUALITY:
        return True
    return bool(reason) and reason.strip().lower() in QUALITY_HOLD_REASONS


TERMINAL_STAGE_STATUSES = {StageStatus.COMPLETED, StageStatus.CANCELLED}
HELD_STAGE_STATUSES = {StageStatus.ON_HOLD, StageStatus.QUALITY_HOLD}


class StageQuantities(BaseModel):
    """Quantity ledger for one stage or process record.

    input_quantity == output_quantity + loss_quantity + pending_quantity
    """
    model_config = ConfigDict(extra="ignore")
    input_quantity: Decimal = ZERO
    output_quantity: Decimal = ZERO
    loss_quantity: Decimal = ZERO
    pending_quantity: Decimal = ZERO

    def as_tuple(self):
        return (self.input_quantity, self.output_quantity, self.loss_quantity, self.pending_quantity)


class StageTiming(BaseModel):
    model_config = ConfigDict(extra="ignore")
    planned_start_time: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    planned_duration_minutes: Optional[int] = None
    actual_duration_minutes: Optional[int] = None


class Stage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    stage_number: int
    stage_name: str
    process_type: ProcessType
    status: StageStatus = StageStatus.PENDING
    timing: StageTiming = Field(default_factory=StageTiming)
    quantities: StageQuantities = Field(default_factory=StageQuantities)
    hold_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    last_actor_id: Optional[str] = None
    process_record_id: Optional[str] = None
    revision: int = 0


class ProductionOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")
    order_id: str = Field(default_factory=lambda: f"po_{uuid.uuid4().hex[:12]}")
    production_order_number: Optional[str] = None
    product_name: str
    company_id: str
    customer_name: Optional[str] = None
    planned_quantity: Optional[Decimal] = None
    stages: List[Stage] = []
    overall_status: OrderStatus = OrderStatus.PLANNED
    progress_percentage: int = 0
    out_of_sequence_stages: List[int] = []
    revision: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_stage(self, stage_number: int) -> Optional[Stage]:
        for stage in self.stages:
            if stage.stage_number == stage_number:
                return stage
        return None


# ============== Requests ==============

class StageTemplate(BaseModel):
    """One stage of the flow requested when creating an order"""
    stage_name: str
    process_type: ProcessType
    planned_duration_minutes: Optional[int] = None
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    notes: Optional[str] = None


# Textile flow used when an order is created without explicit stages
DEFAULT_FLOW_STAGES = [
    StageTemplate(stage_name="Grey Fabric Inward (GRN Entry)", process_type=ProcessType.GREY_FABRIC_INWARD,
                  planned_duration_minutes=60, notes="Receive and inspect grey fabric from supplier"),
    StageTemplate(stage_name="Pre-Processing (Desizing/Bleaching)", process_type=ProcessType.PRE_PROCESSING,
                  planned_duration_minutes=240, notes="Remove sizing and bleach fabric for better dye absorption"),
    StageTemplate(stage_name="Dyeing Process", process_type=ProcessType.DYEING,
                  planned_duration_minutes=480, notes="Apply base color to fabric"),
    StageTemplate(stage_name="Printing Process", process_type=ProcessType.PRINTING,
                  planned_duration_minutes=360, notes="Apply design/pattern printing"),
    StageTemplate(stage_name="Washing Process", process_type=ProcessType.WASHING,
                  planned_duration_minutes=180, notes="Remove excess dye and chemicals"),
    StageTemplate(stage_name="Color Fixing", process_type=ProcessType.FIXING,
                  planned_duration_minutes=120, notes="Fix colors to prevent bleeding"),
    StageTemplate(stage_name="Finishing Process (Stenter, Coating)", process_type=ProcessType.FINISHING,
                  planned_duration_minutes=300, notes="Apply finishing treatments and stretch fabric"),
    StageTemplate(stage_name="Quality Control (Pass/Hold/Reject)", process_type=ProcessType.QUALITY_CONTROL,
                  planned_duration_minutes=60, notes="Final quality inspection and approval"),
    StageTemplate(stage_name="Cutting & Packing (Labels & Cartons)", process_type=ProcessType.CUTTING_PACKING,
                  planned_duration_minutes=120, notes="Cut fabric to required sizes and pack with labels"),
    StageTemplate(stage_name="Dispatch & Invoice (Stock Deduction)", process_type=ProcessType.DISPATCH_INVOICE,
                  planned_duration_minutes=30, notes="Prepare dispatch documents and deduct from stock"),
]


class ProductionOrderCreate(BaseModel):
    product_name: str
    company_id: str
    production_order_number: Optional[str] = None
    customer_name: Optional[str] = None
    planned_quantity: Optional[Decimal] = None
    stages: List[StageTemplate] = []  # empty = default textile flow


class StageStartRequest(BaseModel):
    started_by: Optional[str] = None
    notes: Optional[str] = None


class StageResumeRequest(BaseModel):
    resumed_by: Optional[str] = None
    notes: Optional[str] = None


class StageHoldRequest(BaseModel):
    reason: str
    category: HoldCategory = HoldCategory.OPERATIONAL
    held_by: Optional[str] = None

    @property
    def is_quality(self) -> bool:
        return is_quality_hold(self.reason, self.category)


class StageCancelRequest(BaseModel):
    reason: str
    cancelled_by: Optional[str] = None


class StageInputRequest(BaseModel):
    input_quantity: Decimal
    recorded_by: Optional[str] = None


# ---------- Output payloads: one schema per process type ----------
# Each variant names its quantities the way the shop floor records them and
# converts them to the generic (output, loss) pair the ledger works with.
# A figure left out (None) keeps its recorded value.

class _OutputBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    input_quantity: Optional[Decimal] = None
    completed_by: Optional[str] = None
    notes: Optional[str] = None

    def output_and_loss(self):
        raise NotImplementedError


class DyeingOutput(_OutputBase):
    process_type: Literal["dyeing"]
    output_quantity: Optional[Decimal] = None
    waste_quantity: Optional[Decimal] = None

    def output_and_loss(self):
        return self.output_quantity, self.waste_quantity


class PrintingOutput(_OutputBase):
    process_type: Literal["printing"]
    printed_meter: Optional[Decimal] = None
    rejected_meter: Optional[Decimal] = None

    def output_and_loss(self):
        return self.printed_meter, self.rejected_meter


class WashingOutput(_OutputBase):
    process_type: Literal["washing"]
    washed_meter: Optional[Decimal] = None
    shrinkage_meter: Optional[Decimal] = None

    def output_and_loss(self):
        return self.washed_meter, self.shrinkage_meter


class GenericOutput(_OutputBase):
    process_type: Literal[
        "grey_fabric_inward", "knitting", "pre_processing", "fixing", "finishing",
        "quality_control", "cutting_packing", "dispatch_invoice",
    ]
    output_quantity: Optional[Decimal] = None
    loss_quantity: Optional[Decimal] = None

    def output_and_loss(self):
        return self.output_quantity, self.loss_quantity


StageOutput = Annotated[
    Union[DyeingOutput, PrintingOutput, WashingOutput, GenericOutput],
    Field(discriminator="process_type"),
]


class StageCompleteRequest(BaseModel):
    """Completion payload; `output` is optional (completion without figures)"""
    completed_by: Optional[str] = None
    notes: Optional[str] = None
    output: Optional[StageOutput] = None


class StageOutputRequest(BaseModel):
    output: StageOutput


class OrderStatusView(BaseModel):
    order_id: str
    overall_status: OrderStatus
    progress_percentage: int
    out_of_sequence_stages: List[int] = []
    stages: List[Stage]
