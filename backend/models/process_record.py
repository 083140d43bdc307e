"""
Process Module Records - dyeing batches, printing jobs and washing entries

Each record is the process module's own view of one stage of a production
order. The shared quantity ledger is the join point with the stage.
"""
from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import Annotated, Optional, Literal, Union
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from models.production import StageQuantities, StageStatus, StageOutput, HoldCategory, utc_now


class ProcessEvent(str, Enum):
    """Events a process module raises against its linked stage"""
    BEGIN = "begin"
    FINISH = "finish"
    PAUSE = "pause"
    CONTINUE = "continue"


class _ProcessRecordBase(BaseModel):
    model_config = ConfigDict(extra="ignore")
    record_id: str = Field(default_factory=lambda: f"proc_{uuid.uuid4().hex[:12]}")
    order_id: str
    stage_number: int
    company_id: Optional[str] = None
    lot_number: str
    party_name: Optional[str] = None
    customer_id: Optional[str] = None
    quantities: StageQuantities = Field(default_factory=StageQuantities)
    status: StageStatus = StageStatus.PENDING
    revision: int = 0
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # stored alongside the (string) quantities so WIP can be queried in Mongo
    @computed_field
    @property
    def has_pending(self) -> bool:
        return self.quantities.pending_quantity > 0


class DyeingBatch(_ProcessRecordBase):
    process_type: Literal["dyeing"] = "dyeing"
    batch_number: Optional[str] = None
    dye_type: Optional[str] = None  # reactive, disperse, acid, vat ...
    shade: Optional[str] = None


class PrintingJob(_ProcessRecordBase):
    process_type: Literal["printing"] = "printing"
    design_number: Optional[str] = None
    print_type: Optional[str] = None  # rotary, table, digital


class WashingEntry(_ProcessRecordBase):
    process_type: Literal["washing"] = "washing"
    washing_type: Optional[str] = None

    # Washing floor names for the ledger fields
    @computed_field
    @property
    def input_meter(self) -> Decimal:
        return self.quantities.input_quantity

    @computed_field
    @property
    def washed_meter(self) -> Decimal:
        return self.quantities.output_quantity

    @computed_field
    @property
    def shrinkage_meter(self) -> Decimal:
        return self.quantities.loss_quantity

    @computed_field
    @property
    def pending_meter(self) -> Decimal:
        return self.quantities.pending_quantity


ProcessRecord = Annotated[
    Union[DyeingBatch, PrintingJob, WashingEntry],
    Field(discriminator="process_type"),
]

RECORD_MODELS = {
    "dyeing": DyeingBatch,
    "printing": PrintingJob,
    "washing": WashingEntry,
}


class ProcessRecordCreate(BaseModel):
    process_type: Literal["dyeing", "printing", "washing"]
    order_id: str
    stage_number: int
    lot_number: str
    party_name: Optional[str] = None
    customer_id: Optional[str] = None
    input_quantity: Decimal = Decimal("0")
    # process specific
    batch_number: Optional[str] = None
    dye_type: Optional[str] = None
    shade: Optional[str] = None
    design_number: Optional[str] = None
    print_type: Optional[str] = None
    washing_type: Optional[str] = None


class ProcessEventRequest(BaseModel):
    event: ProcessEvent
    reason: Optional[str] = None  # pause reason
    category: Optional[HoldCategory] = None  # quality, or a bare "quality" reason, means quality hold
    actor_id: Optional[str] = None


class ProcessInputRequest(BaseModel):
    input_quantity: Decimal
    updated_by: Optional[str] = None


class ProcessOutputRequest(BaseModel):
    output: StageOutput
    updated_by: Optional[str] = None
