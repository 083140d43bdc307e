from models.user import User
from models.production import (
    ProcessType, StageStatus, OrderStatus, HoldCategory,
    StageQuantities, StageTiming, Stage, ProductionOrder,
    StageTemplate, ProductionOrderCreate, DEFAULT_FLOW_STAGES,
    StageStartRequest, StageResumeRequest, StageHoldRequest, StageCancelRequest,
    StageInputRequest, StageCompleteRequest, StageOutputRequest, OrderStatusView,
    DyeingOutput, PrintingOutput, WashingOutput, GenericOutput,
)
from models.process_record import (
    ProcessEvent, DyeingBatch, PrintingJob, WashingEntry, RECORD_MODELS,
    ProcessRecordCreate, ProcessEventRequest, ProcessInputRequest, ProcessOutputRequest,
)

__all__ = [
    "User",
    "ProcessType", "StageStatus", "OrderStatus", "HoldCategory",
    "StageQuantities", "StageTiming", "Stage", "ProductionOrder",
    "StageTemplate", "ProductionOrderCreate", "DEFAULT_FLOW_STAGES",
    "StageStartRequest", "StageResumeRequest", "StageHoldRequest", "StageCancelRequest",
    "StageInputRequest", "StageCompleteRequest", "StageOutputRequest", "OrderStatusView",
    "DyeingOutput", "PrintingOutput", "WashingOutput", "GenericOutput",
    "ProcessEvent", "DyeingBatch", "PrintingJob", "WashingEntry", "RECORD_MODELS",
    "ProcessRecordCreate", "ProcessEventRequest", "ProcessInputRequest", "ProcessOutputRequest",
]
