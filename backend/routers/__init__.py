from routers.production_orders import router as production_orders_router
from routers.process_records import router as process_records_router

__all__ = [
    "production_orders_router",
    "process_records_router"
]
