from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, ENABLE_SCHEDULER
from database import create_indexes
from dependencies import get_audit_dispatcher
from routers import production_orders_router, process_records_router
from services.production_errors import ProductionError
from services.scheduler import start_scheduler, stop_scheduler, get_scheduler_status

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="Production Flow API", version="1.0.0")

# Create main API router with /api prefix
api_router = APIRouter(prefix="/api")

api_router.include_router(production_orders_router)
api_router.include_router(process_records_router)

# Root endpoint
@api_router.get("/")
async def root():
    return {"message": "Production Flow API", "status": "running"}

@api_router.get("/scheduler/status")
async def scheduler_status():
    return get_scheduler_status()

# Include the main router
app.include_router(api_router)

@app.exception_handler(ProductionError)
async def production_error_handler(request: Request, exc: ProductionError):
    """Typed production flow errors -> HTTP status with a stable error code"""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.on_event("startup")
async def on_startup():
    await create_indexes()
    if ENABLE_SCHEDULER:
        start_scheduler()

@app.on_event("shutdown")
async def on_shutdown():
    stop_scheduler()
    await get_audit_dispatcher().drain()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
