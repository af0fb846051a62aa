from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from database.mongodb import db, ensure_indexes
from config import get_settings
from routes import drilling_tools, daily_usage, service_schedules, reports
from services.errors import UsageEngineError
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the app"""
    # Startup
    await db.connect(settings.mongo_url, settings.db_name)
    await ensure_indexes(db.get_db())
    logger.info("DrillTrack Usage Engine started")
    yield
    # Shutdown
    await db.disconnect()
    logger.info("DrillTrack Usage Engine stopped")

# Create FastAPI app
app = FastAPI(
    title="DrillTrack Usage API",
    description="Drilling tool usage accumulation and service scheduling",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(UsageEngineError)
async def usage_engine_error_handler(request: Request, exc: UsageEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Include routers
app.include_router(drilling_tools.router)
app.include_router(daily_usage.router)
app.include_router(service_schedules.router)
app.include_router(reports.router)

@app.get("/")
async def root():
    return {
        "message": "DrillTrack Usage API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/api")
async def api_root():
    return {
        "message": "DrillTrack Usage API",
        "endpoints": {
            "drilling_tools": "/api/drilling-tools",
            "daily_usage": "/api/daily-usage",
            "service_schedules": "/api/service-schedules",
            "reports": "/api/reports/drilling-tools"
        }
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
