"""Main FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import settings
from app.database.database import init_db, get_db, SessionLocal
from app.api.changes import router as changes_router
from app.api.dependencies import activity_logger, api_call_logger, get_finance_sync_service
from app.api.finance import router as finance_router
from app.api.flash_sale import router as flash_sale_router
from app.scheduler import ScheduledSync, create_scheduler
from app.services.encryption_service import EncryptionService

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Shop Sync",
    description="Escrow and flash sale synchronization for Shopee shops",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(finance_router)
app.include_router(flash_sale_router)
app.include_router(changes_router)

scheduler = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    encryption: str
    scheduler: str
    message: Optional[str] = None


@app.on_event("startup")
async def startup_event():
    """Validate encryption, initialize database and start the scheduler."""
    global scheduler

    # Validate encryption service (will exit if key is invalid)
    EncryptionService()
    init_db()

    if settings.scheduler_enabled:
        scheduled_sync = ScheduledSync(get_finance_sync_service(), SessionLocal)
        scheduler = create_scheduler(scheduled_sync)
        scheduler.start()
        logger.info("Escrow sync scheduler started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler and flush pending log writes."""
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)

    await api_call_logger.drain()
    await activity_logger.drain()


@app.get("/")
async def root():
    return {"message": "Shop Sync API", "version": "0.1.0"}


@app.get("/api/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint.

    Checks database connectivity and encryption key validity.
    """
    health_status = {
        "status": "healthy",
        "database": "connected",
        "encryption": "valid",
        "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
    }

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        health_status["message"] = str(e)
        return HealthResponse(**health_status)

    encryption_service = EncryptionService()
    if encryption_service.decrypt(encryption_service.encrypt("test")) != "test":
        health_status["encryption"] = "invalid"
        health_status["status"] = "unhealthy"
        health_status["message"] = "Encryption service validation failed"

    return HealthResponse(**health_status)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.app_host, port=settings.app_port)
