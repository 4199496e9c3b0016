"""
Health Check Router

Provides health check endpoints for monitoring application status.
Readiness covers the two backing services: the metadata database and the
SCORM blob storage root.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import os
import sys
import time
from datetime import datetime

from ..db.config import get_session
from ..models.scorm import HealthCheckResponse
from ..storage.blob_store import LocalBlobStore, get_blob_store

logger = logging.getLogger(__name__)

# Initialize router
router = APIRouter()

# Application start time for uptime calculation
_start_time = time.time()


async def _database_status(session: AsyncSession) -> dict:
    try:
        await session.execute(text("SELECT 1"))
        return {"reachable": True}
    except Exception as e:
        logger.warning(f"Database health probe failed: {e}")
        return {"reachable": False, "error": str(e)}


def _storage_status(blob_store: LocalBlobStore) -> dict:
    root = blob_store.root
    return {
        "root": str(root),
        "exists": root.is_dir(),
        "writable": root.is_dir() and os.access(root, os.W_OK),
    }


@router.get("/health", response_model=HealthCheckResponse, summary="Basic Health Check")
async def health_check():
    """
    Basic health check endpoint

    Returns application status, version, and environment information.
    This endpoint is used by load balancers and monitoring systems.
    """
    uptime = time.time() - _start_time

    return HealthCheckResponse(
        status="healthy",
        version=os.getenv("APP_VERSION", "1.0.0"),
        environment=os.getenv("ENVIRONMENT", "development"),
        timestamp=datetime.utcnow(),
        uptime=uptime
    )


@router.get("/health/detailed", summary="Detailed Health Check")
async def detailed_health_check(
    session: AsyncSession = Depends(get_session),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """
    Detailed health check with dependency status

    Checks application components including:
    - Metadata database connectivity
    - SCORM storage root availability
    """
    uptime = time.time() - _start_time
    database = await _database_status(session)
    storage = _storage_status(blob_store)
    is_healthy = database["reachable"] and storage["writable"]

    return {
        "status": "healthy" if is_healthy else "degraded",
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "environment": os.getenv("ENVIRONMENT", "development"),
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": uptime,
        "components": {
            "database": database,
            "storage": storage,
        },
        "details": {
            "cors_origins": os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
            "python_version": sys.version,
            "startup_time": datetime.fromtimestamp(_start_time).isoformat()
        }
    }


@router.get("/health/ready", summary="Readiness Check")
async def readiness_check(
    session: AsyncSession = Depends(get_session),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """
    Kubernetes-style readiness probe

    Returns 200 if the application is ready to serve requests,
    503 if the database or storage is unavailable.
    """
    database = await _database_status(session)
    if not database["reachable"]:
        raise HTTPException(
            status_code=503,
            detail=f"Application not ready: database unavailable ({database['error']})"
        )
    if not _storage_status(blob_store)["writable"]:
        raise HTTPException(
            status_code=503,
            detail="Application not ready: SCORM storage is not writable"
        )
    return {"status": "ready", "timestamp": datetime.utcnow().isoformat()}


@router.get("/health/live", summary="Liveness Check")
async def liveness_check():
    """
    Kubernetes-style liveness probe

    Returns 200 if the application is alive and responding,
    should rarely fail unless the application is completely broken.
    """
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
        "pid": os.getpid()
    }
