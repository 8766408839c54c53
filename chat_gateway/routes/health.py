"""Health check endpoints"""

from typing import Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel
import structlog

from .. import __version__

logger = structlog.get_logger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str
    version: str
    services: Dict[str, str]


@router.get("", response_model=HealthResponse)
async def health_check():
    """Basic health check"""
    return HealthResponse(status="healthy", version=__version__, services={})


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check with storage validation"""
    checks = {"storage": "healthy" if await request.app.state.store.ping() else "unhealthy"}

    overall_status = "healthy" if all(status == "healthy" for status in checks.values()) else "unhealthy"
    return {"status": overall_status, "checks": checks}


@router.get("/live")
async def liveness_check():
    """Liveness check"""
    return {"status": "alive"}
