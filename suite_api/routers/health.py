"""Health check router.

Endpoints:
    GET /api/health - liveness plus which AI providers are configured
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request

from ..config import API_VERSION, GenerationConfig
from ..dependencies import get_generation_config
from ..middleware.rate_limit import rate_limit_health
from ..models import HealthStatus
from ..services.generation import build_candidates

router = APIRouter()


@router.get("/health", response_model=HealthStatus)
@rate_limit_health
async def health_check(
    request: Request,
    config: GenerationConfig = Depends(get_generation_config),
) -> HealthStatus:
    """Basic health check - no auth required.

    Lists providers in failover order without exposing any key material.
    """
    return HealthStatus(
        status="healthy",
        timestamp=datetime.utcnow().isoformat(),
        version=API_VERSION,
        providers=[f"{backend.provider}:{backend.model}" for backend in build_candidates(config)],
    )
