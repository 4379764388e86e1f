"""AI generation callables.

Seven named endpoints, one handler: the mobile app picks the name per
feature, the backend treats them identically.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_generation_engine, verify_firebase_token
from ..middleware.rate_limit import rate_limit_generation
from ..models import CallableRequest, CallableResponse, ErrorResponse
from ..services.generation import ProviderFailoverEngine

router = APIRouter()
logger = logging.getLogger("api.generation")

GENERATION_ENDPOINTS = (
    "generateStudyNote",
    "generateFlashcards",
    "generateResume",
    "generateCoverLetter",
    "getTeacherResponse",
    "getInterviewerResponse",
    "getInterviewFeedback",
)


@rate_limit_generation
async def handle_generation(
    request: Request,
    payload: CallableRequest,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
    engine: ProviderFailoverEngine = Depends(get_generation_engine),
) -> Dict[str, Any]:
    uid = decoded_token["uid"]
    result = await asyncio.to_thread(engine.generate, uid, payload.data.get("prompt"))
    logger.info(
        "%s uid=%s provider=%s tokens=%d/%d cost=%.6f",
        request.url.path.rsplit("/", 1)[-1],
        uid,
        result.provider,
        result.input_tokens,
        result.output_tokens,
        result.cost,
    )
    return {"result": {"text": result.text}}


for _name in GENERATION_ENDPOINTS:
    router.add_api_route(
        f"/callable/{_name}",
        handle_generation,
        methods=["POST"],
        name=_name,
        response_model=CallableResponse,
        responses={
            400: {"model": ErrorResponse},
            401: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )
