"""
GrowSync Backend - Analyze Route Handler
=========================================

What:  POST /analyze, the signed webhook that receives photo analysis batches.
How:   Authenticate the raw bytes, validate the batch, hand the jobs to the
       BatchOrchestrator. Any failure before the orchestrator runs becomes a
       single error response and no job is processed.
Who:   Called by the automation platform that watches the photo database.

Request Flow:
    1. Read the raw body (signature covers these exact bytes)
    2. authenticate_request → 401 "unauthorized" / "bad signature"
    3. AnalyzeRequest validation → 400 with the validation detail
    4. BatchOrchestrator.process_batch → 200 {results, errors}
       (500 when the store is not configured)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PydanticValidationError

from growsync.config import Settings
from growsync.dependencies import get_orchestrator, get_settings
from growsync.exceptions import ValidationError
from growsync.middleware.request_id import request_id_var
from growsync.schemas.analyze import AnalyzeRequest, AnalyzeResponse, ErrorResponse
from growsync.security.signature import authenticate_request
from growsync.services.batch import BatchOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analyze"])


def format_validation_error(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into 'jobs.0.date: <message>; ...'."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request body"


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    response_model_exclude_none=True,
    responses={
        200: {"description": "Batch processed (per-job errors are in the body)"},
        400: {"description": "Malformed batch", "model": ErrorResponse},
        401: {"description": "Missing or invalid signature", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
        500: {"description": "Service not configured", "model": ErrorResponse},
    },
    summary="Analyze a batch of grow photos",
)
async def analyze(
    request: Request,
    x_signature: Optional[str] = Header(default=None, description="Hex HMAC-SHA256 of the raw body"),
    settings: Settings = Depends(get_settings),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> AnalyzeResponse:
    raw_body = await request.body()
    authenticate_request(raw_body, settings.hmac_secret, x_signature)

    try:
        batch = AnalyzeRequest.model_validate_json(raw_body)
    except PydanticValidationError as e:
        raise ValidationError(message=format_validation_error(e)) from e

    return await orchestrator.process_batch(batch.jobs, request_id=request_id_var.get(""))
