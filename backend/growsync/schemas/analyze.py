"""
GrowSync Backend - Pydantic Request/Response Schemas
=====================================================

What:  Pydantic models defining the webhook contract and the writeback shape.
How:   The analyze route validates the raw body with AnalyzeRequest; the batch
       orchestrator returns an AnalyzeResponse. Writeback uses the store's
       human-readable property names as aliases ("Health 0-100", "AI Summary").
When:  Validated once per request, before any job runs.
"""

import re
from datetime import date as date_type
from typing import Annotated, Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, Field

MAX_BATCH_SIZE = 100

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Angle = Literal[
    "top", "close", "under-canopy", "trichomes",
    "canopy", "bud-site", "full-plant", "deficiency", "tent", "stem", "roots", "other",
]
PlantId = Literal["BLUE", "GREEN", "OUTDOOR-A", "OUTDOOR-B"]
Trend = Literal["Improving", "Stable", "Declining"]
Severity = Literal["Low", "Medium", "High", "Critical"]

NEXT_STEP_OPTIONS = (
    "None", "RH up", "RH down", "Dim", "Raise light",
    "Feed", "Flush", "IPM", "Defol", "Stake",
)


def _check_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"'{value}' is not a valid http(s) URL")
    return value


def _check_iso_date(value: str) -> str:
    if not _DATE_PATTERN.match(value):
        raise ValueError("date must use the YYYY-MM-DD format")
    try:
        date_type.fromisoformat(value)
    except ValueError:
        raise ValueError(f"'{value}' is not a calendar date") from None
    return value


HttpUrlStr = Annotated[str, AfterValidator(_check_http_url)]
IsoDate = Annotated[str, AfterValidator(_check_iso_date)]


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class Job(BaseModel):
    """
    One unit of work: a photo record plus the context the analysis reads.

    The record URL is only shape-checked here. Whether it contains a record
    identifier is decided per job (InvalidUrlError fails that job alone).
    """

    photo_page_url: HttpUrlStr = Field(description="URL of the source photo record")
    photo_file_urls: List[HttpUrlStr] = Field(min_length=1, description="Image file URLs")
    photo_title: Optional[str] = None
    date: IsoDate = Field(description="Logical date of the photo (YYYY-MM-DD)")
    angle: Optional[Angle] = None
    plant_id: Optional[PlantId] = None
    log_entry_url: Optional[HttpUrlStr] = None
    stage: Optional[str] = None
    room_name: Optional[str] = None
    fixture: Optional[str] = None
    photoperiod_h: Optional[float] = None
    notes: Optional[str] = None

    model_config = {"frozen": True, "extra": "ignore"}


class AnalyzeRequest(BaseModel):
    """
    Body of POST /analyze.

    The envelope fields default to the only values the producer ever sends,
    so a bare `{"jobs": [...]}` is accepted; any other value is rejected.
    """

    action: Literal["analyze_photos"] = "analyze_photos"
    source: Literal["Grow Photos"] = "Grow Photos"
    idempotency_scope: Literal["photo_page_url+date"] = "photo_page_url+date"
    requested_fields_out: List[str] = Field(default_factory=list)
    jobs: List[Job] = Field(min_length=1, max_length=MAX_BATCH_SIZE)

    model_config = {"extra": "ignore"}


# ══════════════════════════════════════════════════════════════════════════
# Writeback - the analysis result for one job
# ══════════════════════════════════════════════════════════════════════════


class Writeback(BaseModel):
    """
    Flat analysis result, keyed by the record store's property names.

    Fields that were not produced stay None and are dropped by to_fields(),
    so they never reach the store as explicit nulls.
    """

    summary: Optional[str] = Field(default=None, alias="AI Summary")
    health: Optional[int] = Field(default=None, ge=0, le=100, alias="Health 0-100")
    next_step: Optional[str] = Field(default=None, alias="AI Next Step")
    vpd_ok: Optional[bool] = Field(default=None, alias="VPD OK")
    dli_ok: Optional[bool] = Field(default=None, alias="DLI OK")
    co2_ok: Optional[bool] = Field(default=None, alias="CO2 OK")
    trend: Optional[Trend] = Field(default=None, alias="Trend")
    dli_mol: Optional[float] = Field(default=None, alias="DLI mol")
    vpd_kpa: Optional[float] = Field(default=None, alias="VPD kPa")
    severity: Optional[Severity] = Field(default=None, alias="Sev")

    model_config = {"populate_by_name": True, "frozen": True}

    def to_fields(self) -> Dict[str, Any]:
        """Writeback as a flat {property name: value} dict without absent fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class JobResult(BaseModel):
    """Outcome of one job. Exactly one of `writebacks` / `error` is set."""

    photo_page_url: str
    status: Literal["ok", "error"]
    error: Optional[str] = None
    writebacks: Optional[Writeback] = None


class AnalyzeResponse(BaseModel):
    """One result per input job (input order) plus the flat list of job errors."""

    results: List[JobResult]
    errors: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Error body shared by all non-200 responses.

    `error` is the only field callers must rely on; it is "unauthorized",
    "bad signature", or the validation detail for 400s.
    """

    error: str = Field(description="Error code or validation detail")
    message: Optional[str] = Field(default=None, description="Human-readable description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Liveness probe body for GET /health."""

    status: str = Field(description="Always 'ok' while the process serves requests")
    version: str
    timestamp: str = Field(description="Current server time (UTC ISO 8601)")
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness probe body for GET /ready."""

    status: str = Field(description="'ready' or 'not_ready'")
    timestamp: str
    checks: Dict[str, str]
