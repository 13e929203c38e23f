"""
GrowSync Backend - Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for every failure the sync engine knows about.
How:   Each exception carries a short, client-safe message and an optional context
       dict. Global exception handlers (registered in main.py) turn request-level
       errors into JSON responses; the batch orchestrator turns job-level errors
       into `status: error` entries.

Exception Hierarchy:
    GrowSyncError (base)
    ├── UnauthorizedError        → 401 (missing signature or secret)
    ├── BadSignatureError        → 401 (HMAC mismatch)
    ├── ValidationError          → 400 (malformed batch or job)
    ├── ConfigurationError       → 500 (whole batch aborted)
    ├── RateLimitExceededError   → 429 (inbound webhook throttling)
    └── JobError                 → never an HTTP status; downgraded per job
        ├── InvalidUrlError      (record URL holds no identifier)
        ├── PropertyMappingError (writeback value has the wrong type)
        ├── JobTimeoutError      (batch deadline reached)
        └── ExternalStoreError   (non-throttling store API failure)
            └── ThrottledError   (429 / rate_limited, retried by the limiter)

Propagation:
    Unauthorized / BadSignature / Validation short-circuit before any job runs.
    ConfigurationError aborts the batch. Everything under JobError is caught by
    the orchestrator for the one job that raised it.
"""

from typing import Any, Dict, Optional


class GrowSyncError(Exception):
    """
    Base exception for all GrowSync application errors.

    Attributes:
        message:  Client-safe error description (may be returned in API responses)
        context:  Additional debug info (logged, NOT returned to the caller)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ══════════════════════════════════════════════════════════════════════════
# Request-level errors (short-circuit before any job runs)
# ══════════════════════════════════════════════════════════════════════════


class UnauthorizedError(GrowSyncError):
    """No signature header was sent, or no shared secret is configured."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="unauthorized", context=context)


class BadSignatureError(GrowSyncError):
    """
    A signature was provided but does not match the HMAC of the raw body.

    Observably different from UnauthorizedError only in its message; both
    are returned as HTTP 401.
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="bad signature", context=context)


class ValidationError(GrowSyncError):
    """
    Raised when the inbound batch fails structural or field-level validation.

    HTTP: 400 Bad Request. One error for the whole request, no partial processing.

    Example response:
        {"error": "jobs.0.date: Value error, '2024-02-30' is not a calendar date"}
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ConfigurationError(GrowSyncError):
    """
    Raised when a required setting (store token, history collection id) is missing.

    Fatal to the whole batch (HTTP 500), never downgraded to a per-job error.
    """

    def __init__(
        self,
        message: str = "Service is not configured",
        missing: Optional[list] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if missing:
            ctx["missing"] = list(missing)
        super().__init__(message=message, context=ctx)
        self.missing = list(missing or [])


class RateLimitExceededError(GrowSyncError):
    """
    Raised when a client exceeds the per-IP inbound request rate limit.

    HTTP: 429 Too Many Requests, with a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Job-level errors (caught per job by the batch orchestrator)
# ══════════════════════════════════════════════════════════════════════════


class JobError(GrowSyncError):
    """Base for failures that only affect the job that raised them."""


class InvalidUrlError(JobError):
    """The record URL contains no 32-hex or UUID identifier. Not retryable."""

    def __init__(self, url: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["url"] = url
        super().__init__(message=f"Invalid record URL: {url}", context=ctx)
        self.url = url


class PropertyMappingError(JobError):
    """A writeback or history field cannot be expressed as its target property type."""

    def __init__(
        self,
        message: str = "Could not map properties",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class JobTimeoutError(JobError):
    """The job was still running when the batch deadline expired."""

    def __init__(self, deadline_seconds: float, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["deadline_seconds"] = deadline_seconds
        super().__init__(
            message=f"Job exceeded the batch deadline of {deadline_seconds:g}s",
            context=ctx,
        )
        self.deadline_seconds = deadline_seconds


class ExternalStoreError(JobError):
    """
    The external record store answered with a non-throttling error.

    Not retried: surfaced immediately as the job's error.

    Attributes:
        status_code: HTTP status returned by the store (None for transport failures)
        code:        Store-specific error code from the response body, if any
    """

    def __init__(
        self,
        message: str = "External record store request failed",
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        if code:
            ctx["code"] = code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.code = code


class ThrottledError(ExternalStoreError):
    """
    The store rejected the call as rate limited (HTTP 429 or code `rate_limited`).

    Retried transparently by the outbound rate limiter. `retry_after` holds the
    server-supplied delay in seconds when one was sent and valid.
    """

    def __init__(
        self,
        message: str = "External record store is throttling requests",
        retry_after: Optional[float] = None,
        status_code: Optional[int] = 429,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after is not None:
            ctx["retry_after"] = retry_after
        super().__init__(
            message=message,
            status_code=status_code,
            code="rate_limited",
            context=ctx,
        )
        self.retry_after = retry_after
