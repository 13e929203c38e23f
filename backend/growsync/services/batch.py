"""
GrowSync Backend - Batch Orchestrator
======================================

What:  Runs every job of an analyze batch and collects one result per job.
How:   All jobs run concurrently on the event loop (asyncio.gather); the shared
       outbound rate limiter is what actually paces them. Each job is bounded by
       the batch deadline and isolated: whatever it raises becomes its own
       `status: error` entry and never affects its siblings.
Who:   Called by the POST /analyze route after authentication and validation.

Per-job pipeline:
    ┌──────────┐    ┌──────────────┐    ┌────────────────┐    ┌────────────────┐
    │ Analysis │───▶│ Map primary  │───▶│ Update primary │───▶│ Upsert history │
    │ (pure)   │    │ + history    │    │ (by page URL)  │    │ (by key)       │
    └──────────┘    └──────────────┘    └────────────────┘    └────────────────┘

Failure scope:
    Batch size outside [1, 100]    → ValidationError, nothing runs
    Missing store configuration    → ConfigurationError, nothing runs
    Anything raised inside a job   → that job's result is an error
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from growsync.config import Settings
from growsync.exceptions import (
    ConfigurationError,
    GrowSyncError,
    JobTimeoutError,
    ValidationError,
)
from growsync.schemas.analyze import MAX_BATCH_SIZE, AnalyzeResponse, Job, JobResult
from growsync.services.analysis import analyze_job
from growsync.services.identifiers import idempotency_key
from growsync.services.property_mapper import (
    MappingContext,
    map_history_properties,
    map_to_target_properties,
)
from growsync.services.upsert import UpsertCoordinator

logger = logging.getLogger(__name__)

UNEXPECTED_JOB_ERROR = "Internal error while processing job"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BatchOrchestrator:
    """
    Fan-out/fan-in over the jobs of one request.

    Args:
        coordinator:      Upsert coordinator (owns the store and rate limiter)
        settings:         Used for the store configuration check and the deadline
        deadline_seconds: Override for settings.batch_deadline_seconds
        now:              Clock for the "Reviewed at" stamp
    """

    def __init__(
        self,
        coordinator: UpsertCoordinator,
        settings: Settings,
        deadline_seconds: Optional[float] = None,
        now: Callable[[], datetime] = _utc_now,
    ):
        self.coordinator = coordinator
        self.settings = settings
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.batch_deadline_seconds
        )
        self._now = now

    def _check_configuration(self) -> None:
        missing = self.settings.missing_store_settings
        if missing:
            raise ConfigurationError(
                message=f"Missing required configuration: {', '.join(missing)}",
                missing=missing,
            )

    async def process_batch(
        self,
        jobs: Sequence[Job],
        request_id: Optional[str] = None,
    ) -> AnalyzeResponse:
        """
        Process every job and return results in input order.

        Raises:
            ValidationError:    Empty batch or more than MAX_BATCH_SIZE jobs
            ConfigurationError: Store token or history collection id missing
        """
        if not jobs:
            raise ValidationError(message="jobs: batch must contain at least one job", field="jobs")
        if len(jobs) > MAX_BATCH_SIZE:
            raise ValidationError(
                message=f"jobs: batch exceeds the maximum of {MAX_BATCH_SIZE} jobs",
                field="jobs",
                context={"received": len(jobs)},
            )
        self._check_configuration()

        logger.info(
            "[%s] Processing batch of %d job(s), deadline=%gs",
            request_id, len(jobs), self.deadline_seconds,
        )
        results: List[JobResult] = await asyncio.gather(
            *(self._run_with_deadline(job, request_id) for job in jobs)
        )
        errors = [result.error for result in results if result.status == "error" and result.error]
        logger.info(
            "[%s] Batch finished: %d ok, %d failed",
            request_id, len(results) - len(errors), len(errors),
        )
        return AnalyzeResponse(results=results, errors=errors)

    async def _run_with_deadline(self, job: Job, request_id: Optional[str]) -> JobResult:
        try:
            return await asyncio.wait_for(self.process_job(job), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            error = JobTimeoutError(self.deadline_seconds)
            logger.error("[%s] Job %s timed out", request_id, job.photo_page_url)
            return JobResult(photo_page_url=job.photo_page_url, status="error", error=error.message)
        except GrowSyncError as e:
            logger.error(
                "[%s] Job %s failed: %s (%s)",
                request_id, job.photo_page_url, e.message, type(e).__name__,
            )
            return JobResult(photo_page_url=job.photo_page_url, status="error", error=e.message)
        except Exception:
            logger.error(
                "[%s] Unexpected error in job %s", request_id, job.photo_page_url, exc_info=True,
            )
            return JobResult(
                photo_page_url=job.photo_page_url, status="error", error=UNEXPECTED_JOB_ERROR,
            )

    async def process_job(self, job: Job) -> JobResult:
        """Analyze one job, write the primary record, upsert its history record."""
        writeback = analyze_job(job)
        context = MappingContext.from_job(job, reviewed_at=self._now().isoformat())

        primary_properties = map_to_target_properties(writeback, context)
        history_properties = map_history_properties(context, writeback)

        await self.coordinator.update_record(job.photo_page_url, primary_properties)
        await self.coordinator.upsert_record(
            idempotency_key(job.photo_page_url, job.date),
            context,
            history_properties,
        )
        return JobResult(photo_page_url=job.photo_page_url, status="ok", writebacks=writeback)
