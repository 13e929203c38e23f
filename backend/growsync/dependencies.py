"""
GrowSync Backend - Service Container & FastAPI Dependencies
============================================================

What:  Builds the long-lived services once per app and hands them to routes.
How:   build_services() wires httpx client → NotionStore → OutboundRateLimiter →
       UpsertCoordinator → BatchOrchestrator from one Settings object. The app
       factory stores the container on app.state; routes receive pieces of it
       through Depends(), which tests replace with app.dependency_overrides.
Who:   main.create_app() builds the container; the lifespan closes it.

Dependency graph:
    Settings ──▶ httpx.AsyncClient ──▶ NotionStore ─┐
             └─▶ OutboundRateLimiter ───────────────┼─▶ UpsertCoordinator ──▶ BatchOrchestrator
                                                    └─ (history collection id)
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from growsync.config import Settings
from growsync.services.batch import BatchOrchestrator
from growsync.services.notion_store import NotionStore, build_client
from growsync.services.rate_limiter import OutboundRateLimiter
from growsync.services.upsert import UpsertCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    client: httpx.AsyncClient
    limiter: OutboundRateLimiter
    store: NotionStore
    coordinator: UpsertCoordinator
    orchestrator: BatchOrchestrator

    async def aclose(self) -> None:
        await self.client.aclose()


def build_services(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    """Wire every service from `settings`. `transport` replaces the network in tests."""
    client = build_client(settings, transport=transport)
    limiter = OutboundRateLimiter(
        min_interval=settings.notion_min_interval_seconds,
        max_retries=settings.notion_max_retries,
        base_delay=settings.notion_retry_base_delay,
        max_delay=settings.notion_retry_max_delay,
    )
    store = NotionStore(client, token=settings.notion_api_token)
    coordinator = UpsertCoordinator(store, limiter, settings.notion_history_db_id)
    orchestrator = BatchOrchestrator(coordinator, settings)
    logger.debug(
        "Services built: min_interval=%.3fs, max_retries=%d, deadline=%gs",
        settings.notion_min_interval_seconds,
        settings.notion_max_retries,
        settings.batch_deadline_seconds,
    )
    return ServiceContainer(
        client=client,
        limiter=limiter,
        store=store,
        coordinator=coordinator,
        orchestrator=orchestrator,
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.services.orchestrator
