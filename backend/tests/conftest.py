"""
GrowSync Backend - Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped:
    ├── test_settings:  Settings with a test secret, fake Notion ids, no call spacing
    ├── job_factory:    Builds valid Job payload dicts with overrides
    ├── sign_body:      Serializes a payload and returns (raw bytes, headers)
    ├── sleeps / fake_sleep: Records backoff delays instead of sleeping
    ├── fake_store:     In-memory RecordStore with scripted failures
    ├── limiter / coordinator / orchestrator: Services over fake_store
    ├── app:            create_app(test_settings)
    └── test_client:    HTTPX AsyncClient over ASGITransport
"""

import json
import os
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Settings are read at import time; keep tests off any real workspace.
os.environ["HMAC_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ["NOTION_API_TOKEN"] = "secret_test_token"
os.environ["NOTION_HISTORY_DB_ID"] = "a" * 32
os.environ["NOTION_MIN_INTERVAL_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

from growsync.config import Settings  # noqa: E402
from growsync.security.signature import sign  # noqa: E402
from growsync.services.batch import BatchOrchestrator  # noqa: E402
from growsync.services.property_mapper import rich_text  # noqa: E402
from growsync.services.rate_limiter import OutboundRateLimiter  # noqa: E402
from growsync.services.store_base import Properties, RecordStore  # noqa: E402
from growsync.services.upsert import UpsertCoordinator  # noqa: E402

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef"
HISTORY_DB_ID = "a" * 32
PHOTO_ID = "0123456789abcdef0123456789abcdef"
PHOTO_URL = f"https://store/photo-{PHOTO_ID}"


# ══════════════════════════════════════════════════════════════════════════
# Fakes
# ══════════════════════════════════════════════════════════════════════════


class FakeStore(RecordStore):
    """
    In-memory record store.

    Records are {"collection": id, "properties": {...}}. Queue exceptions in
    `failures["lookup" | "create" | "update"]` to make the next calls raise.
    """

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[str, List[Exception]] = defaultdict(list)

    def _maybe_fail(self, method: str) -> None:
        if self.failures[method]:
            raise self.failures[method].pop(0)

    async def lookup_by_key(self, collection_id: str, key: str) -> Optional[str]:
        self.calls.append(("lookup", key))
        self._maybe_fail("lookup")
        for record_id, record in self.records.items():
            if (
                record["collection"] == collection_id
                and record["properties"].get("Idempotency Key") == rich_text(key)
            ):
                return record_id
        return None

    async def create(self, collection_id: str, properties: Properties) -> str:
        self.calls.append(("create", collection_id))
        self._maybe_fail("create")
        record_id = uuid.uuid4().hex
        self.records[record_id] = {"collection": collection_id, "properties": dict(properties)}
        return record_id

    async def update(self, record_id: str, properties: Properties) -> str:
        self.calls.append(("update", record_id))
        self._maybe_fail("update")
        record = self.records.setdefault(record_id, {"collection": None, "properties": {}})
        record["properties"].update(properties)
        return record_id

    def history_records(self) -> List[Dict[str, Any]]:
        return [r for r in self.records.values() if r["collection"] == HISTORY_DB_ID]


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        hmac_secret=TEST_SECRET,
        notion_api_token="secret_test_token",
        notion_history_db_id=HISTORY_DB_ID,
        notion_min_interval_seconds=0,
        notion_max_retries=5,
        batch_deadline_seconds=5,
        log_level="WARNING",
    )


@pytest.fixture
def job_factory():
    """
    Returns a builder for valid job dicts.

    Usage:
        job = job_factory(notes="mites spotted", stage="flower")
    """

    def _make(**overrides) -> Dict[str, Any]:
        job = {
            "photo_page_url": PHOTO_URL,
            "photo_file_urls": ["https://files.example.com/photo.jpg"],
            "date": "2024-01-15",
            "angle": "canopy",
            "plant_id": "BLUE",
            "stage": "vegetative",
        }
        job.update(overrides)
        return {k: v for k, v in job.items() if v is not None}

    return _make


@pytest.fixture
def sign_body():
    """Serialize a payload and sign it: returns (raw body, request headers)."""

    def _sign(payload: Any, secret: str = TEST_SECRET) -> Tuple[bytes, Dict[str, str]]:
        body = json.dumps(payload).encode("utf-8")
        headers = {"content-type": "application/json", "x-signature": sign(body, secret)}
        return body, headers

    return _sign


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def limiter(fake_sleep) -> OutboundRateLimiter:
    return OutboundRateLimiter(min_interval=0, max_retries=5, base_delay=1.0, max_delay=32.0, sleep=fake_sleep)


@pytest.fixture
def coordinator(fake_store, limiter) -> UpsertCoordinator:
    return UpsertCoordinator(fake_store, limiter, HISTORY_DB_ID)


@pytest.fixture
def orchestrator(coordinator, test_settings) -> BatchOrchestrator:
    return BatchOrchestrator(coordinator, test_settings)


@pytest.fixture
def app(test_settings):
    from growsync.main import create_app

    return create_app(test_settings)


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
