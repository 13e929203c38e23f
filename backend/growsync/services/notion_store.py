"""
GrowSync Backend - Notion Record Store
=======================================

What:  RecordStore implementation on top of the Notion REST API.
How:   One shared httpx.AsyncClient (base URL, bearer token and Notion-Version
       preset). Each method is a single HTTP call; responses are classified into
       success, ThrottledError (429 or body code "rate_limited") and
       ExternalStoreError (any other failure, transport errors included).
Who:   Built once in the FastAPI lifespan; called by the UpsertCoordinator
       through the outbound rate limiter.

Endpoints used:
    PATCH /pages/{id}                  update properties of a record
    POST  /databases/{id}/query        lookup by "Idempotency Key"
    POST  /pages                       create a record under a database
"""

import logging
from typing import Any, Dict, Optional

import httpx

from growsync.config import Settings
from growsync.exceptions import ExternalStoreError, ThrottledError
from growsync.services.identifiers import extract_record_id
from growsync.services.store_base import Properties, RecordStore

logger = logging.getLogger(__name__)

IDEMPOTENCY_PROPERTY = "Idempotency Key"

# Error details from Notion can echo large request fragments.
MAX_ERROR_DETAIL = 200


def build_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared Notion HTTP client. `transport` lets tests plug in httpx.MockTransport."""
    return httpx.AsyncClient(
        base_url=settings.notion_api_base_url,
        headers={
            "Authorization": f"Bearer {settings.notion_api_token}",
            "Notion-Version": settings.notion_version,
            "Content-Type": "application/json",
        },
        timeout=settings.notion_timeout_seconds,
        transport=transport,
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After header in seconds; None when absent, malformed or not positive."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class NotionStore(RecordStore):
    """
    Notion pages as records, Notion databases as collections.

    Args:
        client: httpx.AsyncClient from build_client() (owned by the caller)
        token:  Integration token, only used to report configuration state
    """

    def __init__(self, client: httpx.AsyncClient, token: str = ""):
        self._client = client
        self._token = token

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Notion %s %s failed: %s", method, path, type(e).__name__)
            raise ExternalStoreError(
                message=f"Notion request failed: {type(e).__name__}",
                context={"method": method, "path": path},
            ) from e

        if response.status_code == 204:
            return {}
        if response.is_success:
            return response.json()

        body = _error_body(response)
        code = body.get("code")
        detail = str(body.get("message") or response.text)[:MAX_ERROR_DETAIL]

        if response.status_code == 429 or code == "rate_limited":
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            raise ThrottledError(
                message=f"Notion API rate limited: {detail}",
                retry_after=retry_after,
                status_code=response.status_code,
                context={"method": method, "path": path},
            )

        logger.warning(
            "Notion %s %s returned %d (%s)", method, path, response.status_code, code,
        )
        raise ExternalStoreError(
            message=f"Notion API error {response.status_code}: {detail}",
            status_code=response.status_code,
            code=code,
            context={"method": method, "path": path},
        )

    async def lookup_by_key(self, collection_id: str, key: str) -> Optional[str]:
        body = await self._request(
            "POST",
            f"/databases/{collection_id}/query",
            {
                "filter": {"property": IDEMPOTENCY_PROPERTY, "rich_text": {"equals": key}},
                "page_size": 1,
            },
        )
        results = body.get("results") or []
        if not results:
            return None
        return extract_record_id(results[0]["id"])

    async def create(self, collection_id: str, properties: Properties) -> str:
        body = await self._request(
            "POST",
            "/pages",
            {"parent": {"database_id": collection_id}, "properties": properties},
        )
        return extract_record_id(body["id"])

    async def update(self, record_id: str, properties: Properties) -> str:
        body = await self._request("PATCH", f"/pages/{record_id}", {"properties": properties})
        return extract_record_id(body.get("id") or record_id)

    async def health_check(self) -> bool:
        return bool(self._token)
