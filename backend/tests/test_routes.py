"""
GrowSync Backend - HTTP Route Tests
====================================

What:  The FastAPI app end to end through httpx's ASGITransport.

What we test:
    ✅ POST /analyze: 401 unauthorized / bad signature, 400 validation, 500 config
    ✅ POST /analyze: 200 envelope with per-job results (orchestrator over a fake store)
    ✅ POST /analyze: full pipeline against a MockTransport Notion
    ✅ GET /health, GET /ready
    ✅ Security headers, X-Request-ID, inbound rate limit and its bypass
"""

import hashlib
import json
import uuid

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from growsync.config import Settings
from growsync.dependencies import get_orchestrator
from growsync.main import create_app
from growsync.security.signature import sign

from conftest import HISTORY_DB_ID, PHOTO_ID, PHOTO_URL, TEST_SECRET


def client_for(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def settings_with(**overrides) -> Settings:
    fields = dict(
        hmac_secret=TEST_SECRET,
        notion_api_token="secret_test_token",
        notion_history_db_id=HISTORY_DB_ID,
        notion_min_interval_seconds=0,
    )
    fields.update(overrides)
    return Settings(**fields)


# ══════════════════════════════════════════════════════════════════════════
# POST /analyze
# ══════════════════════════════════════════════════════════════════════════


class TestAnalyzeAuthentication:
    @pytest.mark.asyncio
    async def test_missing_signature(self, test_client, job_factory):
        response = await test_client.post("/analyze", json={"jobs": [job_factory()]})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_bad_signature(self, test_client, job_factory, sign_body):
        body, headers = sign_body({"jobs": [job_factory()]}, secret="someone-elses-secret")

        response = await test_client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["error"] == "bad signature"

    @pytest.mark.asyncio
    async def test_no_secret_configured(self, job_factory, sign_body):
        app = create_app(settings_with(hmac_secret=""))
        body, headers = sign_body({"jobs": [job_factory()]})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_signature_checked_before_validation(self, test_client):
        response = await test_client.post(
            "/analyze", content=b"not json", headers={"x-signature": "00" * 32},
        )
        assert response.status_code == 401


class TestAnalyzeValidation:
    @pytest.mark.asyncio
    async def test_invalid_date(self, app, orchestrator, fake_store, job_factory, sign_body):
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        body, headers = sign_body({"jobs": [job_factory(date="2024-02-30")]})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 400
        assert "jobs.0.date" in response.json()["error"]
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_invalid_json(self, test_client):
        body = b"{not json"
        headers = {"content-type": "application/json", "x-signature": sign(body, TEST_SECRET)}

        response = await test_client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]

    @pytest.mark.asyncio
    async def test_empty_jobs(self, test_client, sign_body):
        body, headers = sign_body({"jobs": []})
        response = await test_client.post("/analyze", content=body, headers=headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_101_jobs_rejected_without_store_calls(self, app, orchestrator, fake_store, job_factory, sign_body):
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        jobs = [job_factory(photo_page_url=f"https://store/photo-{i:032x}") for i in range(101)]
        body, headers = sign_body({"jobs": jobs})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 400
        assert fake_store.calls == []

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, test_client, job_factory, sign_body):
        body, headers = sign_body({"action": "delete_everything", "jobs": [job_factory()]})
        response = await test_client.post("/analyze", content=body, headers=headers)
        assert response.status_code == 400


class TestAnalyzeProcessing:
    @pytest.mark.asyncio
    async def test_batch_envelope(self, app, orchestrator, job_factory, sign_body):
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        jobs = [job_factory(), job_factory(photo_page_url="https://store/photo-no-id")]
        body, headers = sign_body({"action": "analyze_photos", "source": "Grow Photos", "jobs": jobs})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 200
        data = response.json()
        ok, failed = data["results"]
        assert ok["status"] == "ok"
        assert "error" not in ok
        assert ok["writebacks"]["Health 0-100"] == 85
        assert ok["writebacks"]["AI Next Step"] == "Raise light"
        assert failed["status"] == "error"
        assert "writebacks" not in failed
        assert data["errors"] == [failed["error"]]

    @pytest.mark.asyncio
    async def test_missing_store_configuration_is_500(self, job_factory, sign_body):
        app = create_app(settings_with(notion_history_db_id=None))
        body, headers = sign_body({"jobs": [job_factory()]})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 500
        assert response.json()["error"] == "configuration_error"
        assert response.json()["details"]["missing"] == ["NOTION_HISTORY_DB_ID"]

    @pytest.mark.asyncio
    async def test_full_pipeline_against_fake_notion(self, job_factory, sign_body):
        seen = []

        def notion(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "PATCH":
                return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1]})
            if request.url.path.endswith("/query"):
                return httpx.Response(200, json={"results": []})
            return httpx.Response(200, json={"id": str(uuid.uuid4())})

        app = create_app(settings_with(), transport=httpx.MockTransport(notion))
        body, headers = sign_body({"jobs": [job_factory(photo_page_url=PHOTO_URL, date="2024-01-15")]})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["results"][0]["status"] == "ok"

        assert [(r.method, r.url.path) for r in seen] == [
            ("PATCH", f"/v1/pages/{PHOTO_ID}"),
            ("POST", f"/v1/databases/{HISTORY_DB_ID}/query"),
            ("POST", "/v1/pages"),
        ]
        expected_key = hashlib.sha256(f"{PHOTO_URL}|2024-01-15".encode()).hexdigest()
        query = json.loads(seen[1].content)
        assert query["filter"]["rich_text"]["equals"] == expected_key
        created = json.loads(seen[2].content)["properties"]
        assert created["Idempotency Key"]["rich_text"][0]["text"]["content"] == expected_key
        assert created["Related Photo"] == {"relation": [{"id": PHOTO_ID}]}
        assert created["Name"]["title"][0]["text"]["content"] == "BLUE - 2024-01-15 - canopy"

    @pytest.mark.asyncio
    async def test_throttled_notion_call_is_retried(self, job_factory, sign_body):
        attempts = {"patch": 0}

        def notion(request: httpx.Request) -> httpx.Response:
            if request.method == "PATCH" and request.url.path == f"/v1/pages/{PHOTO_ID}":
                attempts["patch"] += 1
                if attempts["patch"] == 1:
                    return httpx.Response(429, headers={"Retry-After": "0.01"}, json={"code": "rate_limited"})
                return httpx.Response(200, json={"id": PHOTO_ID})
            if request.url.path.endswith("/query"):
                return httpx.Response(200, json={"results": [{"id": "d" * 32}]})
            return httpx.Response(200, json={"id": "d" * 32})

        app = create_app(settings_with(), transport=httpx.MockTransport(notion))
        body, headers = sign_body({"jobs": [job_factory()]})

        async with client_for(app) as client:
            response = await client.post("/analyze", content=body, headers=headers)

        assert response.json()["results"][0]["status"] == "ok"
        assert attempts["patch"] == 2


# ══════════════════════════════════════════════════════════════════════════
# Health, readiness, middleware
# ══════════════════════════════════════════════════════════════════════════


class TestProbes:
    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_ready_when_configured(self, test_client):
        response = await test_client.get("/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["checks"] == {"server": "ok", "notion": "configured"}

    @pytest.mark.asyncio
    async def test_not_ready_without_store(self):
        app = create_app(settings_with(notion_api_token=""))
        async with client_for(app) as client:
            response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["notion"] == "not_configured"


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_security_headers(self, test_client):
        response = await test_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Strict-Transport-Security"] == "max-age=31536000; includeSubDomains"
        assert response.headers["Content-Security-Policy"] == "default-src 'self'"

    @pytest.mark.asyncio
    async def test_security_headers_on_errors(self, test_client):
        response = await test_client.post("/analyze", json={})
        assert response.status_code == 401
        assert response.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "run-42"})
        assert response.headers["X-Request-ID"] == "run-42"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/health")
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_inbound_rate_limit(self):
        app = create_app(settings_with(rate_limit_requests=2))
        async with client_for(app) as client:
            statuses = [(await client.post("/analyze", json={})).status_code for _ in range(3)]
            limited = await client.post("/analyze", json={})

        assert statuses == [401, 401, 429]
        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_rate_limit_bypass_token(self):
        app = create_app(settings_with(rate_limit_requests=1, rate_limit_bypass_token="let-me-in"))
        async with client_for(app) as client:
            statuses = [
                (await client.post("/analyze", json={}, headers={"x-rate-limit-bypass": "let-me-in"})).status_code
                for _ in range(3)
            ]
            wrong = [
                (await client.post("/analyze", json={}, headers={"x-rate-limit-bypass": "guess"})).status_code
                for _ in range(2)
            ]

        assert statuses == [401, 401, 401]
        assert wrong == [401, 429]

    @pytest.mark.asyncio
    async def test_probes_not_rate_limited(self):
        app = create_app(settings_with(rate_limit_requests=1))
        async with client_for(app) as client:
            statuses = [(await client.get("/health")).status_code for _ in range(3)]
        assert statuses == [200, 200, 200]
