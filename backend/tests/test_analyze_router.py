"""
Tests for POST /api/analyze-receipt.

The requestor dependency is overridden with the AsyncMock-backed fixture, so
each test controls the completion (or the failure) the endpoint sees.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from services.errors import ConfigurationError, NetworkError, UpstreamError
from services.extraction_service import get_requestor
from services.money import format_money
from services.normalizer import PARSE_ERROR_MESSAGE

from conftest import TRANSCRIPT


# ── Fixture ──────────────────────────────────────────────────────────────────

@pytest.fixture
def app(requestor):
    from fastapi import FastAPI
    from routers.analyze import router

    test_app = FastAPI()
    test_app.include_router(router, prefix="/api")
    test_app.dependency_overrides[get_requestor] = lambda: requestor
    return test_app


async def post(app, **kwargs):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        return await client.post("/api/analyze-receipt", **kwargs)


# ── Validation ───────────────────────────────────────────────────────────────

class TestValidation:

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_network_call(self, app, requestor):
        resp = await post(app, json={"text": ""})
        assert resp.status_code == 400
        assert "error" in resp.json()
        requestor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_whitespace_text_rejected(self, app, requestor):
        resp = await post(app, json={"text": "  \n\t "})
        assert resp.status_code == 400
        requestor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_text_rejected(self, app, requestor):
        resp = await post(app, json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "No text provided"}

    @pytest.mark.asyncio
    async def test_non_string_text_rejected(self, app, requestor):
        resp = await post(app, json={"text": 42})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_json_body_rejected(self, app, requestor):
        resp = await post(app, content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}
        requestor.extract.assert_not_called()


# ── Success / degraded ───────────────────────────────────────────────────────

class TestAnalyze:

    @pytest.mark.asyncio
    async def test_end_to_end_example(self, app, requestor):
        resp = await post(app, json={"text": TRANSCRIPT})

        assert resp.status_code == 200
        data = resp.json()
        requestor.extract.assert_awaited_once_with(TRANSCRIPT)
        assert data["merchant"] == "STORE A"
        assert data["items"][0] == {"name": "Milk", "price": 3.50, "quantity": 2}
        assert format_money(data["total"]) == "4.06"
        assert "raw" not in data and "error" not in data

    @pytest.mark.asyncio
    async def test_fenced_completion(self, app, requestor):
        requestor.extract.return_value = '```json\n{"merchant": "X", "taxes": {"type": "Sales Tax", "amount": 3.45}}\n```'
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 200
        assert resp.json() == {
            "merchant": "X",
            "taxes": [{"type": "Sales Tax", "amount": 3.45}],
        }

    @pytest.mark.asyncio
    async def test_degraded_completion_is_still_200(self, app, requestor):
        requestor.extract.return_value = "Sorry, I cannot help."
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 200
        assert resp.json() == {"raw": "Sorry, I cannot help.", "error": PARSE_ERROR_MESSAGE}


# ── Failures ─────────────────────────────────────────────────────────────────

class TestFailures:

    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(self, app, requestor):
        requestor.extract.side_effect = UpstreamError("bad", status_code=429, body="rate limited")
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 429
        assert resp.json() == {"error": "Failed to analyze receipt"}

    @pytest.mark.asyncio
    async def test_upstream_timeout(self, app, requestor):
        requestor.extract.side_effect = UpstreamError("timed out", status_code=504)
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 504

    @pytest.mark.asyncio
    async def test_network_error(self, app, requestor):
        requestor.extract.side_effect = NetworkError("connection refused")
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 502
        assert resp.json() == {"error": "Failed to analyze receipt"}

    @pytest.mark.asyncio
    async def test_missing_credential(self, app, requestor):
        requestor.extract.side_effect = ConfigurationError("ANTHROPIC_API_KEY not set")
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, app, requestor):
        requestor.extract.side_effect = RuntimeError("boom")
        resp = await post(app, json={"text": TRANSCRIPT})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to process request"}
