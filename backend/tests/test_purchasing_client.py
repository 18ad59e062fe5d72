"""
Tests for the Purchasing system client.
"""

import json

import httpx
import pytest

from integrations.purchasing import PurchasingClient, PurchasingUnavailable


def _client(handler) -> PurchasingClient:
    return PurchasingClient(
        "http://purchasing.test/",
        token="secret",
        timeout=0.5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
class TestPurchasingClient:
    async def test_posts_draft_with_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["idempotency_key"] = request.headers.get("Idempotency-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"orderNumber": "PO-9", "status": "pending"})

        confirmation = await _client(handler).submit_draft({"draftId": "d-1", "items": []})

        assert seen["url"] == "http://purchasing.test/purchase-orders"
        assert seen["auth"] == "Bearer secret"
        assert seen["idempotency_key"] == "d-1"
        assert seen["body"]["draftId"] == "d-1"
        assert confirmation.order_number == "PO-9"
        assert confirmation.status == "pending"

    async def test_unknown_status_becomes_pending(self):
        def handler(request):
            return httpx.Response(200, json={"orderNumber": "PO-1", "status": "shipped"})

        confirmation = await _client(handler).submit_draft({})

        assert confirmation.status == "pending"

    async def test_http_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(PurchasingUnavailable):
            await _client(handler).submit_draft({})

    async def test_transport_error_retried_then_unavailable(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PurchasingUnavailable):
            await _client(handler).submit_draft({})
        assert len(attempts) == 2

    async def test_connect_timeout_retried_with_same_key(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectTimeout("no route", request=request)
            return httpx.Response(200, json={"orderNumber": "PO-2", "status": "approved"})

        confirmation = await _client(handler).submit_draft({"draftId": "d-2"})

        assert confirmation.order_number == "PO-2"
        assert [a.headers["Idempotency-Key"] for a in attempts] == ["d-2", "d-2"]

    async def test_read_timeout_is_not_resent(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ReadTimeout("order intake slow", request=request)

        with pytest.raises(PurchasingUnavailable):
            await _client(handler).submit_draft({"draftId": "d-3"})
        assert len(attempts) == 1

    async def test_unconfigured_client(self):
        client = PurchasingClient("")
        assert not client.configured
        with pytest.raises(PurchasingUnavailable):
            await client.submit_draft({})

    async def test_non_json_body_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(PurchasingUnavailable):
            await _client(handler).submit_draft({})
