"""Tests for BackendClient - orders over the hosted REST interface."""

import asyncio
import json

import httpx
import pytest

from clients.backend_client import BackendClient, BackendError

BASE_URL = "https://project.test"


class RecordingHandler:
    """MockTransport handler that records requests and replays a canned response."""

    def __init__(self, response: httpx.Response | None = None):
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(201, json=[{"id": "order-1"}])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def backend(handler):
    return BackendClient(BASE_URL, "anon-key", transport=httpx.MockTransport(handler))


class TestInsertOrder:

    def test_posts_with_user_token(self, backend, handler):
        row = asyncio.run(backend.insert_order("user-token", {"order_number": "ORD-1"}))

        request = handler.requests[0]
        assert row == {"id": "order-1"}
        assert str(request.url) == f"{BASE_URL}/rest/v1/orders"
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Prefer"] == "return=representation"
        assert json.loads(request.content) == {"order_number": "ORD-1"}

    def test_empty_representation_is_error(self, handler, backend):
        handler.response = httpx.Response(201, json=[])
        with pytest.raises(BackendError, match="no row"):
            asyncio.run(backend.insert_order("t", {}))

    def test_rls_rejection(self, handler, backend):
        handler.response = httpx.Response(403, json={
            "message": 'new row violates row-level security policy for table "orders"',
        })

        with pytest.raises(BackendError) as exc_info:
            asyncio.run(backend.insert_order("t", {}))

        assert exc_info.value.status_code == 403
        assert "row-level security" in exc_info.value.message


class TestInsertOrderItems:

    def test_single_batch_request(self, handler, backend):
        handler.response = httpx.Response(201)
        rows = [{"product_id": "p1"}, {"product_id": "p2"}]

        asyncio.run(backend.insert_order_items("t", rows))

        assert len(handler.requests) == 1
        assert handler.requests[0].headers["Prefer"] == "return=minimal"
        assert json.loads(handler.requests[0].content) == rows


class TestListOrders:

    def test_embeds_items_newest_first(self, handler, backend):
        handler.response = httpx.Response(200, json=[{"id": "o1", "order_items": []}])

        orders = asyncio.run(backend.list_orders("t"))

        params = handler.requests[0].url.params
        assert params["select"] == "*,order_items(*)"
        assert params["order"] == "created_at.desc"
        assert orders == [{"id": "o1", "order_items": []}]


class TestErrors:

    def test_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        backend = BackendClient(BASE_URL, "k", transport=httpx.MockTransport(refuse))
        with pytest.raises(BackendError) as exc_info:
            asyncio.run(backend.list_orders("t"))
        assert exc_info.value.status_code is None

    def test_non_json_error(self, handler, backend):
        handler.response = httpx.Response(500, text="oops")
        with pytest.raises(BackendError, match="oops"):
            asyncio.run(backend.list_orders("t"))

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            BackendClient(BASE_URL, "")
