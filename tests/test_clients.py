import json

import httpx
import pytest
import redis.asyncio as redis

from app.utils import dodo_client
from app.utils.dodo_client import DodoAPIError, DodoClient, DodoTimeoutError
from app.utils.redis_cache import CheckoutMappingStore, checkout_key

RealAsyncClient = httpx.AsyncClient


def mock_httpx(monkeypatch, handler):
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        dodo_client.httpx, "AsyncClient",
        lambda timeout: RealAsyncClient(transport=transport, timeout=timeout),
    )


# **************    Dodo client
@pytest.mark.asyncio
async def test_dodo_client_sends_auth_and_parses_json(monkeypatch):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"session_id": "cks_1", "checkout_url": "https://c/1"})

    mock_httpx(monkeypatch, handler)
    client = DodoClient("sk_test", "https://test.dodopayments.com/")

    data = await client.create_checkout_session({"product_cart": []})

    assert data["session_id"] == "cks_1"
    assert seen["method"] == "POST"
    assert seen["url"] == "https://test.dodopayments.com/checkouts"
    assert seen["auth"] == "Bearer sk_test"
    assert seen["body"] == {"product_cart": []}


@pytest.mark.asyncio
async def test_dodo_client_error_status(monkeypatch):
    mock_httpx(monkeypatch, lambda request: httpx.Response(404, json={"message": "Subscription not found"}))
    client = DodoClient("sk_test", "https://test.dodopayments.com")

    with pytest.raises(DodoAPIError) as exc:
        await client.get_subscription("sub_1")

    assert exc.value.status_code == 404
    assert exc.value.message == "Subscription not found"


@pytest.mark.asyncio
async def test_dodo_client_timeout(monkeypatch):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    mock_httpx(monkeypatch, handler)
    client = DodoClient("sk_test", "https://test.dodopayments.com")

    with pytest.raises(DodoTimeoutError) as exc:
        await client.get_payment("pay_1")
    assert exc.value.status_code == 408


@pytest.mark.asyncio
async def test_dodo_client_list_payments(monkeypatch):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"items": [{"payment_id": f"pay_{i}"} for i in range(12)]})

    mock_httpx(monkeypatch, handler)
    client = DodoClient("sk_test", "https://test.dodopayments.com")

    payments = await client.list_payments("sub_1")

    assert len(payments) == 10
    assert seen["params"] == {"subscription_id": "sub_1", "page_size": "10"}


@pytest.mark.asyncio
async def test_dodo_client_list_customer_payments(monkeypatch):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[{"payment_id": "pay_1"}])

    mock_httpx(monkeypatch, handler)
    client = DodoClient("sk_test", "https://test.dodopayments.com")

    payments = await client.list_customer_payments("cus_1", page_size=5)

    assert payments == [{"payment_id": "pay_1"}]
    assert seen["params"] == {"customer_id": "cus_1", "page_size": "5"}


@pytest.mark.asyncio
async def test_dodo_client_change_plan_body(monkeypatch):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"")

    mock_httpx(monkeypatch, handler)
    client = DodoClient("sk_test", "https://test.dodopayments.com")

    assert await client.change_plan("sub_1", "prod_pro") == {}
    assert seen["path"] == "/subscriptions/sub_1/change-plan"
    assert seen["body"] == {
        "product_id": "prod_pro", "quantity": 1, "proration_billing_mode": "difference_immediately",
    }


# **************    Checkout mapping store
class MemoryRedis:
    def __init__(self):
        self.data = {}
        self.ttl = {}

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttl[key] = ex

    async def get(self, key):
        return self.data.get(key)


class DownRedis:
    async def set(self, key, value, ex=None):
        raise redis.ConnectionError("redis is down")

    async def get(self, key):
        raise redis.ConnectionError("redis is down")


@pytest.mark.asyncio
async def test_checkout_store_roundtrip_and_completion():
    client = MemoryRedis()
    store = CheckoutMappingStore(client=client, ttl=60)

    assert await store.store("cks_1", {"userId": "u1", "plan": "creator"}) is True
    assert client.ttl[checkout_key("cks_1")] == 60

    assert await store.mark_completed("cks_1") is True
    assert await store.get("cks_1") == {"userId": "u1", "plan": "creator", "completed": True}
    assert await store.mark_completed("cks_missing") is False


@pytest.mark.asyncio
async def test_checkout_store_survives_redis_failure():
    store = CheckoutMappingStore(client=DownRedis())

    assert await store.store("cks_1", {"userId": "u1"}) is False
    assert await store.get("cks_1") is None
    assert await store.mark_completed("cks_1") is False
