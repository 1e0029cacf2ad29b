"""
Provider Client tests: auth header, 401 refresh-and-retry, error classification
"""
import asyncio
import json

import httpx
import pytest

from shipment_engine.errors import ProviderHTTPError, ProviderUnreachable
from shipment_engine.services.credential_manager import CredentialManager
from shipment_engine.services.oto_client import OTOClient

from tests.conftest import OTO_BASE_URL


@pytest.fixture
def refreshing_client(fake_oto):
    fake_oto.on(
        "POST",
        "/refreshToken",
        httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r2", "token_type": "Bearer", "expires_in": 3600}),
    )
    creds = CredentialManager(OTO_BASE_URL, access_token="stale", refresh_token="r1", transport=fake_oto.transport)
    return OTOClient(creds, base_url=OTO_BASE_URL, timeout=5, transport=fake_oto.transport)


def bearer(request: httpx.Request) -> str:
    return request.headers["Authorization"]


class TestRequests:
    async def test_bearer_token_and_json_body(self, oto_client, fake_oto):
        fake_oto.on("POST", "/createOrder", {"orderId": 77, "trackingNumber": "TRK1"})
        data = await oto_client.create_order({"orderId": "O1"})

        assert data == {"orderId": 77, "trackingNumber": "TRK1"}
        request = fake_oto.calls("POST", "/createOrder")[0]
        assert bearer(request) == "Bearer test-api-key"
        assert request.url.path == "/rest/v2/createOrder"
        assert json.loads(request.content) == {"orderId": "O1"}

    async def test_assign_driver_payload(self, oto_client, fake_oto):
        fake_oto.on("POST", "/assignDriver", {"success": True})
        await oto_client.assign_driver([101, 102], "D9")
        body = json.loads(fake_oto.calls("POST", "/assignDriver")[0].content)
        assert body == {"orderIDs": [101, 102], "driverID": "D9"}

    async def test_label_returns_bytes_and_content_type(self, oto_client, fake_oto):
        fake_oto.on(
            "GET",
            "/shipments/S1/label",
            httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"}),
        )
        label = await oto_client.get_shipping_label("S1")
        assert label.content == b"%PDF-1.4"
        assert label.content_type == "application/pdf"
        assert fake_oto.calls("GET", "/shipments/S1/label")[0].url.params["format"] == "pdf"

    async def test_wallet_balance_defaults(self, oto_client, fake_oto):
        fake_oto.on("GET", "/account", {"balance": 120.5})
        wallet = await oto_client.get_wallet_balance()
        assert wallet["balance"] == 120.5
        assert wallet["currency"] == "EGP"


class TestUnauthorizedRetry:
    async def test_401_refreshes_once_and_retries_once(self, refreshing_client, fake_oto):
        def orders(request):
            if bearer(request) == "Bearer stale":
                return httpx.Response(401, json={"message": "token expired"})
            return httpx.Response(200, json={"orderId": 1})

        fake_oto.on("GET", "/orders/1", orders)
        data = await refreshing_client.get_order("1")

        assert data == {"orderId": 1}
        assert len(fake_oto.calls("POST", "/refreshToken")) == 1
        calls = fake_oto.calls("GET", "/orders/1")
        assert [bearer(r) for r in calls] == ["Bearer stale", "Bearer fresh"]

    async def test_second_401_is_surfaced_not_retried(self, refreshing_client, fake_oto):
        fake_oto.on("GET", "/orders/1", httpx.Response(401, json={"otoErrorCode": "AUTH", "message": "unauthorized"}))

        with pytest.raises(ProviderHTTPError) as exc_info:
            await refreshing_client.get_order("1")

        assert exc_info.value.status == 401
        assert exc_info.value.provider_code == "AUTH"
        assert len(fake_oto.calls("POST", "/refreshToken")) == 1
        assert len(fake_oto.calls("GET", "/orders/1")) == 2

    async def test_concurrent_401s_share_one_refresh(self, fake_oto):
        async def slow_token(request):
            await asyncio.sleep(0.01)
            return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r2", "expires_in": 3600})

        async def order_status(request):
            await asyncio.sleep(0)
            if bearer(request) == "Bearer stale":
                return httpx.Response(401, json={"message": "token expired"})
            return httpx.Response(200, json={"status": "inTransit"})

        fake_oto.on("POST", "/refreshToken", slow_token)
        fake_oto.on("GET", "/orderStatus", order_status)
        creds = CredentialManager(OTO_BASE_URL, access_token="stale", refresh_token="r1", transport=fake_oto.transport)
        client = OTOClient(creds, base_url=OTO_BASE_URL, timeout=5, transport=fake_oto.transport)

        results = await asyncio.gather(*(client.get_order_status(str(i)) for i in range(5)))

        assert results == [{"status": "inTransit"}] * 5
        assert len(fake_oto.calls("POST", "/refreshToken")) == 1
        assert creds.refresh_count == 1
        fresh_calls = [r for r in fake_oto.calls("GET", "/orderStatus") if bearer(r) == "Bearer fresh"]
        assert len(fresh_calls) == 5

    async def test_static_key_401_is_not_retried(self, oto_client, fake_oto):
        fake_oto.on("GET", "/orders/1", httpx.Response(401, json={"message": "bad key"}))
        with pytest.raises(ProviderHTTPError):
            await oto_client.get_order("1")
        assert len(fake_oto.calls("GET", "/orders/1")) == 1
        assert fake_oto.calls("POST", "/refreshToken") == []


class TestErrors:
    async def test_error_body_is_lifted(self, oto_client, fake_oto):
        fake_oto.on(
            "POST",
            "/createOrder",
            httpx.Response(422, json={"otoErrorCode": 1012, "otoErrorMessage": "Invalid city", "field": "city"}),
        )
        with pytest.raises(ProviderHTTPError) as exc_info:
            await oto_client.create_order({})

        err = exc_info.value
        assert err.status == 422
        assert err.status_code == 422
        assert err.provider_code == "1012"
        assert err.message == "Invalid city"
        assert err.to_dict()["error"]["otoErrorCode"] == "1012"
        assert len(fake_oto.calls("POST", "/createOrder")) == 1

    async def test_server_error_not_retried(self, oto_client, fake_oto):
        fake_oto.on("POST", "/createOrder", httpx.Response(503, text="upstream down"))
        with pytest.raises(ProviderHTTPError) as exc_info:
            await oto_client.create_order({})
        assert exc_info.value.message == "OTO API Error: 503"
        assert len(fake_oto.calls("POST", "/createOrder")) == 1

    async def test_timeout_is_provider_unreachable(self, oto_client, fake_oto):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fake_oto.on("GET", "/tracking/1", slow)
        with pytest.raises(ProviderUnreachable):
            await oto_client.track_shipment("1")

    async def test_connect_error_is_provider_unreachable(self, oto_client, fake_oto):
        def refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_oto.on("GET", "/healthCheck", refused)
        with pytest.raises(ProviderUnreachable) as exc_info:
            await oto_client.health_check()
        assert exc_info.value.status_code == 503
