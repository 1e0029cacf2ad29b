"""
Credential Manager tests: static key, refresh + rotation, single-flight, persistence
"""
import asyncio
import json

import httpx
import pytest

from shipment_engine.errors import CredentialUnavailable, RefreshFailed
from shipment_engine.services.credential_manager import CredentialManager, DatabaseTokenStore

from tests.conftest import OTO_BASE_URL


def token_response(access: str, refresh: str = None) -> httpx.Response:
    body = {"access_token": access, "token_type": "Bearer", "expires_in": 3600}
    if refresh:
        body["refresh_token"] = refresh
    return httpx.Response(200, json=body)


def manager(fake_oto, **kwargs) -> CredentialManager:
    return CredentialManager(OTO_BASE_URL, transport=fake_oto.transport, **kwargs)


class TestAccessToken:
    async def test_static_key_returned_without_refresh(self, fake_oto):
        creds = manager(fake_oto, api_key="static-key", refresh_token="r1")
        assert await creds.get_access_token() == "static-key"
        assert not creds.can_refresh
        assert fake_oto.requests == []

    async def test_cached_access_token_returned(self, fake_oto):
        creds = manager(fake_oto, access_token="a0", refresh_token="r1")
        assert await creds.get_access_token() == "a0"
        assert creds.refresh_count == 0

    async def test_missing_access_token_triggers_refresh(self, fake_oto):
        fake_oto.on("POST", "/refreshToken", token_response("a1"))
        creds = manager(fake_oto, refresh_token="r1")
        assert await creds.get_access_token() == "a1"
        assert creds.refresh_count == 1
        # Cached afterwards
        assert await creds.get_access_token() == "a1"
        assert creds.refresh_count == 1

    async def test_no_credentials_configured(self, fake_oto):
        creds = manager(fake_oto)
        with pytest.raises(CredentialUnavailable):
            await creds.get_access_token()


class TestRefresh:
    async def test_rotated_refresh_token_replaces_old_one(self, fake_oto):
        fake_oto.on("POST", "/refreshToken", [token_response("a1", "r2"), token_response("a2", "r3")])
        creds = manager(fake_oto, refresh_token="r1")

        assert await creds.refresh() == "a1"
        assert creds.refresh_token == "r2"
        assert await creds.refresh() == "a2"
        assert creds.refresh_token == "r3"

        sent = [json.loads(r.content)["refresh_token"] for r in fake_oto.calls("POST", "/refreshToken")]
        assert sent == ["r1", "r2"]

    async def test_refresh_token_kept_when_not_rotated(self, fake_oto):
        fake_oto.on("POST", "/refreshToken", token_response("a1"))
        creds = manager(fake_oto, refresh_token="r1")
        await creds.refresh()
        assert creds.refresh_token == "r1"

    async def test_rejected_refresh_raises_refresh_failed(self, fake_oto):
        fake_oto.on("POST", "/refreshToken", httpx.Response(400, json={"message": "invalid refresh token"}))
        creds = manager(fake_oto, refresh_token="r1")
        with pytest.raises(RefreshFailed):
            await creds.refresh()

    async def test_unreachable_token_endpoint_raises_refresh_failed(self, fake_oto):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_oto.on("POST", "/refreshToken", boom)
        creds = manager(fake_oto, refresh_token="r1")
        with pytest.raises(RefreshFailed):
            await creds.refresh()

    async def test_response_without_access_token_is_a_failure(self, fake_oto):
        fake_oto.on("POST", "/refreshToken", httpx.Response(200, json={"token_type": "Bearer"}))
        creds = manager(fake_oto, refresh_token="r1")
        with pytest.raises(RefreshFailed):
            await creds.refresh()


class TestSingleFlight:
    async def test_concurrent_refreshes_exchange_once(self, fake_oto):
        async def slow_token(request):
            await asyncio.sleep(0.01)
            return token_response("fresh", "r2")

        fake_oto.on("POST", "/refreshToken", slow_token)
        creds = manager(fake_oto, access_token="stale", refresh_token="r1")

        tokens = await asyncio.gather(*(creds.refresh(stale_token="stale") for _ in range(5)))

        assert tokens == ["fresh"] * 5
        assert creds.refresh_count == 1
        assert len(fake_oto.calls("POST", "/refreshToken")) == 1


class TestTokenStore:
    async def test_rotated_pair_survives_restart(self, fake_oto, session_factory):
        fake_oto.on("POST", "/refreshToken", token_response("a1", "r2"))
        store = DatabaseTokenStore(session_factory)
        creds = manager(fake_oto, refresh_token="r1", token_store=store)
        await creds.refresh()

        restarted = manager(fake_oto, refresh_token="r1", token_store=DatabaseTokenStore(session_factory))
        assert restarted.refresh_token == "r2"
        assert await restarted.get_access_token() == "a1"
