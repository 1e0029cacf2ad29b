"""
OTO bearer credential: static API key, or access token refreshed on demand from a
rotating refresh token (POST /rest/v2/refreshToken).

One CredentialManager is shared by every OTOClient in the process. Refresh is
single-flight: an asyncio.Lock serializes exchanges, and a caller that waited on
the lock while another caller refreshed reuses the new token instead of spending
the (possibly already rotated) refresh token a second time.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from shipment_engine.config import settings
from shipment_engine.errors import CredentialUnavailable, ProviderUnreachable, RefreshFailed
from shipment_engine.services.credentials import load_token_pair, save_token_pair
from shipment_engine.services.http_client import post_no_retry

logger = logging.getLogger(__name__)

REFRESH_PATH = "/rest/v2/refreshToken"


class DatabaseTokenStore:
    """Keeps the token pair encrypted in provider_credentials so rotation survives restarts."""

    def __init__(self, session_factory: Callable[[], Session], provider_id: str = "oto"):
        self.session_factory = session_factory
        self.provider_id = provider_id

    def load(self) -> Optional[dict[str, Any]]:
        db = self.session_factory()
        try:
            return load_token_pair(db, self.provider_id)
        finally:
            db.close()

    def save(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        db = self.session_factory()
        try:
            save_token_pair(db, self.provider_id, access_token, refresh_token)
        finally:
            db.close()


class CredentialManager:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        timeout: float = 30.0,
        transport=None,
        token_store: Optional[DatabaseTokenStore] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = (api_key or "").strip() or None
        self._access_token = (access_token or "").strip() or None
        self._refresh_token = (refresh_token or "").strip() or None
        self.timeout = timeout
        self.transport = transport
        self.token_store = token_store
        self.refresh_count = 0
        self._lock = asyncio.Lock()

        if token_store is not None and not self.api_key:
            stored = token_store.load()
            if stored:
                self._access_token = stored.get("access_token") or self._access_token
                self._refresh_token = stored.get("refresh_token") or self._refresh_token

        if not self.api_key and not self._refresh_token and not self._access_token:
            logger.warning("OTO_REFRESH_TOKEN or OTO_API_KEY not configured. OTO integration will not work.")

    @property
    def uses_static_key(self) -> bool:
        return self.api_key is not None

    @property
    def can_refresh(self) -> bool:
        return not self.uses_static_key and self._refresh_token is not None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    async def get_access_token(self) -> str:
        """Static key if configured, else cached access token, else a fresh one."""
        if self.api_key:
            return self.api_key
        if self._access_token:
            return self._access_token
        if not self._refresh_token:
            raise CredentialUnavailable("OTO credentials not configured")
        async with self._lock:
            if self._access_token:
                return self._access_token
            return await self._exchange()

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """
        Exchange the refresh token for a new access token.
        stale_token is the token the caller saw rejected; if the cached token has
        already changed by the time the lock is held, it is returned as-is.
        """
        async with self._lock:
            if stale_token is not None and self._access_token and self._access_token != stale_token:
                logger.debug("OTO token already refreshed by a concurrent caller")
                return self._access_token
            return await self._exchange()

    async def _exchange(self) -> str:
        if not self._refresh_token:
            raise RefreshFailed("OTO_REFRESH_TOKEN not configured")
        self.refresh_count += 1
        logger.info("Refreshing OTO access token")
        try:
            resp = await post_no_retry(
                f"{self.base_url}{REFRESH_PATH}",
                json={"refresh_token": self._refresh_token},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self.transport,
            )
        except ProviderUnreachable as e:
            logger.error("OTO token refresh failed: %s", e.details)
            raise RefreshFailed("Failed to refresh OTO access token", details=e.details) from e
        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if resp.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
            logger.error("OTO token refresh rejected: status=%s body=%s", resp.status_code, data)
            raise RefreshFailed("Failed to refresh OTO access token", details=data or None)

        self._access_token = data["access_token"]
        # Rotation: the old refresh token is dead once the provider issues a new one
        if data.get("refresh_token"):
            self._refresh_token = data["refresh_token"]
        logger.info(
            "OTO access token refreshed (type=%s, expires_in=%ss)",
            data.get("token_type"),
            data.get("expires_in"),
        )
        if self.token_store is not None:
            try:
                self.token_store.save(self._access_token, self._refresh_token)
            except Exception as e:
                logger.error("Failed to persist rotated OTO credentials: %s", e)
        return self._access_token


def build_credential_manager(transport=None, token_store: Optional[DatabaseTokenStore] = None) -> CredentialManager:
    """CredentialManager from settings (env)."""
    return CredentialManager(
        settings.OTO_BASE_URL,
        api_key=settings.OTO_API_KEY,
        access_token=settings.OTO_ACCESS_TOKEN,
        refresh_token=settings.OTO_REFRESH_TOKEN,
        timeout=settings.OTO_TIMEOUT_SEC,
        transport=transport,
        token_store=token_store,
    )
