"""
OTO shipping API client (https://api.tryoto.com, staging: https://staging-api.tryoto.com).
- Auth: Authorization: Bearer <token> from CredentialManager (static key or refreshed access token).
- 401: one refresh + one verbatim re-issue; a second 401 is raised as ProviderHTTPError.
- Other error statuses raise ProviderHTTPError (never retried here: creates are not idempotent).
- No response (timeout, connect/read error) raises ProviderUnreachable.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from shipment_engine.config import settings
from shipment_engine.errors import ProviderHTTPError
from shipment_engine.services.credential_manager import CredentialManager
from shipment_engine.services.http_client import send_request

logger = logging.getLogger(__name__)

API_PREFIX = "/rest/v2"


@dataclass
class ShippingLabel:
    content: bytes
    content_type: str


class OTOClient:
    """One coroutine per OTO capability. Returns decoded JSON bodies."""

    def __init__(
        self,
        credentials: CredentialManager,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.base_url = (base_url or settings.OTO_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.OTO_TIMEOUT_SEC
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        retried: bool = False,
    ) -> httpx.Response:
        """
        Issue one authorized request. `retried` is False on the first attempt; the
        401 branch calls back with retried=True so the refresh happens at most once.
        """
        token = await self.credentials.get_access_token()
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        url = f"{self.base_url}{API_PREFIX}{path}"
        logger.debug("OTO API Request: %s %s%s", method, path, " (retry)" if retried else "")
        resp = await send_request(
            method,
            url,
            json=json,
            params=params,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )
        if resp.status_code == 401 and not retried and self.credentials.can_refresh:
            logger.info("OTO API %s %s returned 401; refreshing token", method, path)
            await self.credentials.refresh(stale_token=token)
            return await self._request(method, path, json=json, params=params, retried=True)
        if resp.status_code >= 400:
            raise self._error_from_response(resp)
        return resp

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> ProviderHTTPError:
        try:
            data = resp.json() if resp.content else None
        except ValueError:
            data = resp.text or None
        code = None
        message = None
        if isinstance(data, dict):
            code = data.get("otoErrorCode")
            message = data.get("otoErrorMessage") or data.get("message")
        logger.warning("OTO API error status=%s code=%s message=%s", resp.status_code, code, message)
        return ProviderHTTPError(
            resp.status_code,
            message or f"OTO API Error: {resp.status_code}",
            provider_code=str(code) if code is not None else None,
            details=data,
        )

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            logger.warning("OTO API %s %s returned non-JSON body", method, path)
            return {"raw": resp.text}

    # Orders and shipments

    async def create_order(self, order_data: dict) -> dict:
        """POST /createOrder. Response carries orderId, shipmentId, trackingNumber, status."""
        return await self._json("POST", "/createOrder", json=order_data)

    async def update_order(self, order_data: dict) -> dict:
        return await self._json("POST", "/updateOrder", json=order_data)

    async def get_order(self, oto_order_id: str) -> dict:
        return await self._json("GET", f"/orders/{oto_order_id}")

    async def cancel_order(self, oto_order_id: str) -> dict:
        return await self._json("POST", f"/orders/{oto_order_id}/cancel")

    async def get_shipment(self, oto_shipment_id: str) -> dict:
        return await self._json("GET", f"/shipments/{oto_shipment_id}")

    async def get_shipping_label(self, oto_shipment_id: str, fmt: str = "pdf") -> ShippingLabel:
        resp = await self._request("GET", f"/shipments/{oto_shipment_id}/label", params={"format": fmt})
        return ShippingLabel(
            content=resp.content,
            content_type=resp.headers.get("content-type") or "application/pdf",
        )

    async def print_awb(self, oto_order_id: str) -> dict:
        """Label URL for an order (AWB print)."""
        return await self._json("GET", f"/print/{oto_order_id}")

    async def track_shipment(self, identifier: str) -> dict:
        """Tracking by OTO order id or tracking number; events[] newest first."""
        return await self._json("GET", f"/tracking/{identifier}")

    async def assign_driver(self, order_ids: list[int], driver_id: Any) -> dict:
        """OTO Flex: assign one driver to a batch of orders."""
        return await self._json("POST", "/assignDriver", json={"orderIDs": order_ids, "driverID": driver_id})

    async def get_order_status(self, oto_order_id: str) -> dict:
        return await self._json("GET", "/orderStatus", params={"orderId": oto_order_id})

    async def get_order_history(self, oto_order_id: str) -> dict:
        return await self._json("GET", "/orderHistory", params={"orderId": oto_order_id})

    async def create_return_shipment(self, return_data: dict) -> dict:
        return await self._json("POST", "/returnShipments", json=return_data)

    # Pickup locations

    async def get_pickup_locations(self, filters: Optional[dict] = None) -> dict:
        return await self._json("GET", "/pickupLocations", params=filters or {})

    async def create_pickup_location(self, location_data: dict) -> dict:
        return await self._json("POST", "/pickupLocations", json=location_data)

    async def update_pickup_location(self, location_id: str, location_data: dict) -> dict:
        return await self._json("PUT", f"/pickupLocations/{location_id}", json=location_data)

    # Fees, wallet, account

    async def check_oto_delivery_fee(self, fee_data: dict) -> dict:
        """Quote with OTO's own rates."""
        return await self._json("POST", "/checkOTODeliveryFee", json=fee_data)

    async def check_delivery_fee(self, fee_data: dict) -> dict:
        """Quote with the merchant's contract rates."""
        return await self._json("POST", "/checkDeliveryFee", json=fee_data)

    async def buy_credit(self, credit_data: dict) -> dict:
        return await self._json("POST", "/buyCredit", json=credit_data)

    async def get_account_info(self) -> dict:
        return await self._json("GET", "/account")

    async def get_wallet_balance(self) -> dict:
        data = await self.get_account_info()
        data = data if isinstance(data, dict) else {}
        return {
            "balance": data.get("balance") or 0,
            "currency": data.get("currency") or "EGP",
            "data": data,
        }

    # Delivery companies and coverage

    async def get_delivery_company_list(self) -> dict:
        return await self._json("GET", "/dcList")

    async def get_delivery_company_config(self, company_code: str) -> dict:
        return await self._json("GET", "/dcConfig", params={"companyCode": company_code})

    async def activate_delivery_company(self, activation_data: dict) -> dict:
        return await self._json("POST", "/dcActivation", json=activation_data)

    async def get_available_cities(self, filters: Optional[dict] = None) -> dict:
        return await self._json("POST", "/availableCities", json=filters or {})

    async def get_delivery_options(self, city: str) -> dict:
        return await self._json("GET", "/getDeliveryOptions", params={"city": city})

    # Webhook subscriptions

    async def register_webhook(self, webhook_data: dict) -> dict:
        return await self._json("POST", "/webhooks", json=webhook_data)

    async def get_webhooks(self) -> dict:
        return await self._json("GET", "/webhooks")

    async def delete_webhook(self, webhook_id: str) -> dict:
        return await self._json("DELETE", f"/webhooks/{webhook_id}")

    async def health_check(self) -> dict:
        return await self._json("GET", "/healthCheck")
