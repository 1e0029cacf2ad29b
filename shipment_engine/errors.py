"""
Error taxonomy for the shipping engine. Each error carries the HTTP status the
API boundary answers with; the exception handler in main.py renders them.
"""
from typing import Any, Optional


class ShippingError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


class CredentialUnavailable(ShippingError):
    status_code = 503


class RefreshFailed(ShippingError):
    status_code = 502


class ProviderHTTPError(ShippingError):
    """Upstream answered with an error status and (usually) a JSON error body."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        provider_code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.status = status
        self.provider_code = provider_code

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.status if 400 <= self.status < 600 else 502

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["error"]["otoErrorCode"] = self.provider_code
        return body


class ProviderUnreachable(ShippingError):
    """No response: connect error, read error or timeout."""
    status_code = 503


class OrderNotFound(ShippingError):
    status_code = 404


class ShipmentNotFound(ShippingError):
    status_code = 404


class ShipmentAlreadyExists(ShippingError):
    status_code = 409


class NoProviderOrder(ShippingError):
    status_code = 400


class NoProviderShipment(ShippingError):
    status_code = 400


class NoValidShipments(ShippingError):
    status_code = 404


class NoShippingOptions(ShippingError):
    status_code = 400


class InvalidSignature(ShippingError):
    status_code = 401


class PickupLocationExists(ShippingError):
    status_code = 409


class PickupLocationNotFound(ShippingError):
    status_code = 404
