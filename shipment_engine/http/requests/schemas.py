"""
Pydantic schemas for request/response validation (Http/Requests).
"""
from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional


# Shipment Schemas
class BoxRequest(BaseModel):
    boxName: str
    weight: float = Field(..., gt=0)
    height: Optional[float] = None
    width: Optional[float] = None
    length: Optional[float] = None
    dimensionUnit: str = "cm"


class CreateShipmentRequest(BaseModel):
    deliveryCompanyCode: Optional[str] = None
    pickupLocationCode: Optional[str] = None
    boxes: Optional[List[BoxRequest]] = None
    codAmount: Optional[float] = Field(None, ge=0)
    specialInstructions: Optional[str] = None

    def box_dicts(self) -> Optional[List[dict]]:
        if not self.boxes:
            return None
        return [b.dict() for b in self.boxes]


class CancelShipmentRequest(BaseModel):
    reason: Optional[str] = None


class AssignDriverRequest(BaseModel):
    shipmentIds: List[str] = Field(..., min_length=1)
    driverId: Any

    @validator("driverId")
    def validate_driver_id(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("driverId is required")
        return v


class AutoShipRequest(BaseModel):
    deliveryCompanyCode: Optional[str] = None
    pickupLocationCode: Optional[str] = None
    specialInstructions: Optional[str] = None


# Pickup Location Schemas
class PickupLocationCreateRequest(BaseModel):
    code: str
    name: str
    city: Optional[str] = None
    address: Optional[str] = None
    contactName: Optional[str] = None
    contactPhone: Optional[str] = None
    isActive: bool = True
    syncWithOto: bool = False

    @validator("code")
    def validate_code(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("code must not be empty")
        return v

    def fields(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "city": self.city,
            "address": self.address,
            "contact_name": self.contactName,
            "contact_phone": self.contactPhone,
            "is_active": self.isActive,
        }


class PickupLocationUpdateRequest(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    contactName: Optional[str] = None
    contactPhone: Optional[str] = None
    isActive: Optional[bool] = None
    syncWithOto: bool = False

    def fields(self) -> dict:
        values = {
            "name": self.name,
            "city": self.city,
            "address": self.address,
            "contact_name": self.contactName,
            "contact_phone": self.contactPhone,
            "is_active": self.isActive,
        }
        return {k: v for k, v in values.items() if v is not None}


class ReturnShipmentRequest(BaseModel):
    reason: Optional[str] = None
    pickupLocationCode: Optional[str] = None

    def return_data(self) -> dict:
        data = {}
        if self.reason:
            data["reason"] = self.reason
        if self.pickupLocationCode:
            data["pickupLocationCode"] = self.pickupLocationCode
        return data


# Pass-through Schemas
class WebhookSubscriptionRequest(BaseModel):
    url: str
    events: List[str] = Field(default_factory=list)
    secretKey: Optional[str] = None

    @validator("url")
    def validate_url(cls, v):
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v

    def payload(self) -> dict:
        data = {"url": self.url, "events": self.events}
        if self.secretKey:
            data["secretKey"] = self.secretKey
        return data


class UpdateProviderOrderRequest(BaseModel):
    orderId: str
    changes: Dict[str, Any] = Field(default_factory=dict)


class ActivateDeliveryCompanyRequest(BaseModel):
    companyCode: str
    settings: Dict[str, Any] = Field(default_factory=dict)


class BuyCreditRequest(BaseModel):
    amount: float = Field(..., gt=0)
    paymentMethod: Optional[str] = None
