"""
Order shipping quotes and destination city checks against OTO coverage.
"""
import logging
import re
from typing import Any, Optional

from shipment_engine.config import settings
from shipment_engine.errors import NoShippingOptions, ShippingError
from shipment_engine.models import Order
from shipment_engine.services.oto_client import OTOClient
from shipment_engine.services.shipment_orchestrator import DEFAULT_BOX_DIMENSIONS, item_weight

logger = logging.getLogger(__name__)

COD_PAYMENT_METHODS = {"COD", "CASH_ON_DELIVERY"}
MIN_QUOTE_WEIGHT_KG = 0.5
MAX_CITY_SUGGESTIONS = 5


def is_cod_order(order: Order, cod_amount: Optional[float] = None) -> bool:
    return (order.payment_method or "").upper() in COD_PAYMENT_METHODS or bool(cod_amount and cod_amount > 0)


def find_preferred_option(options: Any, preferred: Optional[str] = None) -> Optional[dict]:
    """First option whose deliveryCompanyName contains one of the preferred keywords."""
    if not isinstance(options, list):
        return None
    keywords = [k.strip().lower() for k in (preferred or settings.PREFERRED_SHIPPING_COMPANY).split(",") if k.strip()]
    for option in options:
        if not isinstance(option, dict):
            continue
        name = (option.get("deliveryCompanyName") or "").lower()
        if any(k in name for k in keywords):
            return option
    return None


def select_delivery_option(options: Any, preferred: Optional[str] = None) -> Optional[dict]:
    """Preferred company when offered, otherwise the first option OTO lists."""
    selected = find_preferred_option(options, preferred)
    if selected is None and isinstance(options, list) and options and isinstance(options[0], dict):
        selected = options[0]
    return selected


async def calculate_order_shipping_cost(client: OTOClient, order: Order) -> dict:
    """Quote an order with contract rates and pick the delivery option it would ship with."""
    total_weight = sum(
        int(it.quantity or 0) * item_weight(it, settings.OTO_DEFAULT_ITEM_WEIGHT_KG) for it in (order.items or [])
    )
    fee_data = {
        "originCity": settings.OTO_ORIGIN_CITY,
        "destinationCity": order.shipping_city or settings.OTO_ORIGIN_CITY,
        "weight": max(total_weight, MIN_QUOTE_WEIGHT_KG),
        "totalDue": float(order.price or 0) if is_cod_order(order) else 0,
        "height": DEFAULT_BOX_DIMENSIONS["height"],
        "width": DEFAULT_BOX_DIMENSIONS["width"],
        "length": DEFAULT_BOX_DIMENSIONS["length"],
    }
    data = await client.check_delivery_fee(fee_data)
    options = data.get("deliveryCompany") if isinstance(data, dict) else None
    selected = select_delivery_option(options or [])
    if not selected:
        raise NoShippingOptions(f"No shipping options available for {fee_data['destinationCity']}")

    logger.debug("Shipping quote for order %s: %s %s", order.id, selected.get("deliveryCompanyName"), selected.get("price"))
    return {
        "shippingCost": float(selected.get("price") or 0),
        "currency": selected.get("currency") or "SAR",
        "deliveryTime": selected.get("avgDeliveryTime"),
        "deliveryCompany": selected.get("deliveryCompanyName"),
        "deliveryOptionId": selected.get("deliveryOptionId"),
    }


def normalize_city(name: str) -> str:
    name = re.sub(r"[^\w\s]", "", name.lower())
    return re.sub(r"\s+", " ", name).strip()


def _city_name(entry: Any) -> str:
    if isinstance(entry, dict):
        return str(entry.get("name") or "")
    return str(entry)


async def validate_city(client: OTOClient, city: str) -> dict:
    """
    Check a city against OTO's available cities. An exact match after normalization is
    valid; otherwise up to five partial matches are offered as suggestions.
    """
    try:
        data = await client.get_available_cities({"limit": 1000})
    except ShippingError as e:
        logger.warning("City validation: could not fetch OTO cities: %s", e.message)
        return {
            "isValid": False,
            "city": city,
            "message": "Failed to fetch available cities from OTO",
            "suggestions": [],
        }

    cities = data.get("cities") if isinstance(data, dict) else None
    names = [n for n in (_city_name(c) for c in (cities or [])) if n]
    wanted = normalize_city(city)

    for name in names:
        if normalize_city(name) == wanted:
            return {"isValid": True, "city": name, "message": "City is valid", "suggestions": []}

    suggestions = []
    for name in names:
        candidate = normalize_city(name)
        if wanted and candidate and (wanted in candidate or candidate in wanted):
            suggestions.append(name)
        if len(suggestions) == MAX_CITY_SUGGESTIONS:
            break

    if suggestions:
        message = f'City "{city}" not found. Did you mean one of these?'
    else:
        message = f'City "{city}" is not available for shipping. Please check available cities.'
    return {"isValid": False, "city": city, "message": message, "suggestions": suggestions}
