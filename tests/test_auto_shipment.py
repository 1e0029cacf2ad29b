"""
Auto-shipment tests
"""
import json

import httpx
import pytest

from shipment_engine.models import OrderStatus, Shipment
from shipment_engine.services.auto_shipment import AutoShipmentService, calculate_boxes, should_create_shipment


@pytest.fixture
def service(db_session, oto_client):
    return AutoShipmentService(db_session, oto_client, check_credit=False)


class TestAutoShipment:
    async def test_prepaid_order_ships_with_sender_paying(self, service, fake_oto, db_session, test_order):
        fake_oto.on("POST", "/createOrder", {"orderId": 7001, "trackingNumber": "AUTO-1", "status": "new"})

        shipment = await service.create_for_order(test_order.id)

        assert shipment is not None
        assert shipment.tracking_number == "AUTO-1"
        assert shipment.meta["autoCreated"] is True
        payload = json.loads(fake_oto.calls("POST", "/createOrder")[0].content)
        assert payload["payment"]["codAmount"] == 0
        assert payload["payment"]["whoPays"] == "sender"
        assert payload["boxes"][0]["boxName"] == "Package 1"
        assert payload["boxes"][0]["weight"] == pytest.approx(2.5)
        db_session.refresh(test_order)
        assert test_order.status == OrderStatus.SHIPPED

    async def test_cod_order_collects_full_price(self, service, fake_oto, db_session, test_order):
        test_order.payment_method = "COD"
        db_session.commit()
        fake_oto.on("POST", "/createOrder", {"orderId": 7002})

        await service.create_for_order(test_order.id)

        payload = json.loads(fake_oto.calls("POST", "/createOrder")[0].content)
        assert payload["payment"]["codAmount"] == 750.0
        assert payload["payment"]["whoPays"] == "recipient"

    async def test_unpaid_order_is_skipped(self, service, fake_oto, db_session, test_order):
        test_order.status = OrderStatus.PENDING
        db_session.commit()

        assert await service.create_for_order(test_order.id) is None
        assert fake_oto.requests == []

    async def test_missing_phone_is_skipped(self, service, fake_oto, db_session, test_order):
        test_order.customer_phone = None
        db_session.commit()

        assert await service.create_for_order(test_order.id) is None
        assert fake_oto.requests == []

    async def test_existing_shipment_returned_as_is(self, service, fake_oto, db_session, test_order):
        existing = Shipment(order_id=test_order.id, tracking_number="EXISTING", oto_order_id="1")
        db_session.add(existing)
        db_session.commit()

        shipment = await service.create_for_order(test_order.id)

        assert shipment.id == existing.id
        assert fake_oto.requests == []

    async def test_provider_failure_recorded_on_order(self, service, fake_oto, db_session, test_order):
        fake_oto.on(
            "POST",
            "/createOrder",
            httpx.Response(422, json={"otoErrorCode": "CITY", "otoErrorMessage": "City not served"}),
        )

        assert await service.create_for_order(test_order.id) is None

        db_session.refresh(test_order)
        error = test_order.meta["shipmentCreationError"]
        assert error["message"] == "City not served"
        assert error["otoError"]["code"] == "CITY"
        assert test_order.status == OrderStatus.PAID
        assert db_session.query(Shipment).count() == 0

    async def test_retry_after_failure(self, service, fake_oto, db_session, test_order):
        fake_oto.on(
            "POST",
            "/createOrder",
            [httpx.Response(503, json={"message": "down"}), httpx.Response(200, json={"orderId": 7003, "trackingNumber": "AUTO-3"})],
        )

        assert await service.create_for_order(test_order.id) is None
        shipment = await service.retry(test_order.id)

        assert shipment.tracking_number == "AUTO-3"

    async def test_order_with_tracking_number_is_skipped(self, service, fake_oto, db_session, test_order):
        test_order.tracking_number = "MANUAL-1"
        db_session.commit()

        assert await service.create_for_order(test_order.id) is None
        assert fake_oto.requests == []


FEE_OPTIONS = {
    "deliveryCompany": [
        {"deliveryCompanyName": "SMSA", "price": 30, "currency": "SAR", "deliveryOptionId": 2},
        {"deliveryCompanyName": "Aramex Express", "price": 45, "currency": "SAR", "deliveryOptionId": 1},
    ]
}


class TestCreditCheck:
    @pytest.fixture
    def credit_service(self, db_session, oto_client):
        return AutoShipmentService(db_session, oto_client, check_credit=True)

    async def test_short_wallet_parks_order(self, credit_service, fake_oto, db_session, test_order):
        fake_oto.on("POST", "/checkDeliveryFee", FEE_OPTIONS)
        fake_oto.on("GET", "/account", {"balance": 20, "currency": "SAR"})

        assert await credit_service.create_for_order(test_order.id) is None

        db_session.refresh(test_order)
        assert test_order.status == OrderStatus.NOT_ENOUGH_CREDIT
        assert test_order.meta["otoCreditRequired"] == 45
        assert test_order.meta["otoCurrentBalance"] == 20
        assert test_order.meta["otoCreditShortfall"] == 25
        assert fake_oto.calls("POST", "/createOrder") == []
        quote = json.loads(fake_oto.calls("POST", "/checkDeliveryFee")[0].content)
        assert quote["destinationCity"] == "Cairo"
        assert quote["weight"] == pytest.approx(2.5)
        assert quote["totalDue"] == 0
        assert credit_service.failure_details(test_order.id)["reason"] == "NOT_ENOUGH_CREDIT"

    async def test_parked_order_ships_after_top_up(self, credit_service, fake_oto, db_session, test_order):
        fake_oto.on("POST", "/checkDeliveryFee", FEE_OPTIONS)
        fake_oto.on("GET", "/account", [{"balance": 20}, {"balance": 100}])
        fake_oto.on("POST", "/createOrder", {"orderId": 7101, "trackingNumber": "AUTO-CREDIT"})

        assert await credit_service.create_for_order(test_order.id) is None
        shipment = await credit_service.retry(test_order.id)

        assert shipment.tracking_number == "AUTO-CREDIT"
        db_session.refresh(test_order)
        assert test_order.status == OrderStatus.SHIPPED

    async def test_bulk_retry_processes_parked_orders(self, credit_service, fake_oto, db_session, test_order):
        test_order.status = OrderStatus.NOT_ENOUGH_CREDIT
        db_session.commit()
        fake_oto.on("POST", "/checkDeliveryFee", FEE_OPTIONS)
        fake_oto.on("GET", "/account", {"balance": 100})
        fake_oto.on("POST", "/createOrder", {"orderId": 7102, "trackingNumber": "AUTO-BULK"})

        summary = await credit_service.retry_not_enough_credit()

        assert summary["processed"] == 1
        assert summary["succeeded"] == 1
        assert summary["results"][0]["orderNumber"] == "O1"
        assert summary["results"][0]["trackingNumber"] == "AUTO-BULK"

    async def test_credit_summary(self, credit_service, fake_oto, db_session, test_order):
        test_order.status = OrderStatus.NOT_ENOUGH_CREDIT
        test_order.meta = {"otoCreditRequired": 45}
        db_session.commit()
        fake_oto.on("GET", "/account", {"balance": 10, "currency": "SAR"})

        summary = await credit_service.credit_summary()

        assert summary["totalOrders"] == 1
        assert summary["totalRequired"] == 45
        assert summary["currentBalance"] == 10
        assert summary["shortfall"] == 35
        assert summary["orders"][0]["customerName"] == "Mona Adel"

    async def test_quote_without_options_is_recorded(self, credit_service, fake_oto, db_session, test_order):
        fake_oto.on("POST", "/checkDeliveryFee", {"deliveryCompany": []})

        assert await credit_service.create_for_order(test_order.id) is None

        db_session.refresh(test_order)
        assert test_order.status == OrderStatus.PAID
        assert "No shipping options" in test_order.meta["shipmentCreationError"]["message"]
        assert credit_service.failure_details(test_order.id)["reason"] == "SHIPMENT_CREATION_FAILED"


def test_calculate_boxes_defaults_to_one_kilo_when_empty():
    assert calculate_boxes([])[0]["weight"] == 1


def test_should_create_shipment(test_order):
    assert should_create_shipment(test_order)
    test_order.status = OrderStatus.NOT_ENOUGH_CREDIT
    assert should_create_shipment(test_order)
    test_order.tracking_number = "T1"
    assert not should_create_shipment(test_order)
