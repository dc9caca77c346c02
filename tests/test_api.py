import json
import time
from decimal import Decimal
import pytest
from fastapi.testclient import TestClient
from conftest import (
    FakeCreditService, FakeDatabase, FakeDiscountService, FakeOrderService, FakeStripe,
    make_discount, make_order
)
from test_shipping import FakeEasyPost, shipment
from stickershop.app import Services, create_app
from stickershop.config import Config
from stickershop.services.checkout_service import CheckoutService
from stickershop.services.payment_service import PaymentService
from stickershop.services.pricing_service import PricingService
from stickershop.services.shipping_service import ShippingService
from stickershop.utils.security import compute_stripe_signature

WEBHOOK_SECRET = "whsec_api_test"

@pytest.fixture
def orders():
    return FakeOrderService({7: make_order(id=7, tracking_number="1Z999")})

@pytest.fixture
def discounts():
    return FakeDiscountService(make_discount(code="SAVE10"))

@pytest.fixture
def client(orders, discounts, monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_API_KEY", "admin-key")
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)

    credits = FakeCreditService(Decimal("25"))
    stripe = FakeStripe()
    services = Services(
        db=FakeDatabase(),
        discounts=discounts,
        credits=credits,
        orders=orders,
        payments=PaymentService(orders, discounts, credits, stripe),
        shipping=ShippingService(FakeEasyPost([shipment(["UPS"])]), orders, from_address_id="adr_1"),
        pricing=PricingService(),
        checkout=CheckoutService(discounts, credits, orders, stripe, "https://shop.example.com"),
    )
    with TestClient(create_app(services)) as test_client:
        yield test_client

ADMIN = {"X-Admin-Key": "admin-key"}

def test_health(client):
    assert client.get("/").status_code == 200
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["database"] is True

def test_checkout_route(client):
    response = client.post("/api/checkout", json={
        "items": [{"productId": "vinyl", "name": "Vinyl", "quantity": 100,
                   "unitPrice": "1.00", "totalPrice": "100.00"}],
        "customer": {"email": "buyer@example.com"},
        "userId": "user-1",
        "discountCode": "save10",
        "creditsToApply": "50",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["sessionId"] == "cs_test_123"
    assert Decimal(str(body["discountAmount"])) == Decimal("10")
    assert Decimal(str(body["creditsApplied"])) == Decimal("25")
    assert Decimal(str(body["total"])) == Decimal("65")

def test_checkout_rejects_empty_cart(client):
    response = client.post("/api/checkout", json={"items": [], "customer": {"email": "a@b.c"}})
    assert response.status_code == 422

def test_validate_discount_route(client):
    body = client.post("/api/discounts/validate", json={"code": "nope", "orderAmount": "20"}).json()
    assert body["valid"] is False
    assert body["reason"] == "not_found"

def test_admin_routes_need_key(client):
    assert client.post("/api/admin/cleanup-abandoned").status_code == 401
    response = client.post("/api/admin/cleanup-abandoned", headers=ADMIN)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["cancelledOrders"] == 0

def test_admin_key_not_configured(client, monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_API_KEY", None)
    response = client.post("/api/admin/cleanup-abandoned", headers=ADMIN)
    assert response.status_code == 503
    assert response.json()["errorKind"] == "not_configured"

def test_not_found_error_channel(client):
    response = client.get("/api/orders/999")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Order 999 not found", "errorKind": "not_found"}

def test_stripe_webhook(client, orders):
    payload = json.dumps({
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_7", "payment_intent": "pi_7", "amount_total": 10000,
                            "metadata": {"orderId": "7"}}},
    }).encode()
    timestamp = int(time.time())
    signature = compute_stripe_signature(payload, timestamp, WEBHOOK_SECRET)

    response = client.post("/webhooks/stripe", content=payload,
                           headers={"Stripe-Signature": f"t={timestamp},v1={signature}"})

    assert response.status_code == 200
    assert response.json() == {"received": True, "result": "paid"}
    assert orders.orders[7].financial_status == "paid"

def test_stripe_webhook_bad_signature(client, orders):
    response = client.post("/webhooks/stripe", content=b"{}",
                           headers={"Stripe-Signature": f"t={int(time.time())},v1=bad"})
    assert response.status_code == 400
    assert orders.paid == []

def test_easypost_tracker_webhook(client, orders):
    event = {
        "object": "Event",
        "description": "tracker.updated",
        "result": {"object": "Tracker", "id": "trk_1", "tracking_code": "1Z999",
                   "status": "delivered", "carrier": "UPS"},
    }
    body = client.post("/webhooks/easypost", json=event).json()
    assert body == {"received": True, "processed": True}
    assert orders.orders[7].order_status == "Delivered"

def test_easypost_non_tracker_event_ignored(client):
    body = client.post("/webhooks/easypost", json={"object": "Event", "description": "batch.created"}).json()
    assert body == {"received": True, "processed": False}

def test_webhook_test_and_easypost_status(client):
    assert client.get("/webhooks/test").json()["status"] == "ok"
    assert client.get("/easypost/status").json()["configured"] is True

def test_pricing_quote_route(client):
    response = client.post("/api/pricing/quote", json={"preset": "medium", "quantity": 100})
    assert response.status_code == 200
    assert Decimal(str(response.json()["totalPrice"])) > 0

def test_apply_discount_to_existing_order(client, discounts):
    response = client.post("/api/discounts/orders/7/apply", json={"code": "save10"}, headers=ADMIN)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert Decimal(str(body["data"]["discountAmount"])) == Decimal("10")
    assert discounts.applied == [(7, "SAVE10", Decimal("10.00"))]
    assert discounts.usages == [(1, 7)]

def test_apply_discount_twice_is_rejected(client, orders, discounts):
    orders.orders[8] = make_order(id=8, discount_code="SAVE10", discount_amount=Decimal("10"),
                                  total_price=Decimal("90"))
    response = client.post("/api/discounts/orders/8/apply", json={"code": "save10"}, headers=ADMIN)
    assert response.status_code == 422
    assert "already has discount" in response.json()["error"]
    assert discounts.applied == []
    assert discounts.usages == []

def test_apply_discount_to_paid_order_is_rejected(client, orders, discounts):
    orders.orders[9] = make_order(id=9, financial_status="paid")
    response = client.post("/api/discounts/orders/9/apply", json={"code": "save10"}, headers=ADMIN)
    assert response.status_code == 422
    assert discounts.applied == []

def test_apply_invalid_discount_is_rejected(client):
    response = client.post("/api/discounts/orders/7/apply", json={"code": "bogus"}, headers=ADMIN)
    assert response.status_code == 422
    assert response.json()["errorKind"] == "validation_failed"
