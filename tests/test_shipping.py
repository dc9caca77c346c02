from decimal import Decimal
import pytest
from conftest import FakeOrderService, make_order
from stickershop.models.order import OrderItem
from stickershop.models.result import NotConfigured, ValidationFailed
from stickershop.models.shipping import Parcel, Shipment, Tracker
from stickershop.services.shipping_service import (
    EasyPostClient, RATE_RETRY_DELAYS, ShippingService, estimate_parcel,
    format_order_for_shipment, map_tracking_status
)
from stickershop.utils.rate_monitor import CallRateMonitor

SHIPPING_ADDRESS = {
    "address1": "1 Main St",
    "city": "Denver",
    "province": "CO",
    "zip": "80202",
    "country": "US",
}

def shipment(carriers, shipment_id="shp_1"):
    return Shipment(id=shipment_id, rates=[
        {"id": f"rate_{i}", "carrier": carrier, "rate": str(5 + i)}
        for i, carrier in enumerate(carriers)
    ])

class FakeEasyPost:
    is_ready = True
    test_mode = True

    def __init__(self, responses):
        self.responses = list(responses)
        self.payloads = []
        self.bought = []
        self.monitor = CallRateMonitor("easypost-test")

    async def create_shipment(self, data):
        self.payloads.append(data)
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]

    async def buy_shipment(self, shipment_id, rate_id, insurance=None):
        self.bought.append((shipment_id, rate_id, insurance))
        return Shipment(
            id=shipment_id, tracking_code="1Z999",
            selected_rate={"id": rate_id, "carrier": "UPS", "rate": "7.50"},
            tracker={"id": "trk_1", "public_url": "https://track.example/1Z999"}
        )

    async def create_tracker(self, tracking_code, carrier=None):
        return Tracker(id="trk_2", tracking_code=tracking_code, carrier=carrier or "USPS",
                       public_url="https://track.example/x")

class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)

def make_service(responses, orders=None):
    sleep = RecordingSleep()
    service = ShippingService(FakeEasyPost(responses), orders or FakeOrderService(),
                              from_address_id="adr_from", sleep=sleep)
    return service, sleep

def test_parcel_raised_to_carrier_minimums():
    parcel = Parcel(length=4, width=3, height=0.1, weight=2).with_carrier_minimums()
    assert (parcel.length, parcel.width, parcel.height, parcel.weight) == (8, 6, 2, 16)

    bigger = Parcel(length=12, width=9, height=3, weight=40).with_carrier_minimums()
    assert (bigger.length, bigger.width, bigger.height, bigger.weight) == (12, 9, 3, 40)

async def test_create_shipment_sends_minimum_parcel():
    service, _ = make_service([shipment(["UPS"])])
    await service.create_shipment({"parcel": {"length": 1, "width": 1, "height": 1, "weight": 1}})
    sent = service.client.payloads[0]["parcel"]
    assert sent == {"length": 8.0, "width": 6.0, "height": 2.0, "weight": 16.0}

async def test_retries_until_major_carrier_appears():
    service, sleep = make_service([shipment([]), shipment(["USPS"]), shipment(["USPS", "FedEx"])])
    parcel = {"length": 8, "width": 6, "height": 2, "weight": 16}

    result = await service.create_shipment({"parcel": parcel})

    assert sleep.delays == [1, 2]
    assert len(service.client.payloads) == 3
    assert result.has_major_carrier()

async def test_retries_exhausted_returns_last_shipment():
    service, sleep = make_service([shipment(["USPS"], shipment_id="shp_last")])
    parcel = {"length": 8, "width": 6, "height": 2, "weight": 16}

    result = await service.create_shipment({"parcel": parcel})

    assert sleep.delays == list(RATE_RETRY_DELAYS) == [1, 2, 4, 8]
    assert len(service.client.payloads) == 5
    assert result.id == "shp_last"

async def test_no_retry_when_ups_rates_present():
    service, sleep = make_service([shipment(["ups", "USPS"])])
    await service.create_shipment({"parcel": {"length": 8, "width": 6, "height": 2, "weight": 16}})
    assert sleep.delays == []

def test_estimate_parcel_stacks_items():
    items = [
        OrderItem(product_id="a", product_name="Stickers", product_category="vinyl-stickers",
                  quantity=100, unit_price=Decimal("1"), total_price=Decimal("100"),
                  calculator_selections={"size": {"width": 3, "height": 3}}),
        OrderItem(product_id="b", product_name="Banner", product_category="vinyl-banners",
                  quantity=1, unit_price=Decimal("40"), total_price=Decimal("40")),
    ]
    parcel = estimate_parcel(items)
    assert parcel.weight == pytest.approx(100 * 0.1 + 4.0)
    assert parcel.length == 6.0
    assert parcel.height == pytest.approx(0.6)

def test_format_order_requires_shipping_address():
    with pytest.raises(ValidationFailed):
        format_order_for_shipment(make_order(), "adr_from")

def test_format_order_for_shipment():
    order = make_order(shipping_address=SHIPPING_ADDRESS, customer_first_name="Sam",
                       customer_last_name="Lee")
    payload = format_order_for_shipment(order, "adr_from", Parcel(length=10, width=8, height=2, weight=20))
    assert payload["from_address"] == {"id": "adr_from"}
    assert payload["to_address"]["name"] == "Sam Lee"
    assert payload["to_address"]["state"] == "CO"
    assert payload["parcel"]["length"] == 10
    assert payload["reference"] == "SS-1000"

async def test_buy_shipment_writes_tracking_to_order():
    orders = FakeOrderService({1: make_order()})
    service, sleep = make_service([shipment(["UPS"])], orders)

    await service.buy_shipment(1, "shp_1", "rate_0")

    assert sleep.delays == []
    order = orders.orders[1]
    assert order.tracking_number == "1Z999"
    assert order.tracking_company == "UPS"
    assert order.easypost_tracker_id == "trk_1"
    assert order.tracking_url == "https://track.example/1Z999"

async def test_create_and_buy_uses_lowest_rate():
    orders = FakeOrderService({1: make_order(shipping_address=SHIPPING_ADDRESS)})
    service, _ = make_service([shipment(["UPS", "FedEx"])], orders)

    result = await service.create_and_buy(1)

    assert result["requiresRateSelection"] is False
    assert service.client.bought == [("shp_1", "rate_0", None)]

async def test_create_and_buy_can_defer_rate_choice():
    orders = FakeOrderService({1: make_order(shipping_address=SHIPPING_ADDRESS)})
    service, _ = make_service([shipment(["UPS"])], orders)

    result = await service.create_and_buy(1, use_lowest_rate=False)

    assert result["requiresRateSelection"] is True
    assert service.client.bought == []

async def test_create_tracker_marks_order_shipped():
    orders = FakeOrderService({1: make_order()})
    service, _ = make_service([shipment(["UPS"])], orders)

    await service.create_tracker("9400TEST", 1, "USPS")

    order = orders.orders[1]
    assert order.order_status == "Shipped"
    assert order.fulfillment_status == "partial"
    assert order.tracking_number == "9400TEST"

def test_map_tracking_status():
    delivered = map_tracking_status("delivered")
    assert delivered.order_status == "Delivered"
    assert delivered.fulfillment_status == "fulfilled"
    assert delivered.progress_step == 6

    assert map_tracking_status("in_transit").order_status == "Shipped"
    assert map_tracking_status("something_new").progress_step == 0
    assert map_tracking_status("unknown", "approved").proof_status == "approved"

async def test_process_tracking_update():
    orders = FakeOrderService({1: make_order(tracking_number="1Z999")})
    service, _ = make_service([shipment(["UPS"])], orders)

    processed = await service.process_tracking_update(
        Tracker(id="trk_1", tracking_code="1Z999", status="out_for_delivery", carrier="UPS")
    )

    assert processed
    assert orders.orders[1].order_status == "Out for Delivery"

async def test_process_tracking_update_unknown_number():
    service, _ = make_service([shipment(["UPS"])])
    assert not await service.process_tracking_update(Tracker(id="trk_1", tracking_code="nope"))

async def test_unconfigured_client_refuses_calls():
    client = EasyPostClient(api_key="", api_url="https://easypost.invalid/v2")
    assert not client.is_ready
    with pytest.raises(NotConfigured):
        await client.create_tracker("1Z999")

def test_status_reports_configuration():
    service, _ = make_service([shipment(["UPS"])])
    status = service.status()
    assert status["configured"] is True
    assert status["fromAddressConfigured"] is True
    assert status["callsLastMinute"] == 0
