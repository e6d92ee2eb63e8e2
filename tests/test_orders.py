from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest
from bson import ObjectId

from shared.utils import (
    InvalidTransitionException, NotFoundException, UnauthorizedException,
    UpstreamFailureException, ValidationException
)
from storefront import cart, checkout, orders
from storefront.payments import PaymentGatewayClient
from storefront.schemas import OrderCreate, PaymentConfirmation
from storefront.state import OrderStatus

SANDBOX = PaymentGatewayClient(base_url="")


@pytest.fixture
async def shopper(make_user, home_address):
    return await make_user(addresses=[home_address])


@pytest.fixture
def place_order(db, make_product):
    async def factory(user_id, method="cod", price="20.00", quantity=1):
        pid = await make_product(price=price, stock=10)
        await cart.add_item(db, user_id, pid, quantity)
        return await checkout.create_order(db, user_id, OrderCreate(payment_method=method))
    return factory


def gateway_returning(payload, status_code=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)
    return PaymentGatewayClient(base_url="https://pay.example.com", api_key="sk_test",
                                transport=httpx.MockTransport(handler))


async def test_get_order_checks_owner(db, shopper, make_user, place_order):
    order = await place_order(shopper)
    stranger = await make_user(email="stranger@example.com")

    assert (await orders.get_order(db, shopper, order.id)).id == order.id
    with pytest.raises(UnauthorizedException):
        await orders.get_order(db, stranger, order.id)


async def test_get_order_not_found(db, shopper):
    with pytest.raises(NotFoundException):
        await orders.get_order(db, shopper, str(ObjectId()))
    with pytest.raises(NotFoundException):
        await orders.get_order(db, shopper, "garbage")


async def test_list_orders_newest_first(db, shopper, make_user, place_order, home_address):
    old = await place_order(shopper)
    new = await place_order(shopper)
    other = await make_user(email="other@example.com", addresses=[home_address])
    await place_order(other)
    now = datetime.utcnow()
    await db.orders.update_one({"_id": ObjectId(old.id)}, {"$set": {"created_at": now - timedelta(days=2)}})
    await db.orders.update_one({"_id": ObjectId(new.id)}, {"$set": {"created_at": now}})

    listed = await orders.list_orders(db, shopper)

    assert [o.id for o in listed] == [new.id, old.id]
    assert [o.id for o in await orders.list_orders(db, shopper, page=2, limit=1)] == [old.id]


async def test_cod_payment(db, shopper, place_order):
    order = await place_order(shopper)

    paid = await orders.process_payment(db, shopper, order.id, PaymentConfirmation(), SANDBOX)

    assert paid.payment_status == "paid"
    assert paid.status == "processing"
    assert [(h.field, h.from_state, h.to_state) for h in paid.status_history] == [
        ("payment_status", "pending", "paid"),
        ("status", "pending", "processing"),
    ]


async def test_card_payment_verified_by_gateway(db, shopper, place_order):
    order = await place_order(shopper, method="card", price="40.00")
    seen = []
    gateway = gateway_returning(
        {"id": "tx_1", "status": "succeeded", "order_id": order.id, "amount": 45.0}, seen=seen,
    )

    paid = await orders.process_payment(db, shopper, order.id,
                                        PaymentConfirmation(transaction_id="tx_1"), gateway, "req-1")

    assert paid.payment_status == "paid"
    assert paid.payment_reference == "tx_1"
    assert seen[0].url.path == "/transactions/tx_1"
    assert seen[0].headers["Authorization"] == "Bearer sk_test"
    assert seen[0].headers["X-Request-ID"] == "req-1"


async def test_card_payment_requires_transaction(db, shopper, place_order):
    order = await place_order(shopper, method="card")
    with pytest.raises(ValidationException):
        await orders.process_payment(db, shopper, order.id, PaymentConfirmation(), SANDBOX)


@pytest.mark.parametrize("payload,status_code", [
    ({"status": "failed"}, 200),
    ({"status": "succeeded", "amount": 1.0}, 200),
    ({"status": "succeeded", "order_id": "someone-else", "amount": 25.0}, 200),
    ({"error": "not found"}, 404),
    ({"error": "boom"}, 500),
    ({"status": "succeeded"}, 200),
    ({"status": "succeeded", "amount": None}, 200),
    ({"status": "succeeded", "amount": "lots"}, 200),
])
async def test_gateway_rejection_leaves_order_unpaid(db, shopper, place_order, payload, status_code):
    order = await place_order(shopper, method="card")
    payload = dict(payload)
    payload.setdefault("order_id", order.id)
    gateway = gateway_returning(payload, status_code)

    with pytest.raises(UpstreamFailureException) as exc:
        await orders.process_payment(db, shopper, order.id,
                                     PaymentConfirmation(transaction_id="tx_9"), gateway)

    assert exc.value.status_code == 502
    unchanged = await orders.get_order(db, shopper, order.id)
    assert unchanged.payment_status == "awaiting_payment"
    assert unchanged.status == "pending"


@pytest.mark.parametrize("body", [
    b"<html><body>Bad Gateway</body></html>",
    b'["succeeded"]',
])
async def test_unreadable_gateway_reply(db, shopper, place_order, body):
    order = await place_order(shopper, method="card")

    def handler(request):
        return httpx.Response(200, content=body)
    gateway = PaymentGatewayClient(base_url="https://pay.example.com",
                                   transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamFailureException):
        await orders.process_payment(db, shopper, order.id,
                                     PaymentConfirmation(transaction_id="tx_3"), gateway)
    assert (await orders.get_order(db, shopper, order.id)).payment_status == "awaiting_payment"


async def test_gateway_unreachable(db, shopper, place_order):
    order = await place_order(shopper, method="card")

    def handler(request):
        raise httpx.ConnectError("refused", request=request)
    gateway = PaymentGatewayClient(base_url="https://pay.example.com",
                                   transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamFailureException):
        await orders.process_payment(db, shopper, order.id,
                                     PaymentConfirmation(transaction_id="tx_2"), gateway)


async def test_paying_twice_is_rejected(db, shopper, place_order):
    order = await place_order(shopper)
    await orders.process_payment(db, shopper, order.id, PaymentConfirmation(), SANDBOX)

    with pytest.raises(InvalidTransitionException):
        await orders.process_payment(db, shopper, order.id, PaymentConfirmation(), SANDBOX)


async def test_payment_of_cancelled_order_is_rejected(db, shopper, place_order):
    order = await place_order(shopper)
    await orders.cancel_order(db, shopper, order.id)

    with pytest.raises(InvalidTransitionException):
        await orders.process_payment(db, shopper, order.id, PaymentConfirmation(), SANDBOX)


async def test_cancel_order_keeps_stock(db, shopper, place_order):
    order = await place_order(shopper, quantity=3)

    cancelled = await orders.cancel_order(db, shopper, order.id)

    assert cancelled.status == "cancelled"
    assert cancelled.status_history[-1].note == "Cancelled by customer"
    product = await db.products.find_one({"_id": ObjectId(order.items[0].product_id)})
    assert product["stock"] == 7


async def test_cannot_cancel_shipped_order(db, shopper, place_order):
    order = await place_order(shopper)
    await orders.update_status(db, order.id, OrderStatus.PROCESSING)
    await orders.update_status(db, order.id, OrderStatus.SHIPPED)

    with pytest.raises(InvalidTransitionException):
        await orders.cancel_order(db, shopper, order.id)


async def test_cancel_other_users_order(db, shopper, make_user, place_order):
    order = await place_order(shopper)
    stranger = await make_user(email="stranger@example.com")
    with pytest.raises(UnauthorizedException):
        await orders.cancel_order(db, stranger, order.id)


async def test_admin_walks_order_to_delivered(db, shopper, place_order):
    order = await place_order(shopper)

    for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        updated = await orders.update_status(db, order.id, status, note="ok", changed_by="admin-1")

    assert updated.status == "delivered"
    assert [h.to_state for h in updated.status_history] == ["processing", "shipped", "delivered"]


async def test_admin_cannot_skip_states(db, shopper, place_order):
    order = await place_order(shopper)

    with pytest.raises(InvalidTransitionException) as exc:
        await orders.update_status(db, order.id, OrderStatus.DELIVERED)

    assert exc.value.details["allowed"] == ["cancelled", "processing"]
    assert (await orders.get_order(db, shopper, order.id)).status == "pending"


async def test_list_all_orders_filters_by_status(db, shopper, place_order):
    first = await place_order(shopper)
    await place_order(shopper)
    await orders.update_status(db, first.id, OrderStatus.PROCESSING)

    processing = await orders.list_all_orders(db, OrderStatus.PROCESSING)

    assert [o.id for o in processing] == [first.id]
    assert len(await orders.list_all_orders(db)) == 2


async def test_order_totals_are_decimal(db, shopper, place_order):
    order = await place_order(shopper, price="19.99", quantity=2)
    fetched = await orders.get_order(db, shopper, order.id)
    assert fetched.subtotal == Decimal("39.98")
    assert fetched.total == Decimal("44.98")
