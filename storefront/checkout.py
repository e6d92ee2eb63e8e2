"""Checkout: cart validation and order creation.

Order creation runs as a short saga over single-document writes:

1. reserve stock for every product (conditional decrement),
2. claim the cart at the version that was validated,
3. insert the order.

A failure in a later step undoes the earlier ones (stock released, cart lines
pushed back), so a failed checkout leaves no order, no stock change and the
cart as it was.
"""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import (
    settings, ConflictException, NotFoundException, StockExceededException,
    ValidationException, str_to_oid, to_decimal
)
from storefront.cart import CartRepository, get_cart
from storefront.catalog import fetch_products, reserve_stock, release_stock
from storefront.models import AddressDB, OrderDB, OrderItemDB, to_document
from storefront.orders import order_response
from storefront.schemas import (
    AddressResponse, CheckoutSummary, OrderCreate, OrderResponse, StockShortfall
)
from storefront.state import OrderStatus, PaymentMethod

logger = logging.getLogger(__name__)


def shipping_fee_for(subtotal: Decimal) -> Decimal:
    threshold = settings.FREE_SHIPPING_THRESHOLD
    if threshold is not None and subtotal >= threshold:
        return Decimal(0)
    return settings.SHIPPING_FEE


def requested_quantities(items: List[dict]) -> Dict[str, int]:
    """Units per product; lines that differ only by size/colour are summed."""
    totals: Dict[str, int] = OrderedDict()
    for item in items:
        totals[item["product_id"]] = totals.get(item["product_id"], 0) + item["quantity"]
    return totals


async def check_stock(db: AsyncIOMotorDatabase, items: List[dict]) -> Tuple[Dict[str, dict], List[StockShortfall]]:
    requested = requested_quantities(items)
    products = await fetch_products(db, requested)

    shortfalls = []
    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            shortfalls.append(StockShortfall(
                product_id=product_id,
                available_stock=0,
                requested_quantity=quantity,
                message="Product not found",
            ))
        elif quantity > product["stock"]:
            shortfalls.append(StockShortfall(
                product_id=product_id,
                name=product["name"],
                available_stock=product["stock"],
                requested_quantity=quantity,
                message=f"Only {product['stock']} {product['name']} available (you have {quantity} in cart)",
            ))
    return products, shortfalls


async def validate_cart(db: AsyncIOMotorDatabase, user_id: str) -> List[StockShortfall]:
    cart = await CartRepository(db).get(user_id)
    _, shortfalls = await check_stock(db, cart.get("items", []))
    return shortfalls


async def resolve_shipping_address(db: AsyncIOMotorDatabase, user_id: str, payload: OrderCreate) -> AddressDB:
    if payload.shipping_address is not None:
        return AddressDB(**payload.shipping_address.dict())

    user = await db.users.find_one({"_id": str_to_oid(user_id, "User not found")})
    if not user:
        raise NotFoundException("User not found")
    addresses = user.get("addresses", [])

    if payload.address_id:
        for address in addresses:
            if address["address_id"] == payload.address_id:
                return AddressDB(**address)
        raise NotFoundException("Address not found")

    for address in addresses:
        if address.get("is_default"):
            return AddressDB(**address)
    raise ValidationException("A shipping address is required")


async def _release_all(db: AsyncIOMotorDatabase, reserved: List[Tuple[str, int]]) -> None:
    for product_id, quantity in reserved:
        await release_stock(db, product_id, quantity)


async def create_order(db: AsyncIOMotorDatabase, user_id: str, payload: OrderCreate) -> OrderResponse:
    repo = CartRepository(db)
    cart = await repo.get(user_id)
    items = cart.get("items", [])
    if not items:
        raise ValidationException("Cart is empty")

    shipping_address = await resolve_shipping_address(db, user_id, payload)

    products, shortfalls = await check_stock(db, items)
    if shortfalls:
        raise StockExceededException(
            "Some items exceed available stock",
            details=[s.dict() for s in shortfalls],
        )

    order_items = []
    subtotal = Decimal(0)
    for item in items:
        product = products[item["product_id"]]
        price = to_decimal(product["price"])
        subtotal += price * item["quantity"]
        order_items.append(OrderItemDB(
            product_id=item["product_id"],
            name=product["name"],
            quantity=item["quantity"],
            price=price,
            size=item.get("size"),
            color=item.get("color"),
        ))
    shipping_fee = shipping_fee_for(subtotal)

    reserved: List[Tuple[str, int]] = []
    try:
        for product_id, quantity in requested_quantities(items).items():
            if not await reserve_stock(db, product_id, quantity):
                raise StockExceededException(
                    f"{products[product_id]['name']} sold out during checkout",
                    details=[{"product_id": product_id, "requested_quantity": quantity}],
                )
            reserved.append((product_id, quantity))

        if not await repo.claim(user_id, cart["version"]):
            raise ConflictException("Cart changed during checkout, please review it and try again")
    except Exception:
        await _release_all(db, reserved)
        raise

    method = PaymentMethod(payload.payment_method)
    order_db = OrderDB(
        user_id=user_id,
        items=order_items,
        shipping_address=shipping_address,
        payment_method=method.value,
        payment_status=method.initial_payment_status().value,
        status=OrderStatus.PENDING.value,
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        total=subtotal + shipping_fee,
        note=payload.note,
    )
    try:
        new_order = await db.orders.insert_one(to_document(order_db))
    except Exception:
        logger.exception("Order insert failed, rolling back checkout", extra={"user_id": user_id})
        await _release_all(db, reserved)
        await repo.restore(user_id, items)
        raise

    order_id = str(new_order.inserted_id)
    logger.info("Order created", extra={"user_id": user_id, "order_id": order_id})
    created = await db.orders.find_one({"_id": new_order.inserted_id})
    return order_response(created)


async def checkout_summary(db: AsyncIOMotorDatabase, user_id: str) -> CheckoutSummary:
    cart = await get_cart(db, user_id)
    if not cart.items:
        raise ValidationException("Cart is empty")

    shortfalls = await validate_cart(db, user_id)
    if shortfalls:
        raise StockExceededException(
            "Some items exceed available stock",
            details=[s.dict() for s in shortfalls],
        )

    user = await db.users.find_one({"_id": str_to_oid(user_id, "User not found")}) or {}
    shipping_fee = shipping_fee_for(cart.total)
    return CheckoutSummary(
        cart=cart,
        addresses=[AddressResponse(**a) for a in user.get("addresses", [])],
        subtotal=cart.total,
        shipping_fee=shipping_fee,
        total=cart.total + shipping_fee,
        payment_methods=list(PaymentMethod),
    )
