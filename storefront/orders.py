import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import (
    ConflictException, InvalidTransitionException, NotFoundException,
    UnauthorizedException, ValidationException, serialize_doc, str_to_oid, to_decimal
)
from storefront.models import StatusChangeDB, to_document
from storefront.payments import PaymentGatewayClient
from storefront.schemas import OrderResponse, PaymentConfirmation
from storefront.state import (
    OrderStatus, PaymentMethod, PaymentStatus, check_order_transition, check_payment_transition
)

logger = logging.getLogger(__name__)

CANCELLABLE_BY_OWNER = {OrderStatus.PENDING.value, OrderStatus.PROCESSING.value}


def order_response(doc: dict) -> OrderResponse:
    return OrderResponse(**serialize_doc(dict(doc)))


async def _find_order(db: AsyncIOMotorDatabase, order_id: str) -> dict:
    order = await db.orders.find_one({"_id": str_to_oid(order_id, "Order not found")})
    if not order:
        raise NotFoundException("Order not found")
    return order


async def _owned_order(db: AsyncIOMotorDatabase, user_id: str, order_id: str) -> dict:
    order = await _find_order(db, order_id)
    if order["user_id"] != user_id:
        logger.warning("Cross-user order access", extra={"user_id": user_id, "order_id": order_id})
        raise UnauthorizedException("Not authorized to view this order")
    return order


async def _apply_changes(db: AsyncIOMotorDatabase, order: dict, changes: List[StatusChangeDB],
                         extra_set: Optional[dict] = None) -> dict:
    """Persist status changes, guarded on the states they were validated against."""
    guard = {"_id": order["_id"]}
    update = dict(extra_set or {})
    for change in changes:
        guard[change.field] = change.from_state
        update[change.field] = change.to_state
    update["updated_at"] = datetime.utcnow()

    result = await db.orders.update_one(
        guard,
        {"$set": update, "$push": {"status_history": {"$each": [to_document(c) for c in changes]}}},
    )
    if result.modified_count != 1:
        raise ConflictException("Order was updated concurrently, please retry")
    return await db.orders.find_one({"_id": order["_id"]})


async def list_orders(db: AsyncIOMotorDatabase, user_id: str, page: int = 1, limit: int = 10) -> List[OrderResponse]:
    skip = (page - 1) * limit
    cursor = db.orders.find({"user_id": user_id}).sort("created_at", -1).skip(skip).limit(limit)
    return [order_response(doc) async for doc in cursor]


async def get_order(db: AsyncIOMotorDatabase, user_id: str, order_id: str) -> OrderResponse:
    return order_response(await _owned_order(db, user_id, order_id))


async def process_payment(db: AsyncIOMotorDatabase, user_id: str, order_id: str,
                          confirmation: PaymentConfirmation, gateway: PaymentGatewayClient,
                          request_id: Optional[str] = None) -> OrderResponse:
    order = await _owned_order(db, user_id, order_id)
    if order["status"] == OrderStatus.CANCELLED.value:
        raise InvalidTransitionException("Order is cancelled, cannot process payment")
    if order["payment_status"] == PaymentStatus.PAID.value:
        raise InvalidTransitionException("Order is already paid")

    changes = [StatusChangeDB(
        field="payment_status",
        from_state=order["payment_status"],
        to_state=check_payment_transition(order["payment_status"], PaymentStatus.PAID).value,
        changed_by=user_id,
    )]
    if order["status"] == OrderStatus.PENDING.value:
        changes.append(StatusChangeDB(
            field="status",
            from_state=order["status"],
            to_state=check_order_transition(order["status"], OrderStatus.PROCESSING).value,
            changed_by=user_id,
        ))

    reference = confirmation.transaction_id
    if PaymentMethod(order["payment_method"]).uses_gateway:
        if not reference:
            raise ValidationException("transaction_id is required for this payment method")
        await gateway.verify_transaction(order_id, reference, to_decimal(order["total"]), request_id)

    updated = await _apply_changes(db, order, changes, {"payment_reference": reference})
    logger.info("Order paid", extra={"user_id": user_id, "order_id": order_id})
    return order_response(updated)


async def cancel_order(db: AsyncIOMotorDatabase, user_id: str, order_id: str) -> OrderResponse:
    order = await _owned_order(db, user_id, order_id)
    if order["status"] not in CANCELLABLE_BY_OWNER:
        raise InvalidTransitionException(f"Cannot cancel an order that is {order['status']}")
    change = StatusChangeDB(
        field="status",
        from_state=order["status"],
        to_state=check_order_transition(order["status"], OrderStatus.CANCELLED).value,
        note="Cancelled by customer",
        changed_by=user_id,
    )
    updated = await _apply_changes(db, order, [change])
    logger.info("Order cancelled", extra={"user_id": user_id, "order_id": order_id})
    return order_response(updated)


# --- Back-office ---
async def list_all_orders(db: AsyncIOMotorDatabase, status: Optional[OrderStatus] = None,
                          page: int = 1, limit: int = 20) -> List[OrderResponse]:
    query = {}
    if status:
        query["status"] = status.value
    skip = (page - 1) * limit
    cursor = db.orders.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return [order_response(doc) async for doc in cursor]


async def update_status(db: AsyncIOMotorDatabase, order_id: str, new_status: OrderStatus,
                        note: Optional[str] = None, changed_by: Optional[str] = None) -> OrderResponse:
    order = await _find_order(db, order_id)
    change = StatusChangeDB(
        field="status",
        from_state=order["status"],
        to_state=check_order_transition(order["status"], new_status).value,
        note=note,
        changed_by=changed_by,
    )
    updated = await _apply_changes(db, order, [change])
    logger.info("Order status changed to %s", change.to_state, extra={"order_id": order_id})
    return order_response(updated)
