"""Cart store and cart mutations.

Each user owns one cart document keyed by ``user_id``. Writes are conditional
on the ``version`` the writer read and bump it, so two requests racing on the
same cart cannot overwrite each other: the loser re-reads and re-applies its
change, and gives up with a Conflict after ``CART_WRITE_RETRIES`` attempts.

Line totals and the cart total are computed from live catalog prices on every
read and are never stored.
"""
import copy
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from shared.utils import (
    settings, ConflictException, NotFoundException, StockExceededException,
    ValidationException, to_decimal
)
from storefront.catalog import fetch_product, fetch_products
from storefront.models import CartDB, CartItemDB, to_document
from storefront.schemas import AddToCartResult, CartItemResponse, CartResponse

logger = logging.getLogger(__name__)

R = TypeVar("R")


class CartRepository:
    def __init__(self, db: AsyncIOMotorDatabase, retries: Optional[int] = None):
        self.collection = db.carts
        self.retries = retries if retries is not None else settings.CART_WRITE_RETRIES

    async def get(self, user_id: str) -> dict:
        cart = await self.collection.find_one({"user_id": user_id})
        if cart:
            return cart
        empty = to_document(CartDB(user_id=user_id))
        empty.pop("user_id")
        try:
            await self.collection.update_one({"user_id": user_id}, {"$setOnInsert": empty}, upsert=True)
        except DuplicateKeyError:
            # Another first request created the cart between our read and upsert
            logger.info("Cart created concurrently", extra={"user_id": user_id})
        return await self.collection.find_one({"user_id": user_id})

    async def write(self, user_id: str, version: int, items: List[dict]) -> bool:
        """Replace the lines if nobody wrote since ``version`` was read."""
        result = await self.collection.update_one(
            {"user_id": user_id, "version": version},
            {"$set": {"items": items, "updated_at": datetime.utcnow()}, "$inc": {"version": 1}},
        )
        return result.modified_count == 1

    async def mutate(self, user_id: str, apply: Callable[[List[dict]], R]) -> R:
        """Run ``apply`` on a copy of the lines and store the result.

        ``apply`` edits the list in place and may raise to abort; nothing is
        written in that case.
        """
        for _ in range(self.retries):
            cart = await self.get(user_id)
            items = copy.deepcopy(cart.get("items", []))
            result = apply(items)
            if await self.write(user_id, cart["version"], items):
                return result
            logger.warning("Cart version conflict, retrying", extra={"user_id": user_id})
        raise ConflictException("Cart was modified concurrently, please retry")

    async def claim(self, user_id: str, version: int) -> bool:
        """Empty the cart for checkout, only if it is still at ``version``."""
        return await self.write(user_id, version, [])

    async def restore(self, user_id: str, items: List[dict]) -> None:
        await self.collection.update_one(
            {"user_id": user_id},
            {"$push": {"items": {"$each": items}}, "$inc": {"version": 1},
             "$set": {"updated_at": datetime.utcnow()}},
        )


def _find_line(items: List[dict], item_id: str) -> dict:
    for item in items:
        if item["item_id"] == item_id:
            return item
    raise NotFoundException("Cart item not found")


def quantity_in_cart(items: List[dict], product_id: str, exclude_item: Optional[str] = None) -> int:
    """Total units of a product across all of its lines (every size/colour)."""
    return sum(
        item["quantity"] for item in items
        if item["product_id"] == product_id and item["item_id"] != exclude_item
    )


async def resolve_cart(db: AsyncIOMotorDatabase, cart: dict) -> Tuple[CartResponse, List[dict]]:
    """Populate lines with catalog data. Returns the view and the dangling lines."""
    items = cart.get("items", [])
    products = await fetch_products(db, (item["product_id"] for item in items))

    lines = []
    dangling = []
    total = Decimal(0)
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            dangling.append(item)
            continue
        price = to_decimal(product["price"])
        line_total = price * item["quantity"]
        total += line_total
        images = product.get("images") or []
        lines.append(CartItemResponse(
            item_id=item["item_id"],
            product_id=item["product_id"],
            name=product["name"],
            price=price,
            image=images[0] if images else None,
            stock=product["stock"],
            quantity=item["quantity"],
            size=item.get("size"),
            color=item.get("color"),
            line_total=line_total,
        ))

    view = CartResponse(
        user_id=cart["user_id"],
        items=lines,
        total=total,
        count=len(lines),
        version=cart["version"],
        updated_at=cart["updated_at"],
    )
    return view, dangling


async def get_cart(db: AsyncIOMotorDatabase, user_id: str) -> CartResponse:
    repo = CartRepository(db)
    cart = await repo.get(user_id)
    view, dangling = await resolve_cart(db, cart)
    if dangling:
        # Opportunistic prune; a concurrent writer will prune on its next read
        dangling_ids = {item["item_id"] for item in dangling}
        kept = [item for item in cart["items"] if item["item_id"] not in dangling_ids]
        if await repo.write(user_id, cart["version"], kept):
            view.version = cart["version"] + 1
            logger.info("Pruned %d dangling cart lines", len(dangling), extra={"user_id": user_id})
    return view


async def add_item(db: AsyncIOMotorDatabase, user_id: str, product_id: str, quantity: int,
                   size: Optional[str] = None, color: Optional[str] = None) -> AddToCartResult:
    if quantity < 1:
        raise ValidationException("Quantity must be at least 1")

    product = await fetch_product(db, product_id)
    product_id = str(product["_id"])
    stock = product["stock"]

    def apply(items: List[dict]) -> int:
        in_cart = quantity_in_cart(items, product_id)
        headroom = stock - in_cart
        added = quantity
        if quantity > headroom:
            if headroom <= 0:
                raise StockExceededException(
                    "Maximum stock reached for this item",
                    details={
                        "product_id": product_id,
                        "available_stock": stock,
                        "current_quantity": in_cart,
                        "adjusted_quantity": 0,
                    },
                )
            added = headroom

        for item in items:
            if (item["product_id"], item.get("size"), item.get("color")) == (product_id, size, color):
                item["quantity"] += added
                break
        else:
            items.append(to_document(CartItemDB(
                product_id=product_id, quantity=added, size=size, color=color
            )))
        return added

    added = await CartRepository(db).mutate(user_id, apply)
    warning = None
    if added < quantity:
        warning = f"Only {added} more items available"
        logger.info("Add to cart capped at stock", extra={"user_id": user_id, "product_id": product_id})

    return AddToCartResult(
        cart=await get_cart(db, user_id),
        requested_quantity=quantity,
        adjusted_quantity=added,
        warning=warning,
    )


async def update_quantity(db: AsyncIOMotorDatabase, user_id: str, item_id: str, quantity: int) -> CartResponse:
    if quantity < 1:
        raise ValidationException("Quantity must be at least 1")

    repo = CartRepository(db)
    line = _find_line((await repo.get(user_id)).get("items", []), item_id)
    product = await fetch_product(db, line["product_id"])
    stock = product["stock"]

    def apply(items: List[dict]) -> None:
        target = _find_line(items, item_id)
        others = quantity_in_cart(items, target["product_id"], exclude_item=item_id)
        if quantity + others > stock:
            raise StockExceededException(
                f"Only {stock} items available",
                details={
                    "product_id": target["product_id"],
                    "available_stock": stock,
                    "current_quantity": target["quantity"] + others,
                },
            )
        target["quantity"] = quantity

    await repo.mutate(user_id, apply)
    return await get_cart(db, user_id)


async def remove_item(db: AsyncIOMotorDatabase, user_id: str, item_id: str) -> CartResponse:
    def apply(items: List[dict]) -> None:
        items.remove(_find_line(items, item_id))

    await CartRepository(db).mutate(user_id, apply)
    logger.info("Cart item removed", extra={"user_id": user_id, "item_id": item_id})
    return await get_cart(db, user_id)


async def clear_cart(db: AsyncIOMotorDatabase, user_id: str) -> CartResponse:
    await CartRepository(db).mutate(user_id, lambda items: items.clear())
    return await get_cart(db, user_id)
