import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import NotFoundException, str_to_oid, serialize_doc
from storefront.models import ReviewDB, to_document
from storefront.schemas import ProductResponse

logger = logging.getLogger(__name__)


async def fetch_product(db: AsyncIOMotorDatabase, product_id: str) -> dict:
    """Return the active product document or raise NotFound."""
    product = await db.products.find_one(
        {"_id": str_to_oid(product_id, f"Product {product_id} not found"), "is_active": True}
    )
    if not product:
        raise NotFoundException(f"Product {product_id} not found")
    return product


async def fetch_products(db: AsyncIOMotorDatabase, product_ids: Iterable[str]) -> Dict[str, dict]:
    """Resolve many ids at once. Malformed, missing and inactive ids are left out."""
    oids = []
    for product_id in set(product_ids):
        try:
            oids.append(ObjectId(product_id))
        except (InvalidId, TypeError):
            continue
    if not oids:
        return {}
    cursor = db.products.find({"_id": {"$in": oids}, "is_active": True})
    return {str(doc["_id"]): doc async for doc in cursor}


def average_rating(product: dict) -> Optional[float]:
    reviews = product.get("reviews") or []
    if not reviews:
        return None
    return round(sum(r["rating"] for r in reviews) / len(reviews), 2)


def product_response(product: dict) -> ProductResponse:
    doc = dict(product)
    doc["rating"] = average_rating(product)
    doc["review_count"] = len(product.get("reviews") or [])
    doc.pop("reviews", None)
    return ProductResponse(**serialize_doc(doc))


# --- Stock ledger ---
async def reserve_stock(db: AsyncIOMotorDatabase, product_id: str, quantity: int) -> bool:
    """Take ``quantity`` units if, and only if, that many are still in stock."""
    result = await db.products.update_one(
        {"_id": ObjectId(product_id), "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": datetime.utcnow()}},
    )
    return result.modified_count == 1


async def release_stock(db: AsyncIOMotorDatabase, product_id: str, quantity: int) -> None:
    await db.products.update_one(
        {"_id": ObjectId(product_id)},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": datetime.utcnow()}},
    )
    logger.info("Stock released", extra={"product_id": product_id})


# --- Reviews ---
async def add_review(db: AsyncIOMotorDatabase, product_id: str, user_id: str,
                     rating: int, comment: Optional[str] = None) -> dict:
    """Add the user's review, replacing an earlier one for the same product."""
    product = await fetch_product(db, product_id)
    review = to_document(ReviewDB(user_id=user_id, rating=rating, comment=comment))
    await db.products.update_one({"_id": product["_id"]}, {"$pull": {"reviews": {"user_id": user_id}}})
    await db.products.update_one({"_id": product["_id"]}, {"$push": {"reviews": review}})
    return await fetch_product(db, product_id)
