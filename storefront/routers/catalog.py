import re
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import SuccessResponse, serialize_doc
from shared.security_config import limiter
from storefront.catalog import add_review, fetch_product, product_response
from storefront.dependencies import get_current_user, get_db
from storefront.schemas import (
    BannerResponse, CategoryResponse, ProductListResponse, ProductResponse, ReviewCreate, ReviewResponse
)

router = APIRouter(tags=["catalog"])


@router.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {"is_active": True}
    if category:
        query["category"] = category

    price_query = {}
    if min_price is not None:
        price_query["$gte"] = float(min_price)
    if max_price is not None:
        price_query["$lte"] = float(max_price)
    if price_query:
        query["price"] = price_query

    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    skip = (page - 1) * limit
    total = await db.products.count_documents(query)
    cursor = db.products.find(query).sort("created_at", -1).skip(skip).limit(limit)
    products = [product_response(doc) async for doc in cursor]

    return SuccessResponse(data=ProductListResponse(
        products=products,
        total=total,
        page=page,
        limit=limit
    ))


@router.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=product_response(await fetch_product(db, product_id)))


@router.get("/products/{product_id}/reviews", response_model=SuccessResponse[List[ReviewResponse]])
async def list_reviews(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await fetch_product(db, product_id)
    reviews = sorted(product.get("reviews", []), key=lambda r: r["created_at"], reverse=True)
    return SuccessResponse(data=[ReviewResponse(**r) for r in reviews])


@router.post("/products/{product_id}/reviews", response_model=SuccessResponse[ProductResponse])
@limiter.limit("10/minute")
async def post_review(product_id: str, review: ReviewCreate, request: Request,
                      user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await add_review(db, product_id, user["sub"], review.rating, review.comment)
    return SuccessResponse(data=product_response(product), message="Review saved")


@router.get("/categories", response_model=SuccessResponse[List[CategoryResponse]])
async def list_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    cursor = db.categories.find({}).sort("name", 1)
    return SuccessResponse(data=[CategoryResponse(**serialize_doc(doc)) async for doc in cursor])


@router.get("/banners", response_model=SuccessResponse[List[BannerResponse]])
async def list_banners(db: AsyncIOMotorDatabase = Depends(get_db)):
    cursor = db.banners.find({"is_active": True}).sort("display_order", 1)
    return SuccessResponse(data=[BannerResponse(**serialize_doc(doc)) async for doc in cursor])
