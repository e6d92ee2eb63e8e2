from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import (
    SuccessResponse, ConflictException, NotFoundException, ValidationException,
    serialize_doc, str_to_oid
)
from storefront import orders
from storefront.catalog import product_response
from storefront.dependencies import get_db, require_admin
from storefront.models import BannerDB, CategoryDB, ProductDB, to_document
from storefront.reports import revenue_report
from storefront.schemas import (
    BannerCreate, BannerResponse, BannerUpdate, CategoryCreate, CategoryResponse, CategoryUpdate,
    Dashboard, DashboardCounts, OrderResponse, OrderStatusUpdate, ProductCreate, ProductResponse,
    ProductUpdate, RevenueReport, StockUpdate, UserResponse
)
from storefront.state import OrderStatus

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


async def _product_or_404(db: AsyncIOMotorDatabase, product_id: str) -> dict:
    product = await db.products.find_one({"_id": str_to_oid(product_id, "Product not found")})
    if not product:
        raise NotFoundException("Product not found")
    return product


async def _check_category(db: AsyncIOMotorDatabase, slug: str) -> None:
    if not await db.categories.find_one({"slug": slug}):
        raise ValidationException(f"Invalid category: '{slug}' not found")


# Products
@router.get("/products", response_model=SuccessResponse[List[ProductResponse]])
async def list_all_products(
    include_inactive: bool = True,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {} if include_inactive else {"is_active": True}
    cursor = db.products.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return SuccessResponse(data=[product_response(doc) async for doc in cursor])


@router.post("/products", response_model=SuccessResponse[ProductResponse])
async def create_product(product: ProductCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    await _check_category(db, product.category)
    new_product = await db.products.insert_one(to_document(ProductDB(**product.dict())))
    created = await db.products.find_one({"_id": new_product.inserted_id})
    return SuccessResponse(data=product_response(created), message="Product created successfully")


@router.put("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product_update: ProductUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await _product_or_404(db, product_id)

    update_data = {k: v for k, v in product_update.dict().items() if v is not None}
    if "category" in update_data:
        await _check_category(db, update_data["category"])
    if "price" in update_data:
        update_data["price"] = float(update_data["price"])

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await db.products.update_one({"_id": product["_id"]}, {"$set": update_data})

    updated = await db.products.find_one({"_id": product["_id"]})
    return SuccessResponse(data=product_response(updated), message="Product updated successfully")


@router.put("/products/{product_id}/stock", response_model=SuccessResponse[ProductResponse])
async def set_stock(product_id: str, body: StockUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    await db.products.update_one(
        {"_id": product["_id"]},
        {"$set": {"stock": body.stock, "updated_at": datetime.utcnow()}}
    )
    updated = await db.products.find_one({"_id": product["_id"]})
    return SuccessResponse(data=product_response(updated), message="Stock updated")


@router.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    # Soft delete: order snapshots and carts keep the reference
    await db.products.update_one(
        {"_id": product["_id"]},
        {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
    )
    return SuccessResponse(data={"id": product_id}, message="Product deleted successfully")


# Categories
@router.post("/categories", response_model=SuccessResponse[CategoryResponse])
async def create_category(category: CategoryCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    if await db.categories.find_one({"slug": category.slug}):
        raise ConflictException("Category slug already exists")

    new_cat = await db.categories.insert_one(to_document(CategoryDB(**category.dict())))
    created = await db.categories.find_one({"_id": new_cat.inserted_id})
    return SuccessResponse(data=CategoryResponse(**serialize_doc(created)), message="Category created successfully")


async def _category_or_404(db: AsyncIOMotorDatabase, category_id: str) -> dict:
    category = await db.categories.find_one({"_id": str_to_oid(category_id, "Category not found")})
    if not category:
        raise NotFoundException("Category not found")
    return category


@router.put("/categories/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def update_category(category_id: str, category_update: CategoryUpdate,
                          db: AsyncIOMotorDatabase = Depends(get_db)):
    category = await _category_or_404(db, category_id)
    # The slug is what products reference, so it never changes
    update_data = {k: v for k, v in category_update.dict().items() if v is not None}
    if update_data:
        await db.categories.update_one({"_id": category["_id"]}, {"$set": update_data})
    updated = await db.categories.find_one({"_id": category["_id"]})
    return SuccessResponse(data=CategoryResponse(**serialize_doc(updated)), message="Category updated successfully")


@router.delete("/categories/{category_id}", response_model=SuccessResponse[dict])
async def delete_category(category_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    category = await _category_or_404(db, category_id)
    in_use = await db.products.count_documents({"category": category["slug"], "is_active": True})
    if in_use:
        raise ConflictException(
            "Category still has active products",
            details={"slug": category["slug"], "product_count": in_use},
        )
    await db.categories.delete_one({"_id": category["_id"]})
    return SuccessResponse(data={"id": category_id}, message="Category deleted successfully")


# Banners
async def _banner_or_404(db: AsyncIOMotorDatabase, banner_id: str) -> dict:
    banner = await db.banners.find_one({"_id": str_to_oid(banner_id, "Banner not found")})
    if not banner:
        raise NotFoundException("Banner not found")
    return banner


@router.get("/banners", response_model=SuccessResponse[List[BannerResponse]])
async def list_banners(db: AsyncIOMotorDatabase = Depends(get_db)):
    cursor = db.banners.find({}).sort("display_order", 1)
    return SuccessResponse(data=[BannerResponse(**serialize_doc(doc)) async for doc in cursor])


@router.post("/banners", response_model=SuccessResponse[BannerResponse])
async def create_banner(banner: BannerCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    new_banner = await db.banners.insert_one(to_document(BannerDB(**banner.dict())))
    created = await db.banners.find_one({"_id": new_banner.inserted_id})
    return SuccessResponse(data=BannerResponse(**serialize_doc(created)), message="Banner created successfully")


@router.put("/banners/{banner_id}", response_model=SuccessResponse[BannerResponse])
async def update_banner(banner_id: str, banner_update: BannerUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    banner = await _banner_or_404(db, banner_id)
    update_data = {k: v for k, v in banner_update.dict().items() if v is not None}
    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await db.banners.update_one({"_id": banner["_id"]}, {"$set": update_data})
    updated = await db.banners.find_one({"_id": banner["_id"]})
    return SuccessResponse(data=BannerResponse(**serialize_doc(updated)), message="Banner updated successfully")


@router.delete("/banners/{banner_id}", response_model=SuccessResponse[dict])
async def delete_banner(banner_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    banner = await _banner_or_404(db, banner_id)
    await db.banners.delete_one({"_id": banner["_id"]})
    return SuccessResponse(data={"id": banner_id}, message="Banner deleted successfully")


# Users
@router.get("/users", response_model=SuccessResponse[List[UserResponse]])
async def list_users(
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {"role": role} if role else {}
    cursor = db.users.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return SuccessResponse(data=[UserResponse(**serialize_doc(doc)) async for doc in cursor])


# Orders
@router.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return SuccessResponse(data=await orders.list_all_orders(db, status, page, limit))


@router.put("/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(order_id: str, status_update: OrderStatusUpdate,
                              admin: dict = Depends(require_admin),
                              db: AsyncIOMotorDatabase = Depends(get_db)):
    updated = await orders.update_status(
        db, order_id, status_update.status, note=status_update.note, changed_by=admin["sub"]
    )
    return SuccessResponse(data=updated, message=f"Order is now {updated.status}")


# Reports
@router.get("/dashboard", response_model=SuccessResponse[Dashboard])
async def get_dashboard(db: AsyncIOMotorDatabase = Depends(get_db)):
    counts = DashboardCounts(
        products=await db.products.count_documents({}),
        categories=await db.categories.count_documents({}),
        banners=await db.banners.count_documents({}),
        users=await db.users.count_documents({}),
        orders=await db.orders.count_documents({}),
        pending_orders=await db.orders.count_documents({"status": OrderStatus.PENDING.value}),
    )
    cursor = db.products.find({}).sort("created_at", -1).limit(5)
    return SuccessResponse(data=Dashboard(
        counts=counts,
        recent_products=[product_response(doc) async for doc in cursor],
    ))


@router.get("/reports/revenue", response_model=SuccessResponse[RevenueReport])
async def get_revenue_report(
    range: str = Query("month", pattern="^(day|week|month|year)$"),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return SuccessResponse(data=await revenue_report(db, range))
