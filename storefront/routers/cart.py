from fastapi import APIRouter, Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import SuccessResponse
from shared.security_config import limiter
from storefront import cart as cart_service
from storefront import checkout
from storefront.dependencies import get_current_user, get_db
from storefront.schemas import (
    AddToCartResult, CartItemAdd, CartItemUpdate, CartResponse, CartValidationResponse,
    CheckoutSummary
)

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(request: Request, user: dict = Depends(get_current_user),
                   db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await cart_service.get_cart(db, user["sub"]))


@router.post("/add", response_model=SuccessResponse[AddToCartResult])
@limiter.limit("60/minute")
async def add_to_cart(item: CartItemAdd, request: Request, user: dict = Depends(get_current_user),
                      db: AsyncIOMotorDatabase = Depends(get_db)):
    result = await cart_service.add_item(
        db, user["sub"], item.product_id, item.quantity, size=item.size, color=item.color
    )
    return SuccessResponse(data=result, warning=result.warning)


@router.put("/update", response_model=SuccessResponse[CartResponse])
async def update_cart_item(update: CartItemUpdate, user: dict = Depends(get_current_user),
                           db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await cart_service.update_quantity(db, user["sub"], update.item_id, update.quantity))


@router.delete("/remove/{item_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(item_id: str, user: dict = Depends(get_current_user),
                           db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await cart_service.remove_item(db, user["sub"], item_id))


@router.delete("", response_model=SuccessResponse[CartResponse])
async def clear_cart(user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await cart_service.clear_cart(db, user["sub"]), message="Cart cleared")


@router.post("/validate", response_model=SuccessResponse[CartValidationResponse])
async def validate_cart(user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    shortfalls = await checkout.validate_cart(db, user["sub"])
    if shortfalls:
        message = "Some items exceed available stock"
    else:
        message = "Cart validation successful"
    return SuccessResponse(
        success=not shortfalls,
        data=CartValidationResponse(valid=not shortfalls, shortfalls=shortfalls),
        message=message,
    )


@router.get("/checkout", response_model=SuccessResponse[CheckoutSummary])
async def checkout_page(user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await checkout.checkout_summary(db, user["sub"]))
