from typing import List

from fastapi import APIRouter, Depends, Query, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import SuccessResponse
from shared.security_config import limiter
from storefront import checkout, orders
from storefront.dependencies import get_current_user, get_db, get_payment_gateway, request_id_of
from storefront.payments import PaymentGatewayClient
from storefront.schemas import OrderCreate, OrderResponse, PaymentConfirmation

router = APIRouter(tags=["orders"])


@router.post("/checkout/create", response_model=SuccessResponse[OrderResponse])
@limiter.limit("10/minute")
async def create_order(order: OrderCreate, request: Request, user: dict = Depends(get_current_user),
                       db: AsyncIOMotorDatabase = Depends(get_db)):
    created = await checkout.create_order(db, user["sub"], order)
    return SuccessResponse(data=created, message="Order created successfully")


@router.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user: dict = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return SuccessResponse(data=await orders.list_orders(db, user["sub"], page, limit))


@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(get_current_user),
                    db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await orders.get_order(db, user["sub"], order_id))


@router.post("/orders/{order_id}/payment", response_model=SuccessResponse[OrderResponse])
@limiter.limit("10/minute")
async def process_payment(order_id: str, confirmation: PaymentConfirmation, request: Request,
                          user: dict = Depends(get_current_user),
                          gateway: PaymentGatewayClient = Depends(get_payment_gateway),
                          db: AsyncIOMotorDatabase = Depends(get_db)):
    paid = await orders.process_payment(
        db, user["sub"], order_id, confirmation, gateway, request_id=request_id_of(request)
    )
    return SuccessResponse(data=paid, message="Payment successful")


@router.put("/orders/{order_id}/cancel", response_model=SuccessResponse[OrderResponse])
async def cancel_order(order_id: str, user: dict = Depends(get_current_user),
                       db: AsyncIOMotorDatabase = Depends(get_db)):
    return SuccessResponse(data=await orders.cancel_order(db, user["sub"], order_id), message="Order cancelled")
