from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import require_auth, str_to_oid, ForbiddenException, UnauthorizedException
from storefront.payments import PaymentGatewayClient


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.mongodb


async def get_current_user(request: Request, payload: dict = Depends(require_auth),
                           db: AsyncIOMotorDatabase = Depends(get_db)) -> dict:
    if "jti" in payload:
        is_revoked = await db.revoked_tokens.find_one({"jti": payload["jti"]})
        if is_revoked:
            raise UnauthorizedException("Token has been revoked")
    # Picked up by RequestLoggingMiddleware
    request.state.user_id = payload["sub"]
    return payload


async def require_admin(user: dict = Depends(get_current_user),
                        db: AsyncIOMotorDatabase = Depends(get_db)) -> dict:
    # The token's role claim may be stale; the stored role decides
    account = await db.users.find_one({"_id": str_to_oid(user["sub"], "User not found")})
    if not account or account.get("role") != "admin" or not account.get("is_active", True):
        raise ForbiddenException("Admin access required")
    return user


def get_payment_gateway() -> PaymentGatewayClient:
    return PaymentGatewayClient()


def request_id_of(request: Request):
    return getattr(request.state, "request_id", None)
