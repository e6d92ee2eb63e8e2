from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import (
    settings, get_password_hash, verify_password, create_access_token,
    create_refresh_token, verify_refresh_token, str_to_oid, serialize_doc,
    SuccessResponse, ConflictException, NotFoundException, UnauthorizedException
)
from shared.security_config import limiter
from storefront.dependencies import get_current_user, get_db
from storefront.models import UserDB, to_document
from storefront.schemas import RefreshTokenRequest, Token, UserLogin, UserRegister, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])


def issue_tokens(user_id: str, role: str) -> Token:
    claims = {"sub": user_id, "role": role}
    return Token(
        access_token=create_access_token(
            data=claims, expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        ),
        refresh_token=create_refresh_token(data=claims),
        token_type="bearer",
    )


async def revoke(db: AsyncIOMotorDatabase, payload: dict) -> None:
    if "jti" in payload:
        await db.revoked_tokens.insert_one({
            "jti": payload["jti"],
            "exp": datetime.utcfromtimestamp(payload["exp"]),
        })


@router.post("/register", response_model=SuccessResponse[UserResponse])
@limiter.limit("10/minute")
async def register(user: UserRegister, request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    existing_user = await db.users.find_one({"email": user.email})
    if existing_user:
        raise ConflictException("Email already registered")

    user_db = UserDB(
        email=user.email,
        password_hash=get_password_hash(user.password),
        full_name=user.full_name,
        phone=user.phone,
    )
    new_user = await db.users.insert_one(to_document(user_db))
    created_user = await db.users.find_one({"_id": new_user.inserted_id})
    return SuccessResponse(data=UserResponse(**serialize_doc(created_user)), message="User registered successfully")


@router.post("/login", response_model=SuccessResponse[Token])
@limiter.limit("5/minute")
async def login(user_credentials: UserLogin, request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db.users.find_one({"email": user_credentials.email})
    if not user or not verify_password(user_credentials.password, user["password_hash"]):
        raise UnauthorizedException("Incorrect email or password")
    if not user.get("is_active", True):
        raise UnauthorizedException("Account is disabled")
    return SuccessResponse(data=issue_tokens(str(user["_id"]), user["role"]))


@router.post("/refresh", response_model=SuccessResponse[Token])
async def refresh_token(body: RefreshTokenRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    payload = verify_refresh_token(body.refresh_token)
    if await db.revoked_tokens.find_one({"jti": payload.get("jti")}):
        raise UnauthorizedException("Refresh token has been revoked")
    # Rotate: the presented refresh token cannot be used again
    await revoke(db, payload)
    return SuccessResponse(data=issue_tokens(payload["sub"], payload["role"]))


@router.post("/logout", response_model=SuccessResponse[dict])
async def logout(body: RefreshTokenRequest, payload: dict = Depends(get_current_user),
                 db: AsyncIOMotorDatabase = Depends(get_db)):
    await revoke(db, payload)
    await revoke(db, verify_refresh_token(body.refresh_token))
    return SuccessResponse(message="Logged out successfully")


@router.get("/me", response_model=SuccessResponse[UserResponse])
async def me(payload: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db.users.find_one({"_id": str_to_oid(payload["sub"], "User not found")})
    if not user:
        raise NotFoundException("User not found")
    return SuccessResponse(data=UserResponse(**serialize_doc(user)))
