from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Generic, TypeVar, Any
from fastapi import HTTPException, status, Header
from motor.motor_asyncio import AsyncIOMotorClient
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
from bson import ObjectId
from bson.errors import InvalidId
import uuid

# --- Configuration ---
class Settings(BaseSettings):
    SERVICE_NAME: str = "storefront"
    MONGO_URL: str = "mongodb://mongodb:27017"
    DATABASE_NAME: str = "storefront_db"
    SECRET_KEY: str = "secret"
    REFRESH_SECRET_KEY: str = "refresh_secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Checkout
    SHIPPING_FEE: Decimal = Decimal("5.00")
    FREE_SHIPPING_THRESHOLD: Optional[Decimal] = Decimal("100.00")
    CART_WRITE_RETRIES: int = 3

    # Payment gateway (empty URL = sandbox, confirmations are trusted)
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_GATEWAY_TIMEOUT: float = 5.0

    RATE_LIMIT_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

def str_to_oid(id: str, detail: str = "Invalid ID format") -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise NotFoundException(detail)

def serialize_doc(doc: dict) -> dict:
    """Expose Mongo's ``_id`` as a string ``id`` for response models."""
    doc["id"] = str(doc.pop("_id"))
    return doc

def to_decimal(value: Any) -> Decimal:
    # Prices are stored as float; go through str to keep the printed value
    return Decimal(str(value))

# --- Authentication ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def _encode_token(data: dict, secret: str, expire: datetime, token_type: str) -> str:
    to_encode = data.copy()
    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode_token(data, settings.SECRET_KEY, expire, "access")

def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode_token(data, settings.REFRESH_SECRET_KEY, expire, "refresh")

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")
    if payload.get("type") != "access":
        raise UnauthorizedException("Could not validate credentials")
    return payload

def verify_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.REFRESH_SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Invalid refresh token")
    if payload.get("type") != "refresh":
        raise UnauthorizedException("Invalid refresh token")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    warning: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    code = "app_error"

    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None,
        details: Optional[Any] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.detail, code=self.code, details=self.details)

class ValidationException(AppException):
    code = "validation_error"

    def __init__(self, detail: str = "Invalid request", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail, details=details)

class NotFoundException(AppException):
    code = "not_found"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    code = "unauthorized"

    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    code = "forbidden"

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ConflictException(AppException):
    code = "conflict"

    def __init__(self, detail: str = "Conflict", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail, details=details)

class InvalidTransitionException(ConflictException):
    code = "invalid_transition"

class StockExceededException(AppException):
    code = "stock_exceeded"

    def __init__(self, detail: str = "Insufficient stock", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail, details=details)

class UpstreamFailureException(AppException):
    code = "upstream_failure"

    def __init__(self, detail: str = "Upstream service failed", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail, details=details)

# --- Decorators/Dependencies ---
async def require_auth(authorization: str = Header(...)) -> dict:
    scheme, _, param = authorization.partition(" ")
    if not authorization or scheme.lower() != "bearer":
         raise UnauthorizedException(detail="Invalid authentication credentials")
    return verify_token(param)
