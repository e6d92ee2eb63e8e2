from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime

from shared.utils import get_db_client, settings, AppException, ErrorResponse, HealthResponse
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware

from storefront.routers import account, admin, auth, cart, catalog, orders

# Setup Logging
logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="Storefront Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(account.router)
app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(admin.router)


async def create_indexes(db):
    await db.users.create_index("email", unique=True)
    await db.revoked_tokens.create_index("exp", expireAfterSeconds=0)
    await db.products.create_index([("name", "text"), ("description", "text")])
    await db.products.create_index("category")
    await db.categories.create_index("slug", unique=True)
    await db.banners.create_index("display_order")
    await db.carts.create_index("user_id", unique=True)
    await db.orders.create_index([("user_id", 1), ("created_at", -1)])
    await db.orders.create_index("status")


@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    await create_indexes(app.mongodb)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.detail}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().dict(),
        headers=exc.headers,
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail), code="http_error").dict(),
        headers=getattr(exc, "headers", None),
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=settings.SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={
            "payment-gateway": "sandbox" if not settings.PAYMENT_GATEWAY_URL else "configured"
        }
    )
