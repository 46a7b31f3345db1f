"""
Checkout Service
Server-side pricing, order creation and payment confirmation for the storefront
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from app.api.routes import router as orders_router
from app.api.payment_routes import router as payment_router
from app.api.coupon_routes import router as coupon_router
from app.context import CheckoutContext
from app.core_settings import get_settings
from app.domain.errors import CheckoutError
from app.infrastructure.db import engine, init_models

# Service configuration
SERVICE_NAME = "checkout-service"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
SERVICE_DESCRIPTION = "Checkout pricing and order microservice"

settings = get_settings()

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

def run_migrations() -> None:
    logger.info("Running database migrations")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=os.path.join(os.path.dirname(__file__), ".."),
            capture_output=True,
            text=True,
            check=False
        )
    except OSError as e:
        logger.error(f"Migration error: {e}")
        return
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if os.getenv("SKIP_MIGRATIONS", "").lower() not in ("1", "true", "yes"):
        run_migrations()
    init_models()
    logger.info("Database models initialized")

    app.state.context = CheckoutContext.from_settings(settings)
    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    await app.state.context.aclose()

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__}: {exc.details}",
        extra={'extra_fields': {'path': request.url.path, 'status_code': exc.status_code}}
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

def _describe(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(_describe(error) for error in exc.errors())
    logger.info(
        f"Rejected invalid request: {details}",
        extra={'extra_fields': {'path': request.url.path, 'status_code': 400}}
    )
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})

health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine=engine,
    required_env=() if settings.DATABASE_URL else ("POSTGRES_HOST", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"),
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(payment_router)
app.include_router(coupon_router)

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "currency": settings.CURRENCY,
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "orders": "/orders",
            "payment": "/payment",
            "coupons": "/coupons"
        }
    }
