"""
Storefront API
Checkout, QPay payments, courier dispatch, coupons, saved addresses and shop content
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.core_settings import get_settings
from storefront.domain.exceptions import ShopError
from storefront.infrastructure.db import get_engine, init_models
from storefront.api.orders import router as orders_router
from storefront.api.qpay import router as qpay_router
from storefront.api.coupons import router as coupons_router
from storefront.api.addresses import router as addresses_router
from storefront.api.content import routers as content_routers

settings = get_settings()

SERVICE_NAME = "storefront-api"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Tsaas.mn storefront backend"
API_PREFIX = "/api"

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL,
    environment=settings.ENVIRONMENT,
    version=SERVICE_VERSION,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    try:
        logger.info("Running database migrations")
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=os.path.join(os.path.dirname(__file__), ".."),
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.warning(f"Migration output: {result.stderr}")
        else:
            logger.info("Database migrations completed")
    except OSError as e:
        logger.error(f"Migration error: {e}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    logger.info(f"{SERVICE_NAME} started successfully")
    yield
    logger.info(f"Shutting down {SERVICE_NAME}")


app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message}", extra={"extra_fields": exc.extra})
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, **exc.extra},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")).removeprefix("Value error, ")}
        for e in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Оруулсан мэдээлэл буруу байна"
    return JSONResponse(status_code=422, content={"success": False, "message": message, "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "message": "Дотоод алдаа гарлаа"})


health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine_provider=get_engine,
    redis_url=settings.REDIS_URL,
    required_settings=lambda: {
        "QPAY_LOGIN": settings.QPAY_LOGIN,
        "QPAY_PASSWORD": settings.QPAY_PASSWORD,
        "JWT_SECRET": settings.JWT_SECRET,
    },
)
app.include_router(health_service.create_health_router())

for router in (orders_router, qpay_router, coupons_router, addresses_router, *content_routers):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs",
    }


@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": settings.ENVIRONMENT,
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "api": API_PREFIX,
        },
    }
