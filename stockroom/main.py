import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from stockroom.api.routes.audit_logs import router as audit_logs_router
from stockroom.api.routes.auth import router as auth_router
from stockroom.api.routes.categories import router as categories_router
from stockroom.api.routes.dashboard import router as dashboard_router
from stockroom.api.routes.expenses import router as expenses_router
from stockroom.api.routes.inventory import router as inventory_router
from stockroom.api.routes.products import router as products_router
from stockroom.api.routes.purchases import router as purchases_router
from stockroom.api.routes.sales import router as sales_router
from stockroom.api.routes.users import router as users_router
from stockroom.core.config import settings, validate_settings
from stockroom.core.errors import AppError, AuthenticationError
from stockroom.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    validate_settings()
    logger.info("%s starting (environment=%s)", settings.app_name, settings.environment)
    yield
    logger.info("%s shutting down", settings.app_name)


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "; ".join(problems) or "Invalid request", "error": "ValidationError"},
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(_: Request, exc: IntegrityError):
    logger.warning("Integrity error: %s", exc.orig)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "A record with this value already exists", "error": "ConflictError"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else str(exc) or "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": message, "error": "InternalServerError"},
    )


for router in (
    auth_router,
    products_router,
    categories_router,
    users_router,
    inventory_router,
    sales_router,
    purchases_router,
    expenses_router,
    audit_logs_router,
    dashboard_router,
):
    app.include_router(router, prefix="/api")


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok", "environment": settings.environment}
