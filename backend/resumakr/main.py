"""Resumakr entitlements API: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from resumakr.api.v1.admin import router as admin_router
from resumakr.api.v1.ai_credits import router as ai_credits_router
from resumakr.api.v1.billing import router as billing_router
from resumakr.api.v1.exports import router as exports_router
from resumakr.api.v1.resumes import router as resumes_router
from resumakr.api.v1.subscriptions import router as subscriptions_router
from resumakr.api.v1.templates import router as templates_router
from resumakr.api.v1.webhooks import router as webhooks_router
from resumakr.billing.exceptions import InvariantViolation, NotFoundError, StorageError
from resumakr.config import settings

# Configure root logger so all resumakr.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    yield
    # Shutdown: dispose engine connections
    from resumakr.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Tier entitlements, usage quotas and subscription reconciliation for Resumakr.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=exc.to_dict())


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation) -> JSONResponse:
    logger.warning("Rejected subscription write on %s: %s", request.url.path, exc.violations)
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=exc.to_dict())


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=exc.to_dict(),
        headers={"Retry-After": "1"},
    )


# Routers
app.include_router(subscriptions_router)
app.include_router(exports_router)
app.include_router(ai_credits_router)
app.include_router(resumes_router)
app.include_router(templates_router)
app.include_router(billing_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
