"""FastAPI JSON API for the price intelligence engine."""

from __future__ import annotations

from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from priceintel import __version__
from priceintel.core.logging import configure_logging
from priceintel.errors import (
    AnalysisError,
    ConflictError,
    GenerationError,
    NotFoundError,
    PersistenceError,
    PriceIntelError,
    ProposalStateError,
    SchemaValidationError,
    ValidationError,
)
from priceintel.web.routes import health_router, router

# Initialize structured logging
configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="Price Intelligence API",
    description="Offer reconstruction, market prices and pricebook proposals",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                status_code=response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


app.add_middleware(RequestLoggingMiddleware)


# Exception Handlers
def _status_for(exc: PriceIntelError) -> int:
    if isinstance(exc, ValidationError):
        return 413 if exc.reason in ("batch_too_large", "too_large") else 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (ProposalStateError, ConflictError)):
        return 409
    if isinstance(exc, GenerationError):
        return 502
    if isinstance(exc, (SchemaValidationError, AnalysisError)):
        return 422
    if isinstance(exc, PersistenceError):
        return 503
    return 500


@app.exception_handler(PriceIntelError)
async def price_intel_exception_handler(request: Request, exc: PriceIntelError):
    """Map engine errors onto HTTP status codes."""
    status_code = _status_for(exc)
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content["reason"] = exc.reason
        content["filename"] = exc.filename

    log = logger.error if status_code >= 500 else logger.info
    log("request_error", error=type(exc).__name__, status_code=status_code, detail=str(exc))
    return JSONResponse(status_code=status_code, content=content)


# Include Routers
app.include_router(health_router)
app.include_router(router)
