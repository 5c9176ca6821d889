"""Middleware and exception handlers for the FastAPI application"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tlyt.core.config import settings
from tlyt.core.exceptions import ChipEconomyError, InsufficientBalanceError, RateLimitedError
from tlyt.core.security import get_client_identifier
from tlyt.db.redis import check_rate_limit

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

# Exempt from the global limiter: Stripe retries must always get through
RATE_LIMIT_EXEMPT_PATHS = {"/api/billing/webhook", "/metrics", "/health"}


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )


def log_api_access(request: Request, identifier: Optional[str], status_code: int, error: Optional[str] = None):
    """Log API access; failures at WARNING, everything else at DEBUG"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "client": identifier,
        "status_code": status_code,
        "error": error,
    }
    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.debug(f"API Access: {json.dumps(log_data)}")


async def security_middleware(request: Request, call_next):
    """Middleware for per-client rate limiting and API access logging"""
    identifier = None
    status_code = 500
    error = None

    try:
        path = request.url.path
        identifier = get_client_identifier(request)

        if path not in RATE_LIMIT_EXEMPT_PATHS and request.method != "OPTIONS":
            if not check_rate_limit(identifier):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return JSONResponse(
                    status_code=429,
                    content={"error": "Rate limit exceeded. Please try again later."},
                    headers={"Retry-After": str(settings.RATE_LIMIT_WINDOW)},
                )

        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, identifier, status_code, error)


async def chip_economy_exception_handler(request: Request, exc: ChipEconomyError):
    """Map chip economy errors to responses without leaking internal detail"""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    else:
        logger.info(f"{exc.__class__.__name__} on {request.url.path}: {exc}")

    content = {"error": exc.user_message(), "code": exc.__class__.__name__}
    headers = None

    if isinstance(exc, InsufficientBalanceError):
        content.update({"required": exc.required, "available": exc.available, "shortfall": exc.shortfall})
    elif isinstance(exc, RateLimitedError):
        content.update({"retry_after": exc.retry_after, "window": exc.window})
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


def setup_exception_handlers(app):
    app.add_exception_handler(ChipEconomyError, chip_economy_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
