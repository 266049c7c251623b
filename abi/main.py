"""
main.py — Abi application entry point

Builds the FastAPI app: logging, request-id middleware, security headers,
exception handlers that map every failure onto ErrorResponse, slowapi,
the routers and the approval scheduler.

Business Rules:
- Every response carries X-Request-ID (8 chars) and the security headers
- AbiError subclasses map to their status code; RequestValidationError
  maps to 400; unexpected exceptions map to 500 without internals
- The background scheduler does not run under TESTING

Called by: uvicorn (abi.main:app)
Depends on: all routers, logging_config, rate_limit, scheduler, http_client
"""

import asyncio
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import AbiError, InvariantViolation, RateLimited
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers import auth, chat, credits, interests, requests, suppliers
from .schemas.errors import ErrorResponse

APP_VERSION = "1.0.0"

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    task = None
    if not os.environ.get("TESTING"):
        from .scheduler import start_scheduler

        task = asyncio.create_task(start_scheduler())
    logger.info("Abi started", version=APP_VERSION, environment=settings.environment)
    yield
    if task:
        task.cancel()
    await close_clients()


app = FastAPI(title="Abi", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter


# ── Middleware ───────────────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    for name, value in _SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


# ── Exception handlers ───────────────────────────────────────────────


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _error(request: Request, status_code: int, message: str, detail=None, reset_at=None) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        status_code=status_code,
        request_id=_request_id(request),
        detail=detail,
        reset_at=reset_at,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AbiError)
async def abi_error_handler(request: Request, exc: AbiError):
    if isinstance(exc, InvariantViolation):
        logger.error(f"Invariant violation on {request.url.path}: {exc.message}")
    elif exc.status_code >= 500:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    reset_at = None
    if isinstance(exc, RateLimited) and exc.reset_at:
        reset_at = exc.reset_at.isoformat()
    return _error(request, exc.status_code, exc.message, exc.detail, reset_at)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = jsonable_encoder(exc.errors(), exclude={"ctx", "input", "url"})
    return _error(request, 400, "Invalid request", detail)


@app.exception_handler(RateLimitExceeded)
async def slowapi_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return _error(request, 429, f"Rate limit exceeded: {exc.detail}")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error(request, 500, "Internal server error")


# ── Routes ───────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


app.include_router(chat.router)
app.include_router(auth.router)
app.include_router(credits.router)
app.include_router(requests.router)
app.include_router(suppliers.router)
app.include_router(interests.router)
