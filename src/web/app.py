"""FastAPI application entry point."""

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from observability import metrics
from predictions.errors import EngineError, RateLimitError
from shared_types import ErrorKind
from web.deps import get_service
from web.routes import predict, stats

logger = structlog.get_logger()

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.BOT_DETECTED: 503,
    ErrorKind.TRANSIENT: 503,
}


def _error_body(code: str, message: str, field: str | None = None) -> dict:
    error = {"code": code, "message": message}
    if field:
        error["field"] = field
    return {"success": False, "error": error}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Building the engine up front turns a missing salt into a startup failure.
    service = get_service()
    logger.info("web.startup", salt_versions=service.resolver.versions)
    yield
    logger.info("web.shutdown", **metrics.summary())


app = FastAPI(
    title="Release Date Consensus",
    version="0.1.0",
    lifespan=lifespan,
)

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
        if exc.limit is not None:
            headers["X-RateLimit-Limit"] = str(exc.limit)
            headers["X-RateLimit-Remaining"] = "0"
    if status_code >= 500:
        logger.warning("web.engine_error", path=request.url.path, kind=exc.kind.value)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.kind.value, exc.public_message, getattr(exc, "field", None)),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or None
    return JSONResponse(
        status_code=400,
        content=_error_body(ErrorKind.VALIDATION.value, first.get("msg", "Invalid request"), field),
    )


app.include_router(predict.router)
app.include_router(stats.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
