"""Mindmate Backend API - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from mindmate.errors import IntegrityError, MindmateError, RequestShapeError, StartupConfigError

from .config import get_settings
from .database import get_record_store, load_cipher, reset_state
from .logging_config import configure_logging
from .rate_limit import limiter
from .routes import records_router, sync_router

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "Something went wrong"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    try:
        load_cipher(settings)
    except StartupConfigError as e:
        logger.critical(f"Refusing to start: {e}")
        raise
    get_record_store(settings)
    logger.info(f"Starting Mindmate Backend API (debug={settings.debug})")
    yield
    # Shutdown
    reset_state()
    logger.info("Shutting down Mindmate Backend API")


app = FastAPI(
    title="Mindmate Backend API",
    description="Offline sync and encrypted storage for journals and mood logs",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sync_router)
app.include_router(records_router)


# =============================================================================
# Error Envelope
# =============================================================================

def _fail(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    kind = "fail" if status_code < 500 else "error"
    return JSONResponse(
        status_code=status_code,
        content={"status": kind, "message": message},
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    response = _fail(status.HTTP_429_TOO_MANY_REQUESTS, f"Rate limit exceeded: {exc.detail}")
    # Adds Retry-After and X-RateLimit-* when headers are enabled
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


@app.exception_handler(RequestShapeError)
async def request_shape_error_handler(request: Request, exc: RequestShapeError):
    return _fail(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return _fail(status.HTTP_400_BAD_REQUEST, "Invalid request: " + "; ".join(messages))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _fail(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # Tampered or corrupted data at rest; details stay in the server log
    logger.error(f"Integrity failure on {request.method} {request.url.path}: {exc}")
    return _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_ERROR)


@app.exception_handler(MindmateError)
async def mindmate_error_handler(request: Request, exc: MindmateError):
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
    return _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_ERROR)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "mindmate-backend",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    db_status = "disconnected"
    try:
        await get_record_store().ping()
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = "error"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
