import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from . import models, models_billing, models_order  # noqa: F401 - registers every table
from .bootstrap import initialize_database
from .database import engine
from .domain.auth.router import router as auth_router
from .domain.ironsail.router import router as ironsail_router
from .domain.md_integrations.router import router as md_router
from .domain.olympia.router import router as olympia_router
from .domain.olympia.router import webhook_router as olympia_webhook_router
from .domain.programs.router import public_router as public_programs_router
from .domain.programs.router import router as programs_router
from .domain.refunds.router import refund_requests_router, refunds_router
from .phi import PHIRedactionFilter
from .routes.analytics import router as analytics_router
from .routes.payouts import router as payouts_router
from .security_headers import SecurityHeadersMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(PHIRedactionFilter())
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("stripe").setLevel(logging.WARNING)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    if config.DB_BOOTSTRAP_ON_STARTUP:
        initialize_database(engine)
    else:
        logger.info("Database bootstrap disabled (DB_BOOTSTRAP_ON_STARTUP=false)")

    try:
        from .rate_limiter import get_redis_client

        get_redis_client().ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis connection failed, rate-limited routes will answer 503 until it recovers: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Fuse Patient API", version="1.0.0", lifespan=lifespan)


# ============================================================================
# ERROR ENVELOPE: every error is {"success": false, "message": "..."}
# ============================================================================


def error_response(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Validation problems are 400s. A missing or malformed Authorization header
    is reported as 401 instead.
    """
    errors = exc.errors()
    for error in errors:
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(f"Authentication failed for {request.url.path}: missing or invalid Authorization header")
            return error_response(
                401, "Not authenticated. Please provide a valid Bearer token in the Authorization header."
            )

    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    # Log field names only, submitted values can hold PHI
    logger.warning(f"Validation error for {request.url.path}: {field or 'request'}")
    return error_response(400, f"{field}: {message}" if field else message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return error_response(500, "Internal server error")


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/docs", "/openapi.json"])
    logger.info("Security headers enabled")
else:
    logger.warning("Security headers DISABLED - only use in development!")

logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(auth_router)
app.include_router(programs_router)
app.include_router(public_programs_router)
app.include_router(ironsail_router)
app.include_router(olympia_router)
app.include_router(olympia_webhook_router)
app.include_router(md_router)
app.include_router(refund_requests_router)
app.include_router(refunds_router)
app.include_router(payouts_router)
app.include_router(analytics_router)


@app.get("/")
def root():
    return {"message": "Fuse Patient API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
