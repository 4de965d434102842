from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import traceback

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import EngineError
from app.database import init_db, ping_database


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create missing tables (schema changes go through Alembic)
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    yield

    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Bookings", "description": "Consignment intake, LR numbers and status transitions"},
    {"name": "Customers", "description": "Consignor/consignee master records"},
    {"name": "Manifests", "description": "OGPL creation, loading, dispatch and closing"},
    {"name": "Unloading", "description": "Receipt of manifests at the destination branch"},
]

FULL_API_DESCRIPTION = """
## Freight Lifecycle Engine API

Tracks a consignment from booking at the origin branch to receipt at the
destination branch.

| Stage | Endpoint |
|-------|----------|
| **Booking** | `POST /api/v1/bookings` issues an LR number `ORIGIN-DEST-YEAR-SEQ` |
| **Loading** | `POST /api/v1/manifests/{id}/bookings` attaches bookings to an OGPL |
| **Dispatch** | `POST /api/v1/manifests/{id}/dispatch` sends the vehicle |
| **Unloading** | `POST /api/v1/unloading` records the receipt and item conditions |

All data is scoped to the caller's branch unless the caller has an
organization-wide role. Errors carry a machine-readable `code`.
"""

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    content.update({
        "path": str(request.url.path),
        "method": request.method,
    })
    response = JSONResponse(status_code=status_code, content=content)

    # Add CORS headers if origin is allowed
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Render engine failures with their code and details."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(request, exc.status_code, exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler for anything the engine did not classify."""
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = str(exc)
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    content = {
        "error": error_message,
        "code": "INTERNAL_ERROR",
        "type": type(exc).__name__,
        "details": {},
    }
    if settings.DEBUG:
        content["traceback"] = traceback.format_exc()
    return _error_response(request, status_code, content)


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus a database round trip. 503 when the store does not answer."""
    db_error = await ping_database()
    body = {
        "status": "unhealthy" if db_error else "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": f"error: {db_error}" if db_error else "connected"},
    }
    if db_error:
        return JSONResponse(status_code=503, content=body)
    return body


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"{settings.APP_NAME} is running",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
