"""
FastAPI application for the moderation panel backend.

Routers:
    /v1/migration            panel side of a migration (start, status, dismiss, cancel)
    /v1/minecraft/migration  game-server side (progress posts, export upload)
    /v1/players              player documents with derived punishment state
"""
import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import check_db_connection
from core.exceptions import APIException
from core.logging import log_context, setup_logging
from routers import migration, players
from services.migration_errors import MigrationError, TransportError

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Moderation Panel API",
    description="Tenant player records, punishment state and bulk migration imports",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


def _cors_origins():
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Time each request and tag its log records with the calling server."""
    started = time.perf_counter()
    server = request.headers.get("x-server-name")

    with log_context(server=server.strip().lower() if server else None):
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f"Request failed: {request.method} {request.url.path}",
                extra={"extra_fields": {"method": request.method, "path": request.url.path}},
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": elapsed_ms,
                }
            },
        )
    response.headers["X-Process-Time"] = str(elapsed_ms / 1000)
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(MigrationError)
async def migration_error_handler(request: Request, exc: MigrationError):
    """Domain errors a router did not translate itself."""
    if isinstance(exc, TransportError):
        logger.error(f"Player store unavailable: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Player store unavailable", "error_code": "SERVICE_UNAVAILABLE"},
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "error_code": "MIGRATION_ERROR"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """200 while the database answers, 503 otherwise."""
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "timestamp": time.time()}


app.include_router(migration.router)
app.include_router(migration.minecraft_router)
app.include_router(players.router)
