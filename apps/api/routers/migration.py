"""
Migration endpoints.

Panel side (/v1/migration): start, poll status, dismiss, cancel.
Game-server side (/v1/minecraft/migration): progress posts and the export upload.

The upload is acknowledged as soon as the file is on disk; processing runs in the
Celery worker and callers poll the status endpoint.
"""

from __future__ import annotations

import logging
import math
import time

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import (
    APIException,
    BadRequestError,
    ConflictError,
    PayloadTooLargeError,
    TooManyRequestsError,
)
from core.rate_limit import check_migration_upload_rate_limit
from core.tenancy import get_current_tenant
from models import Tenant
from schemas import (
    MigrationActionResponse,
    MigrationProgressRequest,
    MigrationStartRequest,
    MigrationStartResponse,
    MigrationStatusResponse,
    MigrationUploadResponse,
)
from services.migration_errors import AlreadyRunning, OnCooldown, StateError
from services.migration_import import cleanup_migration_file, new_migration_file_path
from services.migration_service import (
    STATUS_FAILED,
    STATUS_UPLOADING_JSON,
    ConcurrentUpdateError,
    dismiss_migration,
    get_current_migration,
    get_migration_file_size_limit,
    get_migration_status,
    is_active,
    request_cancel,
    start_migration,
    update_migration_progress,
)
from tasks import celery_app

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/migration", tags=["migration"])
minecraft_router = APIRouter(prefix="/v1/minecraft/migration", tags=["migration"])

UPLOAD_CHUNK_BYTES = 1024 * 1024


def _raise_for_state_error(e: StateError) -> None:
    if isinstance(e, OnCooldown):
        raise TooManyRequestsError(str(e), retry_after_s=math.ceil(e.remaining_ms / 1000))
    if isinstance(e, AlreadyRunning):
        raise ConflictError(str(e))
    if isinstance(e, ConcurrentUpdateError):
        raise ConflictError(str(e))
    raise BadRequestError(str(e), error_code="INVALID_MIGRATION_STATE")


@router.get("/status", response_model=MigrationStatusResponse)
def migration_status(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    return get_migration_status(db, tenant.id)


@router.post("/start", response_model=MigrationStartResponse)
def start(
    body: MigrationStartRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """
    Start a migration. The game server picks the task up, builds the export and
    uploads it to /v1/minecraft/migration/upload.
    """
    try:
        task_id = start_migration(db, tenant.id, body.migrationType)
    except (StateError, ConcurrentUpdateError) as e:
        _raise_for_state_error(e)
    return {"success": True, "taskId": task_id}


@router.post("/dismiss", response_model=MigrationActionResponse)
def dismiss(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    try:
        dismissed = dismiss_migration(db, tenant.id)
    except (StateError, ConcurrentUpdateError) as e:
        _raise_for_state_error(e)
    return {"success": dismissed, "message": None if dismissed else "No migration to dismiss"}


@router.post("/cancel", response_model=MigrationActionResponse)
def cancel(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    try:
        requested = request_cancel(db, tenant.id)
    except ConcurrentUpdateError as e:
        _raise_for_state_error(e)
    return {
        "success": requested,
        "message": "Cancellation requested" if requested else "No migration in progress",
    }


@minecraft_router.post("/progress", response_model=MigrationActionResponse)
def post_progress(
    body: MigrationProgressRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    try:
        task = update_migration_progress(
            db,
            tenant.id,
            body.status,
            body.message,
            records_processed=body.recordsProcessed,
            records_skipped=body.recordsSkipped,
            total_records=body.totalRecords,
            error=body.error,
        )
    except ConcurrentUpdateError as e:
        _raise_for_state_error(e)
    if task is None:
        return {"success": False, "message": "No active migration"}
    return {"success": True, "message": None}


@minecraft_router.post("/upload", response_model=MigrationUploadResponse)
async def upload_migration_file(
    migrationFile: UploadFile = File(...),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """
    Receive the exported JSON and enqueue it for processing.
    """
    current = get_current_migration(db, tenant.id)
    if not is_active(current):
        raise ConflictError("No migration in progress")
    if current.get("cancelRequested"):
        raise ConflictError("Migration was cancelled")

    allowed, _remaining, reset_time = check_migration_upload_rate_limit(tenant.slug)
    if not allowed:
        raise TooManyRequestsError(
            "Too many migration uploads. Please try again later.",
            retry_after_s=max(1, reset_time - int(time.time())),
        )

    limit = get_migration_file_size_limit(tenant)
    stored_path = new_migration_file_path(tenant.id)
    stored_path.parent.mkdir(parents=True, exist_ok=True)

    total = 0
    too_large = False
    try:
        with stored_path.open("wb") as out:
            while True:
                chunk = await migrationFile.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                total += len(chunk)
                if total > limit:
                    too_large = True
                    break
                out.write(chunk)
    except Exception:
        cleanup_migration_file(str(stored_path))
        raise
    finally:
        await migrationFile.close()

    if too_large:
        cleanup_migration_file(str(stored_path))
        limit_mb = limit // (1024 * 1024)
        message = f"Migration file exceeds the {limit_mb} MB limit"
        update_migration_progress(db, tenant.id, STATUS_FAILED, "Migration failed", error=message, task_id=current["id"])
        logger.warning(
            "Migration upload rejected: file too large",
            extra={"extra_fields": {"tenant_id": str(tenant.id), "limit_bytes": limit}},
        )
        raise PayloadTooLargeError(message)

    update_migration_progress(
        db,
        tenant.id,
        STATUS_UPLOADING_JSON,
        "Migration file uploaded, queued for processing...",
        task_id=current["id"],
    )

    try:
        celery_app.send_task("migrations.process_migration_file", args=[str(tenant.id), str(stored_path)])
    except Exception as e:
        logger.error(f"Failed to enqueue migration processing: {e}")
        cleanup_migration_file(str(stored_path))
        update_migration_progress(
            db, tenant.id, STATUS_FAILED, "Migration failed", error="Could not queue migration processing", task_id=current["id"]
        )
        raise APIException(status_code=503, detail="Migration processing is unavailable", error_code="SERVICE_UNAVAILABLE")

    logger.info(
        "Migration file uploaded",
        extra={"extra_fields": {"tenant_id": str(tenant.id), "task_id": current["id"], "file_size": total}},
    )
    return {"success": True, "message": "Migration file uploaded successfully", "fileSize": total}
