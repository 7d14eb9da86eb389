"""
Import pipeline for an uploaded migration file.

Runs in the worker, never in the request that uploaded the file:

    processing_data -> parse (secure) -> players array -> batch executor -> completed

Any failure flips the task to `failed` with a bounded error message. The uploaded
file is deleted on every exit path.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.logging import log_context
from services.migration_batch import MigrationBatchExecutor
from services.migration_errors import MigrationCancelled, MigrationError
from services.migration_service import (
    MAX_ERROR_LENGTH,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING_DATA,
    get_current_migration,
    is_active,
    is_cancel_requested,
    update_migration_progress,
)
from services.player_store import PlayerStore
from services.secure_json import parse_secure_json, require_players_array

logger = logging.getLogger(__name__)


def migration_upload_dir() -> Path:
    return Path(settings.UPLOADS_DIR) / "migrations"


def new_migration_file_path(tenant_id: UUID) -> Path:
    return migration_upload_dir() / f"{tenant_id}-{uuid.uuid4().hex}.json"


def cleanup_migration_file(file_path: str) -> None:
    try:
        os.unlink(file_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Failed to delete migration file {file_path}: {e}")


def process_migration_file(db: Session, tenant_id: UUID, file_path: str) -> Dict[str, Any]:
    """
    Import one uploaded export into the tenant's player store.

    Returns the final counts. Re-raises the failure after recording it on the task.
    A task that already finished (cancelled before the worker ran) is not imported.
    """
    current = get_current_migration(db, tenant_id)
    task_id: Optional[str] = current.get("id") if current else None

    with log_context(tenant_id=tenant_id, task_id=task_id):
        if not is_active(current):
            logger.warning("Migration file not imported: task is no longer running")
            cleanup_migration_file(file_path)
            raise MigrationCancelled()
        return _run_import(db, tenant_id, file_path, task_id)


def _run_import(db: Session, tenant_id: UUID, file_path: str, task_id: Optional[str]) -> Dict[str, Any]:
    def report(status: str, message: str, processed=None, skipped=None, total=None, error=None):
        update_migration_progress(
            db,
            tenant_id,
            status,
            message,
            records_processed=processed,
            records_skipped=skipped,
            total_records=total,
            error=error,
            task_id=task_id,
        )

    executor: Optional[MigrationBatchExecutor] = None
    try:
        report(STATUS_PROCESSING_DATA, "Reading and validating migration file...")

        document = parse_secure_json(file_path)
        players = require_players_array(document)
        del document
        total = len(players)

        report(STATUS_PROCESSING_DATA, f"Processing {total} player records...", 0, 0, total)
        logger.info("Migration import started", extra={"extra_fields": {"total_records": total}})

        executor = MigrationBatchExecutor(
            PlayerStore(db, tenant_id),
            on_progress=lambda p, s, t: report(
                STATUS_PROCESSING_DATA, f"Processing player records... ({p}/{t})", p, s, t
            ),
            should_cancel=lambda: is_cancel_requested(db, tenant_id, task_id),
        )
        stats = executor.run(players)

        report(
            STATUS_COMPLETED,
            "Migration completed successfully",
            stats.processed,
            stats.skipped,
            stats.total,
        )
        logger.info("Migration import completed", extra={"extra_fields": stats.to_dict()})
        return stats.to_dict()

    except Exception as e:
        if isinstance(e, MigrationError):
            logger.error(f"Migration import failed: {e}")
        else:
            logger.exception("Migration import failed unexpectedly")

        db.rollback()
        stats = executor.stats if executor is not None else None
        try:
            report(
                STATUS_FAILED,
                "Migration failed",
                stats.processed if stats else None,
                stats.skipped if stats else None,
                stats.total if stats else None,
                error=(str(e) or type(e).__name__)[:MAX_ERROR_LENGTH],
            )
        except Exception:
            logger.exception("Could not record migration failure")
        raise

    finally:
        cleanup_migration_file(file_path)
