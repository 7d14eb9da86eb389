"""
Migration import task.

This module runs in the Celery worker. The API only enqueues by name
(`migrations.process_migration_file`) and never waits for the result.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import UUID

from core.database import get_db_sync
from services.migration_import import cleanup_migration_file, process_migration_file
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="migrations.process_migration_file")
def process_migration_file_task(tenant_id: str, file_path: str) -> Dict[str, Any]:
    """
    Run the import pipeline for one uploaded file.

    The pipeline records success or failure on the tenant's migration task itself;
    failures are re-raised so the worker marks the Celery task failed too.
    """
    try:
        tenant_uuid = UUID(tenant_id)
    except (TypeError, ValueError):
        logger.error(f"Migration task received invalid tenant id: {tenant_id!r}")
        cleanup_migration_file(file_path)
        return {"status": "error", "error": "invalid_tenant_id"}

    db = get_db_sync()
    try:
        stats = process_migration_file(db, tenant_uuid, file_path)
        return {"status": "success", **stats}
    finally:
        db.close()
