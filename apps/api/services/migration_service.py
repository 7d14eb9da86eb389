"""
Migration coordinator: one persisted migration task per tenant.

State lives in the tenant's `migration` settings document:

    {
        "currentMigration": {id, migrationType, status, startedAt, completedAt?,
                             progress: {message, recordsProcessed, recordsSkipped, totalRecords},
                             error?, cancelRequested?} | None,
        "lastMigrationTimestamp": ISO instant of the last *completed* task | None,
        "history": [newest first, capped]
    }

Status flow: idle -> building_json -> uploading_json -> processing_data -> completed | failed.

Every write is a compare-and-set on TenantSetting.version, so "one non-terminal task
per tenant", the cooldown check and progress counters hold across workers and restarts
without any in-process lock.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from models import Tenant, TenantSetting
from services.migration_errors import AlreadyRunning, MigrationError, OnCooldown, StateError
from services.timestamps import format_timestamp, parse_timestamp, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

MIGRATION_SETTINGS_TYPE = "migration"
SUPPORTED_MIGRATION_TYPES = ("litebans",)

STATUS_IDLE = "idle"
STATUS_BUILDING_JSON = "building_json"
STATUS_UPLOADING_JSON = "uploading_json"
STATUS_PROCESSING_DATA = "processing_data"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

STATUS_ORDER = {
    STATUS_IDLE: 0,
    STATUS_BUILDING_JSON: 1,
    STATUS_UPLOADING_JSON: 2,
    STATUS_PROCESSING_DATA: 3,
    STATUS_COMPLETED: 4,
    STATUS_FAILED: 4,
}
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

MAX_ERROR_LENGTH = 4000
CANCELLED_MESSAGE = "Migration cancelled"
CAS_MAX_ATTEMPTS = 10

T = TypeVar("T")


def _default_data() -> Dict[str, Any]:
    return {"currentMigration": None, "lastMigrationTimestamp": None, "history": []}


def is_terminal(task: Optional[Dict[str, Any]]) -> bool:
    return task is not None and task.get("status") in TERMINAL_STATUSES


def is_active(task: Optional[Dict[str, Any]]) -> bool:
    return task is not None and task.get("status") not in TERMINAL_STATUSES


class ConcurrentUpdateError(MigrationError):
    """The settings document kept changing underneath a compare-and-set."""


def get_migration_settings(db: Session, tenant_id: UUID) -> TenantSetting:
    """Get or create the tenant's migration settings document, backfilling missing fields."""
    row = (
        db.query(TenantSetting)
        .filter(TenantSetting.tenant_id == tenant_id, TenantSetting.type == MIGRATION_SETTINGS_TYPE)
        .first()
    )
    if row is None:
        row = TenantSetting(tenant_id=tenant_id, type=MIGRATION_SETTINGS_TYPE, data=_default_data(), version=0)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # Another worker created it first.
            db.rollback()
            row = (
                db.query(TenantSetting)
                .filter(TenantSetting.tenant_id == tenant_id, TenantSetting.type == MIGRATION_SETTINGS_TYPE)
                .one()
            )
        return row

    data = row.data if isinstance(row.data, dict) else {}
    missing = {k: v for k, v in _default_data().items() if k not in data}
    if missing or not isinstance(row.data, dict):
        _compare_and_set(db, row, lambda d: d.update({k: v for k, v in _default_data().items() if k not in d}))
    return row


def _compare_and_set(db: Session, row: TenantSetting, mutate: Callable[[Dict[str, Any]], T]) -> T:
    """
    Read-modify-write the settings document guarded by its version column.

    `mutate` receives a private copy of the current data and edits it in place; it
    may raise (e.g. StateError) to abort without writing. If it leaves the data
    unchanged nothing is written.
    """
    for attempt in range(CAS_MAX_ATTEMPTS):
        current = (
            db.query(TenantSetting)
            .populate_existing()
            .filter(TenantSetting.id == row.id)
            .one()
        )
        expected_version = current.version or 0
        before = current.data if isinstance(current.data, dict) else {}
        data = copy.deepcopy(before)
        result = mutate(data)
        if data == before:
            return result

        updated = (
            db.query(TenantSetting)
            .filter(TenantSetting.id == row.id, TenantSetting.version == expected_version)
            .update({"data": data, "version": expected_version + 1}, synchronize_session=False)
        )
        if updated == 1:
            db.commit()
            db.refresh(row)
            return result
        db.rollback()
        logger.info(f"Migration settings changed concurrently, retrying (attempt {attempt + 1})")

    raise ConcurrentUpdateError("Migration settings are being updated concurrently. Please try again.")


@dataclass
class CooldownStatus:
    on_cooldown: bool
    remaining_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"onCooldown": self.on_cooldown, "remainingTime": self.remaining_ms}


def _cooldown_from_data(data: Dict[str, Any], now: datetime) -> CooldownStatus:
    last = parse_timestamp(data.get("lastMigrationTimestamp"))
    if last is None:
        return CooldownStatus(on_cooldown=False)
    cooldown = timedelta(hours=settings.MIGRATION_COOLDOWN_HOURS)
    elapsed = now - last
    if elapsed < cooldown:
        return CooldownStatus(on_cooldown=True, remaining_ms=to_epoch_ms(last + cooldown) - to_epoch_ms(now))
    return CooldownStatus(on_cooldown=False)


def check_migration_cooldown(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> CooldownStatus:
    row = get_migration_settings(db, tenant_id)
    return _cooldown_from_data(row.data or {}, now or utcnow())


def start_migration(db: Session, tenant_id: UUID, migration_type: str, now: Optional[datetime] = None) -> str:
    """
    Create the tenant's migration task in `idle`.

    Raises AlreadyRunning if a non-terminal task exists, OnCooldown if the last
    completed task finished less than MIGRATION_COOLDOWN_HOURS ago. Both checks and
    the write happen in one compare-and-set, so two concurrent starts cannot both win.
    """
    now = now or utcnow()
    migration_type = (migration_type or "").strip().lower()
    if migration_type not in SUPPORTED_MIGRATION_TYPES:
        raise StateError("Invalid migration type")

    task_id = str(uuid.uuid4())
    row = get_migration_settings(db, tenant_id)

    def _start(data: Dict[str, Any]) -> str:
        if is_active(data.get("currentMigration")):
            raise AlreadyRunning()
        cooldown = _cooldown_from_data(data, now)
        if cooldown.on_cooldown:
            raise OnCooldown(cooldown.remaining_ms or 0)
        data["currentMigration"] = {
            "id": task_id,
            "migrationType": migration_type,
            "status": STATUS_IDLE,
            "startedAt": format_timestamp(now),
            "completedAt": None,
            "progress": {
                "message": "Waiting for Minecraft server to start building export...",
                "recordsProcessed": 0,
                "recordsSkipped": 0,
                "totalRecords": None,
            },
            "error": None,
            "cancelRequested": False,
        }
        return task_id

    _compare_and_set(db, row, _start)
    logger.info(
        "Migration started",
        extra={"extra_fields": {"tenant_id": str(tenant_id), "task_id": task_id, "migration_type": migration_type}},
    )
    return task_id


def _monotonic_count(old: Any, new: Optional[int]) -> int:
    old_val = old if isinstance(old, int) else 0
    if new is None:
        return old_val
    return max(old_val, int(new))


def update_migration_progress(
    db: Session,
    tenant_id: UUID,
    status: str,
    message: str,
    *,
    records_processed: Optional[int] = None,
    records_skipped: Optional[int] = None,
    total_records: Optional[int] = None,
    error: Optional[str] = None,
    task_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Progress sink: fold one progress post into the current task.

    - no current task, a different task id, or a terminal task: ignored
    - status never moves backwards; counts never decrease
    - reaching completed/failed appends a history entry; completed also stamps
      lastMigrationTimestamp (starting the cooldown). The task stays visible until dismissed.

    Returns the resulting task, or None when the post was ignored.
    """
    if status not in STATUS_ORDER:
        raise ValueError(f"Unknown migration status: {status}")
    now = now or utcnow()
    row = get_migration_settings(db, tenant_id)

    def _apply(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        current = data.get("currentMigration")
        if current is None:
            logger.warning(f"Progress post for tenant {tenant_id} ignored: no migration task")
            return None
        if task_id is not None and current.get("id") != task_id:
            logger.warning(f"Progress post for task {task_id} ignored: current task is {current.get('id')}")
            return None
        if is_terminal(current):
            return None

        progress = dict(current.get("progress") or {})
        progress["recordsProcessed"] = _monotonic_count(progress.get("recordsProcessed"), records_processed)
        progress["recordsSkipped"] = _monotonic_count(progress.get("recordsSkipped"), records_skipped)
        if total_records is not None:
            progress["totalRecords"] = int(total_records)

        if STATUS_ORDER[status] >= STATUS_ORDER.get(current.get("status"), 0):
            current["status"] = status
            progress["message"] = message
        current["progress"] = progress
        if error:
            current["error"] = str(error)[:MAX_ERROR_LENGTH]

        if status in TERMINAL_STATUSES:
            _finish(data, current, status, now)

        data["currentMigration"] = current
        return copy.deepcopy(current)

    return _compare_and_set(db, row, _apply)


def _finish(data: Dict[str, Any], current: Dict[str, Any], status: str, now: datetime) -> None:
    """Stamp completedAt and record the history entry; completed also starts the cooldown."""
    progress = current.get("progress") or {}
    current["completedAt"] = format_timestamp(now)
    entry = {
        "id": current.get("id"),
        "migrationType": current.get("migrationType"),
        "startedAt": current.get("startedAt"),
        "completedAt": current["completedAt"],
        "status": status,
        "recordsProcessed": progress.get("recordsProcessed", 0),
        "recordsSkipped": progress.get("recordsSkipped", 0),
        "error": current.get("error"),
    }
    history = [entry] + list(data.get("history") or [])
    data["history"] = history[: settings.MIGRATION_HISTORY_LIMIT]
    if status == STATUS_COMPLETED:
        data["lastMigrationTimestamp"] = current["completedAt"]


def dismiss_migration(db: Session, tenant_id: UUID) -> bool:
    """Clear a finished task from view. Returns False if there was nothing to dismiss."""
    row = get_migration_settings(db, tenant_id)

    def _dismiss(data: Dict[str, Any]) -> bool:
        current = data.get("currentMigration")
        if current is None:
            return False
        if not is_terminal(current):
            raise StateError("Cannot dismiss a migration that is still in progress.")
        data["currentMigration"] = None
        return True

    return _compare_and_set(db, row, _dismiss)


def request_cancel(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> bool:
    """
    Cancel the running task.

    Before processing_data nothing has been imported, so the task fails right away
    (no cooldown). Once the importer owns it, the task is only flagged and the
    importer stops at the next chunk boundary.
    """
    now = now or utcnow()
    row = get_migration_settings(db, tenant_id)

    def _cancel(data: Dict[str, Any]) -> bool:
        current = data.get("currentMigration")
        if not is_active(current):
            return False
        current["cancelRequested"] = True
        if STATUS_ORDER.get(current.get("status"), 0) < STATUS_ORDER[STATUS_PROCESSING_DATA]:
            current["status"] = STATUS_FAILED
            current["error"] = CANCELLED_MESSAGE
            current["progress"] = {**(current.get("progress") or {}), "message": CANCELLED_MESSAGE}
            _finish(data, current, STATUS_FAILED, now)
        return True

    return _compare_and_set(db, row, _cancel)


def is_cancel_requested(db: Session, tenant_id: UUID, task_id: Optional[str] = None) -> bool:
    row = get_migration_settings(db, tenant_id)
    db.refresh(row)
    current = (row.data or {}).get("currentMigration")
    if current is None or (task_id is not None and current.get("id") != task_id):
        return False
    return bool(current.get("cancelRequested"))


def get_current_migration(db: Session, tenant_id: UUID) -> Optional[Dict[str, Any]]:
    row = get_migration_settings(db, tenant_id)
    return copy.deepcopy((row.data or {}).get("currentMigration"))


def get_migration_status(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
    row = get_migration_settings(db, tenant_id)
    data = row.data or _default_data()
    return {
        "currentMigration": copy.deepcopy(data.get("currentMigration")),
        "lastMigrationTimestamp": data.get("lastMigrationTimestamp"),
        "history": copy.deepcopy(data.get("history") or []),
        "cooldown": _cooldown_from_data(data, now or utcnow()).to_dict(),
    }


def get_migration_file_size_limit(tenant: Tenant) -> int:
    limit = tenant.migration_file_size_limit
    if limit is not None and limit > 0:
        return int(limit)
    return settings.MIGRATION_FILE_SIZE_LIMIT_BYTES
