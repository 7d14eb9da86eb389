"""
Tenant-scoped player store.

Wraps the Player table with the three capabilities the import pipeline needs:
find-by-ids, unordered bulk write (mixed insert/update) and count.

Unordered means each operation runs in its own SAVEPOINT: a constraint violation
on one operation rolls back only that operation and is reported in the result.
Connection-level failures abort the whole write and surface as TransportError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, IntegrityError, DataError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from models import Player
from services.migration_errors import TransportError

logger = logging.getLogger(__name__)

# Document field -> Player column
DOCUMENT_COLUMNS = {
    "usernames": "usernames",
    "notes": "notes",
    "ipList": "ip_list",
    "punishments": "punishments",
    "pendingNotifications": "pending_notifications",
    "data": "data",
}


@dataclass(frozen=True)
class InsertOne:
    document: Dict[str, Any]

    @property
    def minecraft_uuid(self) -> str:
        return self.document["minecraftUuid"]


@dataclass(frozen=True)
class UpdateOne:
    minecraft_uuid: str
    fields: Dict[str, Any]


WriteOp = Union[InsertOne, UpdateOne]


@dataclass
class WriteError:
    index: int
    minecraft_uuid: str
    message: str


@dataclass
class BulkWriteResult:
    inserted_count: int = 0
    modified_count: int = 0
    write_errors: List[WriteError] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.write_errors)


def _is_transport_failure(exc: DBAPIError) -> bool:
    return isinstance(exc, (OperationalError, InterfaceError)) or bool(getattr(exc, "connection_invalidated", False))


class PlayerStore:
    def __init__(self, db: Session, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    def _query(self):
        return self.db.query(Player).filter(Player.tenant_id == self.tenant_id)

    def find_by_uuids(self, minecraft_uuids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Stored documents keyed by minecraft uuid (missing ids are simply absent)."""
        ids = list(dict.fromkeys(minecraft_uuids))
        if not ids:
            return {}
        try:
            rows = self._query().filter(Player.minecraft_uuid.in_(ids)).all()
        except DBAPIError as e:
            raise TransportError(f"Player lookup failed: {e.orig or e}") from e
        return {row.minecraft_uuid: row.to_document() for row in rows}

    def get(self, minecraft_uuid: str):
        return self._query().filter(Player.minecraft_uuid == minecraft_uuid).first()

    def count(self) -> int:
        try:
            return int(self.db.query(func.count(Player.id)).filter(Player.tenant_id == self.tenant_id).scalar() or 0)
        except DBAPIError as e:
            raise TransportError(f"Player count failed: {e.orig or e}") from e

    def _apply(self, op: WriteOp) -> str:
        if isinstance(op, InsertOne):
            doc = op.document
            row = Player(tenant_id=self.tenant_id, minecraft_uuid=doc["minecraftUuid"])
            for doc_field, column in DOCUMENT_COLUMNS.items():
                setattr(row, column, doc.get(doc_field) or ([] if doc_field != "data" else {}))
            self.db.add(row)
            self.db.flush()
            return "inserted"

        row = self.get(op.minecraft_uuid)
        if row is None:
            raise LookupError(f"player {op.minecraft_uuid} not found for update")
        for doc_field, value in op.fields.items():
            setattr(row, DOCUMENT_COLUMNS[doc_field], value)
        self.db.flush()
        return "modified"

    def bulk_write(self, ops: List[WriteOp]) -> BulkWriteResult:
        """
        Apply every operation independently, then commit once.

        Per-operation failures land in `write_errors`; a transport failure raises
        TransportError and nothing from this call is committed.
        """
        result = BulkWriteResult()
        try:
            for i, op in enumerate(ops):
                try:
                    with self.db.begin_nested():
                        outcome = self._apply(op)
                except (IntegrityError, DataError, LookupError) as e:
                    message = str(getattr(e, "orig", None) or e)[:500]
                    result.write_errors.append(WriteError(index=i, minecraft_uuid=op.minecraft_uuid, message=message))
                    continue
                if outcome == "inserted":
                    result.inserted_count += 1
                else:
                    result.modified_count += 1
            self.db.commit()
        except DBAPIError as e:
            self.db.rollback()
            if _is_transport_failure(e):
                raise TransportError(f"Bulk write failed: {e.orig or e}") from e
            raise
        return result
