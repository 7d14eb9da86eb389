"""
Batch executor: drives validated player records into the tenant store chunk by chunk.

For each chunk (MIGRATION_BATCH_SIZE records, processed sequentially):
1. validate every raw record; a ValidationError skips that record
2. load the stored documents for the chunk's ids in one lookup
3. merge each record into its stored document (records repeating an id inside the
   chunk are folded together first)
4. one unordered bulk write of inserts/updates; per-operation failures are skipped

Committed chunks stay committed if a later chunk fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.config import settings
from services.migration_errors import MigrationCancelled, ValidationError
from services.migration_validation import validate_player_record
from services.player_merge import merge_player_documents
from services.player_store import DOCUMENT_COLUMNS, InsertOne, PlayerStore, UpdateOne, WriteOp

logger = logging.getLogger(__name__)

# (processed, skipped, total) -> None
ProgressCallback = Callable[[int, int, int], None]


@dataclass
class BatchStats:
    processed: int = 0
    skipped: int = 0
    total: int = 0
    inserted: int = 0
    updated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "recordsProcessed": self.processed,
            "recordsSkipped": self.skipped,
            "totalRecords": self.total,
            "inserted": self.inserted,
            "updated": self.updated,
        }


class MigrationBatchExecutor:
    def __init__(
        self,
        store: PlayerStore,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        batch_size: Optional[int] = None,
        progress_interval: Optional[int] = None,
    ):
        self.store = store
        self.on_progress = on_progress
        self.should_cancel = should_cancel
        self.batch_size = max(1, batch_size or settings.MIGRATION_BATCH_SIZE)
        self.progress_interval = max(1, progress_interval or settings.MIGRATION_PROGRESS_INTERVAL)
        self.stats = BatchStats()
        self._last_reported = 0

    def run(self, records: Sequence[Any]) -> BatchStats:
        self.stats = BatchStats(total=len(records))
        self._last_reported = 0

        for start in range(0, len(records), self.batch_size):
            if self.should_cancel is not None and self.should_cancel():
                logger.info(f"Migration cancelled after {self.stats.processed} records")
                raise MigrationCancelled()

            chunk = records[start:start + self.batch_size]
            self._process_chunk(chunk, offset=start)

            is_last = start + self.batch_size >= len(records)
            self._maybe_report(force=is_last)

        return self.stats

    def _maybe_report(self, force: bool = False) -> None:
        if self.on_progress is None:
            return
        seen = self.stats.processed + self.stats.skipped
        if force or seen - self._last_reported >= self.progress_interval:
            self._last_reported = seen
            self.on_progress(self.stats.processed, self.stats.skipped, self.stats.total)

    def _process_chunk(self, chunk: Sequence[Any], offset: int) -> None:
        # uuid -> validated incoming document, and how many input records it stands for
        incoming: Dict[str, Dict[str, Any]] = {}
        record_counts: Dict[str, int] = {}

        for i, raw in enumerate(chunk):
            try:
                document = validate_player_record(raw, index=offset + i)
            except ValidationError as e:
                self.stats.skipped += 1
                logger.warning(f"Skipping player record: {e}")
                continue

            uuid = document["minecraftUuid"]
            if uuid in incoming:
                incoming[uuid] = merge_player_documents(incoming[uuid], document)
                record_counts[uuid] += 1
            else:
                incoming[uuid] = document
                record_counts[uuid] = 1

        if not incoming:
            return

        existing = self.store.find_by_uuids(incoming.keys())

        ops: List[WriteOp] = []
        for uuid, document in incoming.items():
            stored = existing.get(uuid)
            merged = merge_player_documents(stored, document)
            if stored is None:
                ops.append(InsertOne(merged))
            else:
                fields = {k: merged[k] for k in DOCUMENT_COLUMNS if k in merged and merged[k] != stored.get(k)}
                ops.append(UpdateOne(uuid, fields))

        result = self.store.bulk_write(ops)

        failed = {err.minecraft_uuid for err in result.write_errors}
        for err in result.write_errors:
            logger.warning(f"Player write failed for record {err.minecraft_uuid}: {err.message}")

        for uuid, count in record_counts.items():
            if uuid in failed:
                self.stats.skipped += count
            else:
                self.stats.processed += count
        self.stats.inserted += result.inserted_count
        self.stats.updated += result.modified_count
