"""
Error taxonomy for the bulk import pipeline.

- InputError: the import file itself is unusable (fatal to the migration)
- ValidationError: one player record is unusable (record skipped, migration continues)
- TransportError: the store failed mid-batch (fatal; written chunks are kept)
- StateError: a start request was rejected before any processing
"""

from __future__ import annotations

from typing import Optional


class MigrationError(Exception):
    """Base class for import pipeline errors."""


class InputError(MigrationError):
    """Malformed, oversized or structurally hostile import file."""


class ValidationError(MigrationError):
    """A single record failed validation. Carries the offending field and record index."""

    def __init__(self, message: str, field: Optional[str] = None, index: Optional[int] = None):
        self.field = field
        self.index = index
        self.reason = message
        prefix = f"player[{index}]" if index is not None else "record"
        if field:
            prefix = f"{prefix}.{field}"
        super().__init__(f"{prefix}: {message}")


class TransportError(MigrationError):
    """The tenant store could not be reached or aborted a whole chunk."""


class StateError(MigrationError):
    """A migration state transition was rejected."""


class AlreadyRunning(StateError):
    def __init__(self, message: str = "A migration is already in progress."):
        super().__init__(message)


class OnCooldown(StateError):
    def __init__(self, remaining_ms: int):
        self.remaining_ms = int(remaining_ms)
        hours = max(1, -(-self.remaining_ms // (60 * 60 * 1000)))
        super().__init__(
            f"Migration is on cooldown. Please wait {hours} hour(s) before starting another migration."
        )


class MigrationCancelled(MigrationError):
    def __init__(self, message: str = "Migration cancelled"):
        super().__init__(message)
