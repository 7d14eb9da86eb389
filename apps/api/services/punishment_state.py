"""
Punishment effective-state deriver.

A punishment's base fields are never rewritten; edits are appended as modification
events. `derive_punishment_state` folds those events over the base fields and is the
only place that decides whether a punishment is currently active. It is pure: the
same inputs (including `now`) always give the same output.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from services.timestamps import format_timestamp, parse_timestamp, utcnow

MANUAL_PARDON = "MANUAL_PARDON"
APPEAL_ACCEPT = "APPEAL_ACCEPT"
APPEAL_REJECT = "APPEAL_REJECT"
MANUAL_DURATION_CHANGE = "MANUAL_DURATION_CHANGE"
APPEAL_DURATION_CHANGE = "APPEAL_DURATION_CHANGE"
SET_ALT_BLOCKING_TRUE = "SET_ALT_BLOCKING_TRUE"
SET_ALT_BLOCKING_FALSE = "SET_ALT_BLOCKING_FALSE"
SET_WIPING_TRUE = "SET_WIPING_TRUE"
SET_WIPING_FALSE = "SET_WIPING_FALSE"

PARDON_TYPES = frozenset({MANUAL_PARDON, APPEAL_ACCEPT})
DURATION_CHANGE_TYPES = frozenset({MANUAL_DURATION_CHANGE, APPEAL_DURATION_CHANGE})
MODIFICATION_TYPES = frozenset(
    {
        MANUAL_PARDON,
        APPEAL_ACCEPT,
        APPEAL_REJECT,
        MANUAL_DURATION_CHANGE,
        APPEAL_DURATION_CHANGE,
        SET_ALT_BLOCKING_TRUE,
        SET_ALT_BLOCKING_FALSE,
        SET_WIPING_TRUE,
        SET_WIPING_FALSE,
    }
)


@dataclass(frozen=True)
class PunishmentState:
    effective_active: bool
    effective_expiry: Optional[datetime]
    effective_duration: Optional[int]
    has_modifications: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effectiveActive": self.effective_active,
            "effectiveExpiry": format_timestamp(self.effective_expiry),
            "effectiveDuration": self.effective_duration,
            "hasModifications": self.has_modifications,
        }


def _duration_ms(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _add_ms(base: datetime, ms: int) -> Optional[datetime]:
    """base + ms, or None when the result is past datetime.max (never expires)."""
    try:
        return base + timedelta(milliseconds=ms)
    except OverflowError:
        return None


def _sorted_events(modifications: Sequence[Any]) -> List[Dict[str, Any]]:
    # Stable sort: events with equal (or unreadable) issued times keep their list order.
    indexed = [
        (parse_timestamp(m.get("issued")), i, m)
        for i, m in enumerate(modifications or [])
        if isinstance(m, dict)
    ]
    indexed.sort(key=lambda t: (t[0] is None, t[0] or datetime.min, t[1]))
    return [m for _, _, m in indexed]


def derive_punishment_state(
    original_active: bool,
    original_expiry: Optional[datetime],
    original_duration: Optional[int],
    started: Optional[datetime],
    modifications: Sequence[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> PunishmentState:
    """
    Fold modification events (oldest first) over the base fields.

    - pardon / appeal-accept: inactive, and no later event can re-activate it
    - duration change to d ms: expiry = event issued + d; d <= 0 is permanent
      (no expiry, active)
    - other event types leave active/expiry unchanged

    An expiry in the past always wins over a stale active flag.
    """
    now = now or utcnow()
    active = bool(original_active)
    expiry = original_expiry
    duration = original_duration
    if expiry is None and started is not None and duration is not None and duration > 0:
        expiry = _add_ms(started, duration)

    events = _sorted_events(modifications)
    pardoned = False
    for event in events:
        if pardoned:
            break
        event_type = str(event.get("type") or "").upper()
        if event_type in PARDON_TYPES:
            active = False
            pardoned = True
        elif event_type in DURATION_CHANGE_TYPES:
            new_duration = _duration_ms(event.get("effectiveDuration"))
            issued = parse_timestamp(event.get("issued"))
            if new_duration is None or issued is None:
                continue
            duration = new_duration
            if new_duration <= 0:
                expiry = None
                active = True
            else:
                expiry = _add_ms(issued, new_duration)
                active = expiry is None or expiry > now

    if active and expiry is not None and expiry <= now:
        active = False

    return PunishmentState(
        effective_active=active,
        effective_expiry=expiry,
        effective_duration=duration,
        has_modifications=bool(events),
    )


def punishment_base_fields(punishment: Dict[str, Any]) -> Dict[str, Any]:
    """Read the base fields the deriver needs from a stored punishment document."""
    data = punishment.get("data") if isinstance(punishment.get("data"), dict) else {}

    active = data.get("active", punishment.get("active"))
    if not isinstance(active, bool):
        active = True

    duration = _duration_ms(punishment.get("duration"))
    if duration is None:
        duration = _duration_ms(data.get("duration"))

    return {
        "original_active": active,
        "original_expiry": parse_timestamp(data.get("expires", punishment.get("expires"))),
        "original_duration": duration,
        "started": parse_timestamp(punishment.get("started")),
    }


def state_for_punishment(punishment: Dict[str, Any], now: Optional[datetime] = None) -> PunishmentState:
    return derive_punishment_state(
        modifications=punishment.get("modifications") or [],
        now=now,
        **punishment_base_fields(punishment),
    )


def annotate_punishment(punishment: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    annotated = dict(punishment)
    annotated.update(state_for_punishment(punishment, now).to_dict())
    return annotated
