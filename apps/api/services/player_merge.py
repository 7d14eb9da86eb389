"""
Merge an imported player document into the stored one.

Per-field policy:
- usernames: union by value; incoming-only names appended in first-seen order
- notes: concatenated (a log, no identity)
- ipList: keyed by address; login lists unioned, deduplicated and sorted ascending,
  firstLogin is the earlier of the two, classification flags (country/region/asn/
  proxy/hosting) are only filled where the stored entry has none
- punishments: keyed by id; a known id is never duplicated, new ids are appended as-is
- data: shallow merge, incoming keys win

`merge_player_documents` is pure and does not raise on odd stored data: entries it
cannot interpret are carried through untouched.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from services.timestamps import format_timestamp, parse_timestamp


IP_CLASSIFICATION_FIELDS = ("country", "region", "asn", "proxy", "hosting")


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def punishment_id(punishment: Any) -> Optional[str]:
    if not isinstance(punishment, dict):
        return None
    pid = punishment.get("id", punishment.get("_id"))
    return str(pid) if pid is not None else None


def _normalize_logins(values: List[Any]) -> Tuple[List[datetime], List[Any]]:
    parsed = set()
    unreadable = []
    for value in values:
        dt = parse_timestamp(value)
        if dt is None:
            unreadable.append(value)
        else:
            # Logins are compared at the stored (millisecond) precision.
            parsed.add(parse_timestamp(format_timestamp(dt)))
    return sorted(parsed), unreadable


def merge_logins(existing: List[Any], incoming: List[Any]) -> List[Any]:
    """Sorted union of both login lists, one entry per instant."""
    instants, unreadable = _normalize_logins(_as_list(existing) + _as_list(incoming))
    merged: List[Any] = [format_timestamp(dt) for dt in instants]
    for value in unreadable:
        if value not in merged:
            merged.append(value)
    return merged


def _earliest(a: Any, b: Any) -> Any:
    da, db = parse_timestamp(a), parse_timestamp(b)
    if da is None:
        return format_timestamp(db) if db is not None else a
    if db is None:
        return format_timestamp(da)
    return format_timestamp(min(da, db))


def _is_absent(value: Any) -> bool:
    return value is None or value == ""


def merge_ip_entry(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(existing)
    merged["logins"] = merge_logins(existing.get("logins"), incoming.get("logins"))
    merged["firstLogin"] = _earliest(existing.get("firstLogin"), incoming.get("firstLogin"))
    # First writer wins so repeated imports cannot flap classification.
    for field in IP_CLASSIFICATION_FIELDS:
        if _is_absent(merged.get(field)) and not _is_absent(incoming.get(field)):
            merged[field] = incoming[field]
    return merged


def merge_ip_lists(existing: List[Any], incoming: List[Any]) -> List[Any]:
    merged: List[Any] = []
    positions: Dict[str, int] = {}
    for entry in _as_list(existing):
        merged.append(entry)
        if isinstance(entry, dict) and entry.get("ipAddress"):
            positions.setdefault(entry["ipAddress"], len(merged) - 1)

    for entry in _as_list(incoming):
        address = entry.get("ipAddress")
        pos = positions.get(address)
        if pos is None:
            merged.append(copy.deepcopy(entry))
            positions[address] = len(merged) - 1
        else:
            merged[pos] = merge_ip_entry(merged[pos], entry)
    return merged


def merge_usernames(existing: List[Any], incoming: List[Any]) -> List[Any]:
    merged = _as_list(existing)
    known = {u.get("username") for u in merged if isinstance(u, dict)}
    for entry in _as_list(incoming):
        name = entry.get("username")
        if name not in known:
            known.add(name)
            merged.append(dict(entry))
    return merged


def merge_punishments(existing: List[Any], incoming: List[Any]) -> List[Any]:
    merged = _as_list(existing)
    known = {pid for pid in (punishment_id(p) for p in merged) if pid is not None}
    for punishment in _as_list(incoming):
        pid = punishment_id(punishment)
        if pid is None or pid in known:
            continue
        known.add(pid)
        merged.append(copy.deepcopy(punishment))
    return merged


def merge_player_documents(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """
    Combine a stored player document (or None) with a validated incoming one.

    Returns the document to persist. With no stored document the incoming one is
    used as the new player.
    """
    if existing is None:
        new_player = copy.deepcopy(incoming)
        new_player.setdefault("pendingNotifications", [])
        return new_player

    merged = copy.deepcopy(existing)
    merged["usernames"] = merge_usernames(existing.get("usernames"), incoming.get("usernames"))
    merged["notes"] = _as_list(existing.get("notes")) + copy.deepcopy(_as_list(incoming.get("notes")))
    merged["ipList"] = merge_ip_lists(existing.get("ipList"), incoming.get("ipList"))
    merged["punishments"] = merge_punishments(existing.get("punishments"), incoming.get("punishments"))
    merged["data"] = {**_as_dict(existing.get("data")), **copy.deepcopy(_as_dict(incoming.get("data")))}
    return merged
