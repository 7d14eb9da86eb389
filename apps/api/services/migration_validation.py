"""
Per-record validation and sanitization of imported player records.

`validate_player_record(raw, index)` turns one element of the export's `players`
array into a bounded player document, or raises ValidationError naming the field
and the record index. It does no I/O.

Rules:
- strings are trimmed and length-capped
- identifier-like strings (ids, usernames, issuer names, type tags) may not start
  with the store operator prefix "$"; free text (notes, reasons, evidence) is kept verbatim
- object keys starting with "$" and the keys __proto__ / constructor / prototype are
  dropped at every depth of free-form maps
- instants must fall in [1970, 2100]; durations are >= 0 or the permanent markers 0 / -1
- booleans accept true/false or the strings "true"/"false"
- IPs are dotted quads with octets in [0, 255]
- every array is capped by class
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from services.migration_errors import ValidationError
from services.timestamps import format_timestamp, parse_timestamp


OPERATOR_PREFIX = "$"
FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})
IP_ADDRESS_REGEX = re.compile(r"(?:[0-9]{1,3}\.){3}[0-9]{1,3}")

MIN_YEAR = 1970
MAX_YEAR = 2100
PERMANENT_DURATIONS = (0, -1)
MAX_DURATION_MS = 100 * 365 * 24 * 60 * 60 * 1000  # 100 years

# Array caps
MAX_USERNAMES = 1_000
MAX_NOTES = 10_000
MAX_IP_ENTRIES = 10_000
MAX_LOGINS_PER_IP = 100_000
MAX_PUNISHMENTS = 50_000
MAX_PUNISHMENT_NOTES = 10_000
MAX_EVIDENCE = 10_000
MAX_MODIFICATIONS = 10_000
MAX_ATTACHED_TICKETS = 1_000

# String caps
MAX_ID_LENGTH = 64
MAX_USERNAME_LENGTH = 64
MAX_ISSUER_LENGTH = 128
MAX_TYPE_LENGTH = 64
MAX_TEXT_LENGTH = 10_000
MAX_GEO_LENGTH = 128
MAX_KEY_LENGTH = 256
MAX_METADATA_DEPTH = 16

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]


class _Ctx:
    """Carries the record index so every helper can name it in errors."""

    def __init__(self, index: Optional[int]):
        self.index = index

    def fail(self, field: str, message: str) -> ValidationError:
        return ValidationError(message, field=field, index=self.index)


def _is_dropped_key(key: str) -> bool:
    return key in FORBIDDEN_KEYS or key.startswith(OPERATOR_PREFIX)


def sanitize_value(value: Any, _depth: int = 0) -> JsonValue:
    """
    Reduce an arbitrary decoded value to the JSON value union.

    Dangerous keys are dropped (not rejected) at every depth; non-finite floats
    become None; anything past MAX_METADATA_DEPTH is cut off.
    """
    if _depth > MAX_METADATA_DEPTH:
        return None
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item, _depth + 1) for item in value]
    if isinstance(value, dict):
        out: Dict[str, JsonValue] = {}
        for key, item in value.items():
            if not isinstance(key, str) or _is_dropped_key(key) or len(key) > MAX_KEY_LENGTH:
                continue
            out[key] = sanitize_value(item, _depth + 1)
        return out
    return None


def sanitize_map(value: Any, ctx: _Ctx, field: str) -> Dict[str, JsonValue]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ctx.fail(field, "must be an object")
    return sanitize_value(value)


def sanitize_string(
    value: Any,
    ctx: _Ctx,
    field: str,
    max_length: int,
    *,
    allow_operator_prefix: bool = False,
    allow_empty: bool = False,
) -> str:
    if not isinstance(value, str):
        raise ctx.fail(field, "must be a string")
    trimmed = value.strip()
    if len(trimmed) > max_length:
        raise ctx.fail(field, f"exceeds maximum length of {max_length}")
    if not allow_operator_prefix and trimmed.startswith(OPERATOR_PREFIX):
        raise ctx.fail(field, "contains invalid characters")
    if not trimmed and not allow_empty:
        raise ctx.fail(field, "must not be empty")
    return trimmed


def optional_string(value: Any, ctx: _Ctx, field: str, max_length: int, **kwargs) -> Optional[str]:
    if value is None:
        return None
    return sanitize_string(value, ctx, field, max_length, **kwargs) or None


def validate_date(value: Any, ctx: _Ctx, field: str) -> datetime:
    if value is None or value == "":
        raise ctx.fail(field, "is required")
    dt = parse_timestamp(value)
    if dt is None:
        raise ctx.fail(field, "is not a valid date")
    if dt.year < MIN_YEAR or dt.year > MAX_YEAR:
        raise ctx.fail(field, f"is out of valid range ({MIN_YEAR}-{MAX_YEAR})")
    return dt


def optional_date(value: Any, ctx: _Ctx, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return validate_date(value, ctx, field)


def validate_number(value: Any, ctx: _Ctx, field: str, minimum: Optional[float] = None) -> float:
    if isinstance(value, bool):
        raise ctx.fail(field, "must be a valid number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ctx.fail(field, "must be a valid number") from None
    if not isinstance(value, (int, float)) or isinstance(value, float) and not math.isfinite(value):
        raise ctx.fail(field, "must be a valid number")
    if minimum is not None and value < minimum:
        raise ctx.fail(field, f"must be at least {minimum:g}")
    return value


def validate_duration(value: Any, ctx: _Ctx, field: str) -> Optional[int]:
    """Milliseconds; 0 and -1 are the permanent markers."""
    if value is None:
        return None
    num = int(validate_number(value, ctx, field))
    if num in PERMANENT_DURATIONS:
        return num
    if num < 0:
        raise ctx.fail(field, "must be at least 0 (or -1 for permanent)")
    if num > MAX_DURATION_MS:
        raise ctx.fail(field, f"must be at most {MAX_DURATION_MS}")
    return num


def validate_boolean(value: Any, ctx: _Ctx, field: str, default: Optional[bool] = None) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lower = value.strip().lower()
        if lower == "true":
            return True
        if lower == "false":
            return False
    raise ctx.fail(field, "must be a boolean")


def validate_ip_address(value: Any, ctx: _Ctx, field: str) -> str:
    if not isinstance(value, str):
        raise ctx.fail(field, "must be a string")
    ip = value.strip()
    if not IP_ADDRESS_REGEX.fullmatch(ip):
        raise ctx.fail(field, "is not a valid IP address")
    if any(int(octet) > 255 for octet in ip.split(".")):
        raise ctx.fail(field, "contains invalid octets")
    return ip


def validate_array(value: Any, ctx: _Ctx, field: str, max_length: int, *, required: bool = False) -> List[Any]:
    if value is None and not required:
        return []
    if not isinstance(value, list):
        raise ctx.fail(field, "must be an array")
    if len(value) > max_length:
        raise ctx.fail(field, f"exceeds maximum length of {max_length}")
    return value


def _require_object(value: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ctx.fail(field, "must be an object")
    return value


def _each(items: List[Any], field: str, fn: Callable[[Any, str], Any]) -> List[Any]:
    return [fn(item, f"{field}[{i}]") for i, item in enumerate(items)]


# --- record sections -------------------------------------------------------


def _username(raw: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    obj = _require_object(raw, ctx, field)
    return {
        "username": sanitize_string(obj.get("username"), ctx, f"{field}.username", MAX_USERNAME_LENGTH),
        "date": format_timestamp(optional_date(obj.get("date"), ctx, f"{field}.date")),
    }


def _note(raw: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    if isinstance(raw, str):
        raw = {"text": raw}
    obj = _require_object(raw, ctx, field)
    return {
        "text": sanitize_string(
            obj.get("text"), ctx, f"{field}.text", MAX_TEXT_LENGTH, allow_operator_prefix=True
        ),
        "date": format_timestamp(optional_date(obj.get("date"), ctx, f"{field}.date")),
        "issuerName": optional_string(obj.get("issuerName"), ctx, f"{field}.issuerName", MAX_ISSUER_LENGTH),
    }


def _ip_entry(raw: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    obj = _require_object(raw, ctx, field)
    logins_raw = validate_array(obj.get("logins"), ctx, f"{field}.logins", MAX_LOGINS_PER_IP)
    logins = sorted(
        {validate_date(v, ctx, f"{field}.logins[{i}]") for i, v in enumerate(logins_raw)}
    )
    first_login = optional_date(obj.get("firstLogin"), ctx, f"{field}.firstLogin")
    if logins and (first_login is None or logins[0] < first_login):
        first_login = logins[0]

    asn = obj.get("asn")
    if isinstance(asn, int) and not isinstance(asn, bool):
        asn = f"AS{asn}"

    return {
        "ipAddress": validate_ip_address(obj.get("ipAddress"), ctx, f"{field}.ipAddress"),
        "country": optional_string(obj.get("country"), ctx, f"{field}.country", MAX_GEO_LENGTH),
        "region": optional_string(obj.get("region"), ctx, f"{field}.region", MAX_GEO_LENGTH),
        "asn": optional_string(asn, ctx, f"{field}.asn", MAX_GEO_LENGTH),
        "proxy": validate_boolean(obj.get("proxy"), ctx, f"{field}.proxy"),
        "hosting": validate_boolean(obj.get("hosting"), ctx, f"{field}.hosting"),
        "firstLogin": format_timestamp(first_login),
        "logins": [format_timestamp(dt) for dt in logins],
    }


def _modification(raw: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    obj = _require_object(raw, ctx, field)
    return {
        "type": sanitize_string(obj.get("type"), ctx, f"{field}.type", MAX_TYPE_LENGTH).upper(),
        "issuerName": optional_string(obj.get("issuerName"), ctx, f"{field}.issuerName", MAX_ISSUER_LENGTH),
        "issued": format_timestamp(validate_date(obj.get("issued"), ctx, f"{field}.issued")),
        "effectiveDuration": validate_duration(obj.get("effectiveDuration"), ctx, f"{field}.effectiveDuration"),
        "reason": optional_string(
            obj.get("reason"), ctx, f"{field}.reason", MAX_TEXT_LENGTH, allow_operator_prefix=True
        ),
        "appealTicketId": optional_string(obj.get("appealTicketId"), ctx, f"{field}.appealTicketId", MAX_ID_LENGTH),
    }


def _evidence(raw: Any, ctx: _Ctx, field: str) -> JsonValue:
    if isinstance(raw, str):
        return sanitize_string(raw, ctx, field, MAX_TEXT_LENGTH, allow_operator_prefix=True)
    return sanitize_map(raw, ctx, field)


def _punishment(raw: Any, ctx: _Ctx, field: str) -> Dict[str, Any]:
    obj = _require_object(raw, ctx, field)
    punishment_id = obj.get("_id", obj.get("id"))
    if isinstance(punishment_id, int) and not isinstance(punishment_id, bool):
        punishment_id = str(punishment_id)

    notes = validate_array(obj.get("notes"), ctx, f"{field}.notes", MAX_PUNISHMENT_NOTES)
    evidence = validate_array(obj.get("evidence"), ctx, f"{field}.evidence", MAX_EVIDENCE)
    tickets = validate_array(obj.get("attachedTicketIds"), ctx, f"{field}.attachedTicketIds", MAX_ATTACHED_TICKETS)
    modifications = validate_array(obj.get("modifications"), ctx, f"{field}.modifications", MAX_MODIFICATIONS)

    return {
        "id": sanitize_string(punishment_id, ctx, f"{field}.id", MAX_ID_LENGTH),
        "type": optional_string(obj.get("type"), ctx, f"{field}.type", MAX_TYPE_LENGTH),
        "type_ordinal": int(validate_number(obj.get("type_ordinal"), ctx, f"{field}.type_ordinal", minimum=0)),
        "issuerName": sanitize_string(obj.get("issuerName"), ctx, f"{field}.issuerName", MAX_ISSUER_LENGTH),
        "issued": format_timestamp(validate_date(obj.get("issued"), ctx, f"{field}.issued")),
        "started": format_timestamp(optional_date(obj.get("started"), ctx, f"{field}.started")),
        "duration": validate_duration(obj.get("duration"), ctx, f"{field}.duration"),
        "reason": optional_string(
            obj.get("reason"), ctx, f"{field}.reason", MAX_TEXT_LENGTH, allow_operator_prefix=True
        ),
        "notes": _each(notes, f"{field}.notes", lambda v, f: _note(v, ctx, f)),
        "evidence": _each(evidence, f"{field}.evidence", lambda v, f: _evidence(v, ctx, f)),
        "attachedTicketIds": _each(
            tickets, f"{field}.attachedTicketIds", lambda v, f: sanitize_string(v, ctx, f, MAX_ID_LENGTH)
        ),
        "modifications": _each(modifications, f"{field}.modifications", lambda v, f: _modification(v, ctx, f)),
        "data": sanitize_map(obj.get("data"), ctx, f"{field}.data"),
    }


def validate_player_record(raw: Any, index: Optional[int] = None) -> Dict[str, Any]:
    """
    Validate one raw player record from an import file.

    Returns the player document to merge/persist. Raises ValidationError on the
    first offending field; the caller skips the record and moves on.
    """
    ctx = _Ctx(index)
    if not isinstance(raw, dict):
        raise ctx.fail("record", "must be an object")

    usernames = validate_array(raw.get("usernames"), ctx, "usernames", MAX_USERNAMES)
    notes = validate_array(raw.get("notes"), ctx, "notes", MAX_NOTES)
    ip_list = validate_array(raw.get("ipList"), ctx, "ipList", MAX_IP_ENTRIES)
    punishments = validate_array(raw.get("punishments"), ctx, "punishments", MAX_PUNISHMENTS)

    player = {
        "minecraftUuid": sanitize_string(raw.get("minecraftUuid"), ctx, "minecraftUuid", MAX_ID_LENGTH),
        "usernames": _each(usernames, "usernames", lambda v, f: _username(v, ctx, f)),
        "notes": _each(notes, "notes", lambda v, f: _note(v, ctx, f)),
        "ipList": _each(ip_list, "ipList", lambda v, f: _ip_entry(v, ctx, f)),
        "punishments": _each(punishments, "punishments", lambda v, f: _punishment(v, ctx, f)),
        "data": sanitize_map(raw.get("data"), ctx, "data"),
    }
    return _collapse_duplicates(player)


def _collapse_duplicates(player: Dict[str, Any]) -> Dict[str, Any]:
    """A validated record holds each username, IP address and punishment id once."""
    from services.player_merge import merge_ip_entry

    seen_names = set()
    usernames = []
    for entry in player["usernames"]:
        if entry["username"] not in seen_names:
            seen_names.add(entry["username"])
            usernames.append(entry)

    ips: Dict[str, Dict[str, Any]] = {}
    for entry in player["ipList"]:
        current = ips.get(entry["ipAddress"])
        ips[entry["ipAddress"]] = entry if current is None else merge_ip_entry(current, entry)

    seen_ids = set()
    punishments = []
    for entry in player["punishments"]:
        if entry["id"] not in seen_ids:
            seen_ids.add(entry["id"])
            punishments.append(entry)

    player["usernames"] = usernames
    player["ipList"] = list(ips.values())
    player["punishments"] = punishments
    return player


def validate_modification_event(raw: Any) -> Dict[str, Any]:
    """Validate a single modification event posted by a live moderation action."""
    return _modification(raw, _Ctx(None), "modification")
