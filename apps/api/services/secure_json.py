"""
Bounds-checked JSON decoding for untrusted import files.

The decoded document is walked once (iteratively, no recursion) and rejected if
any string, array or nesting level exceeds its cap. Nothing downstream ever sees
an unbounded structure. Key filtering (prototype / operator keys) is the
sanitizer's job, not this module's.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from core.config import settings
from services.migration_errors import InputError


@dataclass(frozen=True)
class JSONLimits:
    max_bytes: int
    max_array_length: int
    max_string_length: int
    max_nesting_depth: int

    @classmethod
    def from_settings(cls) -> "JSONLimits":
        return cls(
            max_bytes=settings.IMPORT_MAX_JSON_BYTES,
            max_array_length=settings.IMPORT_MAX_ARRAY_LENGTH,
            max_string_length=settings.IMPORT_MAX_STRING_LENGTH,
            max_nesting_depth=settings.IMPORT_MAX_NESTING_DEPTH,
        )


def _reject_constant(name: str) -> Any:
    raise InputError(f"Invalid JSON format: unsupported constant {name}")


def _decode(raw: bytes) -> Any:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputError(f"Invalid JSON format: file is not valid UTF-8 ({e.reason})") from e
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid JSON format: {e.msg} (line {e.lineno}, column {e.colno})") from e
    except RecursionError as e:
        raise InputError("JSON nesting depth exceeds what the decoder can handle") from e


def validate_structure(value: Any, limits: JSONLimits) -> None:
    """Walk a decoded document and enforce the depth, array and string caps."""
    stack: List[Tuple[Any, int]] = [(value, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > limits.max_nesting_depth:
            raise InputError(
                f"JSON nesting depth exceeds maximum allowed depth of {limits.max_nesting_depth}"
            )
        if isinstance(node, str):
            if len(node) > limits.max_string_length:
                raise InputError(
                    f"String length {len(node)} exceeds maximum allowed length of {limits.max_string_length}"
                )
        elif isinstance(node, list):
            if len(node) > limits.max_array_length:
                raise InputError(
                    f"Array length {len(node)} exceeds maximum allowed length of {limits.max_array_length}"
                )
            stack.extend((item, depth + 1) for item in node)
        elif isinstance(node, dict):
            for key, item in node.items():
                if len(key) > limits.max_string_length:
                    raise InputError(
                        f"Object key length {len(key)} exceeds maximum allowed length of {limits.max_string_length}"
                    )
                stack.append((item, depth + 1))


def parse_secure_json_bytes(raw: bytes, limits: Optional[JSONLimits] = None) -> Any:
    limits = limits or JSONLimits.from_settings()
    if len(raw) > limits.max_bytes:
        raise InputError(f"JSON size {len(raw)} exceeds maximum allowed size of {limits.max_bytes}")
    parsed = _decode(raw)
    validate_structure(parsed, limits)
    return parsed


def parse_secure_json(path: Path, limits: Optional[JSONLimits] = None) -> Any:
    """
    Decode the import file at `path`.

    Raises InputError if the file is missing, oversized, malformed, or breaks any cap.
    """
    limits = limits or JSONLimits.from_settings()
    path = Path(path)
    try:
        size = path.stat().st_size
    except OSError as e:
        raise InputError(f"Migration file is not readable: {e.strerror or e}") from e
    if size > limits.max_bytes:
        raise InputError(f"File size {size} exceeds maximum allowed size of {limits.max_bytes}")
    return parse_secure_json_bytes(path.read_bytes(), limits)


def require_players_array(document: Any) -> List[Any]:
    """Top-level shape check: an object carrying a `players` array."""
    if not isinstance(document, dict):
        raise InputError("Invalid JSON structure")
    players = document.get("players")
    if not isinstance(players, list):
        raise InputError('Missing or invalid "players" array')
    return players
