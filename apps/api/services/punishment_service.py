"""
Live punishment reads and edits for the panel.

Punishments are append-only: a moderator action adds a modification event and the
effective state is always re-derived, never stored.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from models import Player
from services.migration_errors import ValidationError
from services.migration_validation import validate_modification_event
from services.player_merge import punishment_id
from services.punishment_state import (
    DURATION_CHANGE_TYPES,
    MODIFICATION_TYPES,
    annotate_punishment,
    state_for_punishment,
)
from services.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class PunishmentNotFound(LookupError):
    def __init__(self, resource: str, identifier: str):
        super().__init__(resource, identifier)
        self.resource = resource
        self.identifier = identifier


def get_player_row(db: Session, tenant_id: UUID, minecraft_uuid: str, *, for_update: bool = False) -> Optional[Player]:
    q = db.query(Player).filter(Player.tenant_id == tenant_id, Player.minecraft_uuid == minecraft_uuid)
    if for_update:
        q = q.with_for_update()
    return q.first()


def player_view(player: Player, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Player document with every punishment annotated with its effective state."""
    now = now or utcnow()
    doc = player.to_document()
    doc["punishments"] = [annotate_punishment(p, now) for p in doc["punishments"] if isinstance(p, dict)]
    return doc


def active_punishments(player: Player, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    return [
        annotate_punishment(p, now)
        for p in (player.punishments or [])
        if isinstance(p, dict) and state_for_punishment(p, now).effective_active
    ]


def add_modification(
    db: Session,
    tenant_id: UUID,
    minecraft_uuid: str,
    target_punishment_id: str,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Append one modification event to a punishment.

    Returns (event, annotated punishment). Raises ValidationError for a bad event
    and PunishmentNotFound when the player or punishment does not exist.
    """
    now = now or utcnow()
    event = validate_modification_event({**payload, "issued": format_timestamp(now)})
    if event["type"] not in MODIFICATION_TYPES:
        raise ValidationError(f"unknown modification type {event['type']}", field="type")
    if event["type"] in DURATION_CHANGE_TYPES and event["effectiveDuration"] is None:
        raise ValidationError("required for duration changes", field="effectiveDuration")

    player = get_player_row(db, tenant_id, minecraft_uuid, for_update=True)
    if player is None:
        raise PunishmentNotFound("Player", minecraft_uuid)

    punishments = copy.deepcopy(player.punishments or [])
    target = next((p for p in punishments if punishment_id(p) == target_punishment_id), None)
    if target is None:
        raise PunishmentNotFound("Punishment", target_punishment_id)

    target["modifications"] = list(target.get("modifications") or []) + [event]
    player.punishments = punishments
    db.commit()

    logger.info(
        "Punishment modification added",
        extra={
            "extra_fields": {
                "tenant_id": str(tenant_id),
                "punishment_id": target_punishment_id,
                "modification_type": event["type"],
            }
        },
    )
    return event, annotate_punishment(target, now)
