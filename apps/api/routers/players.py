"""
Player endpoints for the panel.

Punishments are returned with their derived effective state; nothing derived is stored.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import BadRequestError, NotFoundError
from core.tenancy import get_current_tenant
from models import Tenant
from schemas import ActivePunishmentsResponse, ModificationCreate, ModificationResponse, PlayerResponse
from services.migration_errors import ValidationError
from services.punishment_service import (
    PunishmentNotFound,
    active_punishments,
    add_modification,
    get_player_row,
    player_view,
)

router = APIRouter(prefix="/v1/players", tags=["players"])


@router.get("/{minecraft_uuid}", response_model=PlayerResponse)
def get_player(
    minecraft_uuid: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    player = get_player_row(db, tenant.id, minecraft_uuid)
    if not player:
        raise NotFoundError("Player", minecraft_uuid)
    return player_view(player)


@router.get("/{minecraft_uuid}/active-punishments", response_model=ActivePunishmentsResponse)
def get_active_punishments(
    minecraft_uuid: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    player = get_player_row(db, tenant.id, minecraft_uuid)
    if not player:
        raise NotFoundError("Player", minecraft_uuid)
    return {"minecraftUuid": minecraft_uuid, "punishments": active_punishments(player)}


@router.post(
    "/{minecraft_uuid}/punishments/{punishment_id}/modifications",
    response_model=ModificationResponse,
)
def create_modification(
    minecraft_uuid: str,
    punishment_id: str,
    body: ModificationCreate,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Append a modification event (pardon, duration change, ...) to a punishment."""
    try:
        event, punishment = add_modification(
            db, tenant.id, minecraft_uuid, punishment_id, body.model_dump(exclude_none=True)
        )
    except ValidationError as e:
        raise BadRequestError(str(e), error_code="INVALID_MODIFICATION")
    except PunishmentNotFound as e:
        raise NotFoundError(e.resource, e.identifier)
    return {"success": True, "modification": event, "punishment": punishment}
