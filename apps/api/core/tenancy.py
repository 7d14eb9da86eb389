"""
Tenant resolution.

Every panel and game-server request names its tenant (server) in the
`X-Server-Name` header. Authentication happens in front of this service.
"""
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional

from core.database import get_db
from models import Tenant


def get_current_tenant(
    x_server_name: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Tenant:
    """
    Resolve the tenant named by the X-Server-Name header.

    Raises 400 if the header is missing, 404 if no such tenant exists.
    """
    slug = (x_server_name or "").strip().lower()
    if not slug:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Server-Name header",
        )

    tenant = db.query(Tenant).filter(Tenant.slug == slug).first()
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server not found: {slug}",
        )
    return tenant
