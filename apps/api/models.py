from sqlalchemy import Column, Integer, BigInteger, DateTime, ForeignKey, Text, JSON, Uuid, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid


# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Tenant(Base):
    """
    One isolated customer instance (a game server network).

    Resolved per request from the server-name header; every tenant-owned row
    carries tenant_id.
    """
    __tablename__ = "tenant"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    slug = Column(Text, unique=True, nullable=False)
    name = Column(Text, nullable=True)

    # Per-tenant upload ceiling; NULL or <= 0 means use MIGRATION_FILE_SIZE_LIMIT_BYTES.
    migration_file_size_limit = Column(BigInteger, nullable=True)


class Player(Base):
    """
    Durable per-player identity document.

    The list columns are append/merge-only JSON documents:
    - usernames: [{"username", "date"}] in first-seen order
    - notes: [{"text", "date", "issuerName"}]
    - ip_list: [{"ipAddress", "country", "region", "asn", "proxy", "hosting", "firstLogin", "logins"}]
    - punishments: [{"id", "type_ordinal", "issuerName", "issued", "started", "modifications", ...}]
    - data: free-form metadata map (sanitized before every write)

    Rows are never hard-deleted.
    """
    __tablename__ = "player"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenant.id"), nullable=False, index=True)
    minecraft_uuid = Column(Text, nullable=False)

    usernames = Column(JSONDocument, nullable=False, default=list)
    notes = Column(JSONDocument, nullable=False, default=list)
    ip_list = Column(JSONDocument, nullable=False, default=list)
    punishments = Column(JSONDocument, nullable=False, default=list)
    pending_notifications = Column(JSONDocument, nullable=False, default=list)
    data = Column(JSONDocument, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("tenant_id", "minecraft_uuid", name="uq_player_tenant_uuid"),
    )

    def to_document(self) -> dict:
        return {
            "minecraftUuid": self.minecraft_uuid,
            "usernames": list(self.usernames or []),
            "notes": list(self.notes or []),
            "ipList": list(self.ip_list or []),
            "punishments": list(self.punishments or []),
            "pendingNotifications": list(self.pending_notifications or []),
            "data": dict(self.data or {}),
        }


class TenantSetting(Base):
    """
    One typed settings document per tenant (e.g. type='migration').

    `version` is bumped on every write; writers use compare-and-set on it so
    concurrent read-modify-write cycles cannot overwrite each other.
    """
    __tablename__ = "tenant_setting"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenant.id"), nullable=False)
    type = Column(Text, nullable=False)
    data = Column(JSONDocument, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "type", name="uq_tenant_setting_type"),
        Index("ix_tenant_setting_tenant_type", "tenant_id", "type"),
    )
