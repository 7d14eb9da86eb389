"""create_tenant_player_and_settings

Revision ID: 001_tenant_player_settings
Revises:
Create Date: 2026-10-16

Tenant registry, per-tenant player documents and typed tenant settings
(the migration task document lives in tenant_setting with type='migration').
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "001_tenant_player_settings"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenant",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("migration_file_size_limit", sa.BigInteger(), nullable=True),
    )

    op.create_table(
        "player",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("minecraft_uuid", sa.Text(), nullable=False),
        sa.Column("usernames", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("notes", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("ip_list", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("punishments", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("pending_notifications", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("data", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.UniqueConstraint("tenant_id", "minecraft_uuid", name="uq_player_tenant_uuid"),
    )
    op.create_index("ix_player_tenant_id", "player", ["tenant_id"])

    op.create_table(
        "tenant_setting",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenant.id"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("data", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("tenant_id", "type", name="uq_tenant_setting_type"),
    )
    op.create_index("ix_tenant_setting_tenant_type", "tenant_setting", ["tenant_id", "type"])


def downgrade() -> None:
    op.drop_index("ix_tenant_setting_tenant_type", table_name="tenant_setting")
    op.drop_table("tenant_setting")
    op.drop_index("ix_player_tenant_id", table_name="player")
    op.drop_table("player")
    op.drop_table("tenant")
