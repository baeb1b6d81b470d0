"""Create user_profiles, clients, galleries and gallery_access_grants.

Revision ID: 001_core
Revises:
Create Date: 2026-09-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision: str = "001_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        primary_key=True,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "user_profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_type", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("business_name", sa.Text(), nullable=True),
        sa.Column("stripe_customer_id", sa.Text(), nullable=True, unique=True),
        sa.Column("stripe_connect_account_id", sa.Text(), nullable=True, unique=True),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "user_type IN ('admin','photographer','client')",
            name="ck_user_profile_type",
        ),
    )
    op.create_index(
        "idx_user_profiles_type_created", "user_profiles", ["user_type", "created_at"]
    )

    op.create_table(
        "clients",
        _id_column(),
        sa.Column(
            "photographer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'active'")),
        _created_at(),
        sa.CheckConstraint("status IN ('active','inactive')", name="ck_client_status"),
    )
    op.create_index("idx_clients_photographer", "clients", ["photographer_id", "created_at"])

    op.create_table(
        "galleries",
        _id_column(),
        sa.Column(
            "photographer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "client_id",
            UUID(as_uuid=True),
            sa.ForeignKey("clients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("photo_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
    )
    op.create_index("idx_galleries_photographer", "galleries", ["photographer_id", "created_at"])

    op.create_table(
        "gallery_access_grants",
        _id_column(),
        sa.Column(
            "gallery_id",
            UUID(as_uuid=True),
            sa.ForeignKey("galleries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "client_user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("client_email", sa.Text(), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.Text(), nullable=False, unique=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("status IN ('paid','unpaid')", name="ck_gallery_access_status"),
    )
    op.create_index("idx_gallery_access_client", "gallery_access_grants", ["client_user_id"])


def downgrade() -> None:
    op.drop_index("idx_gallery_access_client", table_name="gallery_access_grants")
    op.drop_table("gallery_access_grants")
    op.drop_index("idx_galleries_photographer", table_name="galleries")
    op.drop_table("galleries")
    op.drop_index("idx_clients_photographer", table_name="clients")
    op.drop_table("clients")
    op.drop_index("idx_user_profiles_type_created", table_name="user_profiles")
    op.drop_table("user_profiles")
