"""Create users, communities, subscriptions and entitlements tables

Revision ID: c1d2e3f4a5b6
Revises:
Create Date: 2026-10-19

Creates:
- users / communities: principals (owned by other services, read here)
- subscriptions: one canonical row per principal, written by webhooks
- entitlements: independently-granted plan overrides, read-only here

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "c1d2e3f4a5b6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    """Create the subscription reconciliation schema."""

    # Step 1: Principals
    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index("ix_users_id", "users", ["id"])

    op.create_table(
        "communities",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "owner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        *_timestamp_columns(),
    )
    op.create_index("ix_communities_id", "communities", ["id"])

    # Step 2: Canonical subscription per principal
    op.create_table(
        "subscriptions",
        _id_column(),
        sa.Column("principal_type", sa.String(20), nullable=False),
        sa.Column("principal_id", UUID(as_uuid=True), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("is_annual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("duration_months", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(30), nullable=False, server_default="none"),
        sa.Column("external_subscription_id", sa.String(255), nullable=True),
        sa.Column("external_customer_id", sa.String(255), nullable=True),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("principal_type", "principal_id", name="uq_subscriptions_principal"),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    op.create_index("ix_subscriptions_principal_id", "subscriptions", ["principal_id"])
    op.create_index(
        "ix_subscriptions_external_subscription_id",
        "subscriptions",
        ["external_subscription_id"],
    )

    # Step 3: Entitlements (admin-granted plan overrides)
    op.create_table(
        "entitlements",
        _id_column(),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("target_id", UUID(as_uuid=True), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamp_columns(),
    )
    op.create_index("ix_entitlements_id", "entitlements", ["id"])
    op.create_index(
        "ix_entitlements_target_active",
        "entitlements",
        ["target_type", "target_id", "active"],
    )


def downgrade() -> None:
    """Drop the subscription reconciliation schema."""
    op.drop_index("ix_entitlements_target_active", table_name="entitlements")
    op.drop_index("ix_entitlements_id", table_name="entitlements")
    op.drop_table("entitlements")

    op.drop_index("ix_subscriptions_external_subscription_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_principal_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_communities_id", table_name="communities")
    op.drop_table("communities")

    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
