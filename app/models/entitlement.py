"""Entitlement model - plan grants made independently of paid subscriptions."""

import uuid as uuid_pkg

from sqlalchemy import Index, String, text
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDMixin


class Entitlement(UUIDMixin, TimestampMixin, table=True):
    """
    An independently-granted plan override (e.g. content creator programme).

    Written by the admin console; read-only for webhook processing.
    """

    __tablename__ = "entitlements"
    __table_args__ = (
        Index("ix_entitlements_target_active", "target_type", "target_id", "active"),
    )

    target_type: str = Field(sa_type=String(20), nullable=False)  # "user" | "community"
    target_id: uuid_pkg.UUID = Field(nullable=False)
    plan: str = Field(sa_type=String(20), nullable=False)
    active: bool = Field(
        default=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("true")},
    )
