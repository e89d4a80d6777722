"""Community model - a group principal that can buy time-boxed promotions."""

import uuid as uuid_pkg

from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDMixin


class Community(UUIDMixin, TimestampMixin, table=True):
    """Community record, owned by the community service and read here."""

    __tablename__ = "communities"

    name: str = Field(max_length=255, nullable=False)
    owner_id: uuid_pkg.UUID | None = Field(default=None, foreign_key="users.id", nullable=True)
