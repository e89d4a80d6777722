from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, table=True):
    """
    User model - owned by the accounts service.

    Only read here, to confirm a principal exists before its subscription
    row is created.
    """

    __tablename__ = "users"

    email: str | None = Field(default=None, max_length=255)
    display_name: str | None = Field(default=None, max_length=100)
