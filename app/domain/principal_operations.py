"""Existence checks for subscription owners (users and communities)."""

import uuid as uuid_pkg

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.community import Community
from app.models.subscription import PrincipalType
from app.models.user import User


class PrincipalOperations:
    """Looks up principals in the collaborator-owned users/communities tables."""

    async def exists(
        self,
        db: AsyncSession,
        principal_type: PrincipalType,
        principal_id: uuid_pkg.UUID,
    ) -> bool:
        """True when the user or community exists."""
        model: type[User] | type[Community] = (
            User if principal_type is PrincipalType.USER else Community
        )
        statement = select(model.id).where(model.id == principal_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None


principal_ops = PrincipalOperations()
