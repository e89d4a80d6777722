from app.models.community import Community
from app.models.entitlement import Entitlement
from app.models.subscription import (
    WRITABLE_FIELDS,
    Plan,
    PrincipalType,
    Subscription,
    SubscriptionSource,
)
from app.models.user import User

__all__ = [
    "User",
    "Community",
    "Entitlement",
    "Subscription",
    "Plan",
    "PrincipalType",
    "SubscriptionSource",
    "WRITABLE_FIELDS",
]
