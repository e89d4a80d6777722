from app.domain.entitlement_operations import entitlement_ops
from app.domain.principal_operations import principal_ops
from app.domain.subscription_operations import subscription_ops

__all__ = [
    "entitlement_ops",
    "principal_ops",
    "subscription_ops",
]
