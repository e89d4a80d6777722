from app.api.v1 import billing, webhooks

__all__ = [
    "billing",
    "webhooks",
]
