from fastapi import HTTPException, status

# ─────────────────────────────────────────────────────────────────────────────
# HTTP errors (billing endpoints)
# ─────────────────────────────────────────────────────────────────────────────


class NotFoundError(HTTPException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ValidationError(HTTPException):
    """Raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Webhook processing errors
#
# These are plain exceptions rather than HTTPExceptions: the webhook router
# decides the status code, because the provider's retry behaviour depends on it.
# ─────────────────────────────────────────────────────────────────────────────


class WebhookError(Exception):
    """Base class for failures while processing a provider webhook."""


class AuthenticationError(WebhookError):
    """Signature header missing, malformed, or not matching the payload."""


class DecodeError(WebhookError):
    """An authentic event lacks a field its type requires."""


class MalformedPayloadError(DecodeError):
    """Body is not a provider event envelope at all (not JSON, no event type)."""


class StoreError(WebhookError):
    """The subscription store (or a provider lookup it depends on) failed."""
