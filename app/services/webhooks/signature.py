"""
Webhook signature verification.

Both providers sign deliveries with the same timestamped HMAC scheme:

    <Provider>-Signature: t=<unix-seconds>,v1=<hex hmac-sha256>[,v0=<hex>]

The HMAC is computed over "<t>.<raw body>" with the per-provider secret and
compared against v1 in constant time. v0 is a legacy scheme and is ignored.

NOTE: no freshness window is enforced unless a tolerance is passed, so a
captured delivery can be replayed. Replays are harmless to state because
every write is idempotent, but set webhook_signature_tolerance_seconds to
close the window.
"""

import logging

from stripe import SignatureVerificationError, WebhookSignature

from app.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

SIGNED_SCHEME = "v1"


def _parse_header(header: str) -> dict[str, list[str]]:
    """Split the header into its key/value segments, enforcing the shape."""
    segments = header.split(",")
    if len(segments) not in (2, 3):
        raise AuthenticationError(
            f"Malformed signature header: expected 2 or 3 segments, got {len(segments)}"
        )

    parts: dict[str, list[str]] = {}
    for segment in segments:
        key, sep, value = segment.strip().partition("=")
        if not sep or not value:
            raise AuthenticationError("Malformed signature header segment")
        parts.setdefault(key, []).append(value)
    return parts


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int | None = None,
) -> None:
    """
    Authenticate a webhook delivery.

    Raises AuthenticationError on a missing or malformed header, a missing
    timestamp or v1 signature, or a signature that does not match the body.
    Returns None when the delivery is authentic.
    """
    if not secret:
        raise AuthenticationError("Webhook secret not configured")
    if not header:
        raise AuthenticationError("Missing signature header")

    parts = _parse_header(header)

    timestamp = parts.get("t")
    if not timestamp or not timestamp[0].isdigit():
        raise AuthenticationError("Signature header has no valid timestamp")
    if SIGNED_SCHEME not in parts:
        raise AuthenticationError(f"Signature header has no {SIGNED_SCHEME} signature")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise AuthenticationError("Payload is not valid UTF-8") from None

    try:
        WebhookSignature.verify_header(body, header, secret, tolerance)
    except SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise AuthenticationError("Invalid webhook signature") from None
