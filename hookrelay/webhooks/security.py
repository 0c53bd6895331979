"""Webhook security utilities.

Provides HMAC signature generation and verification for webhook payloads
to ensure authenticity and prevent tampering.

The signature is computed as:
    HMAC-SHA256(secret, f"{timestamp}.{payload}")

The timestamp travels in its own header so receivers can reject stale
requests. The engine never enforces a freshness window itself; the
receiver helpers accept an optional tolerance for that.
"""

import hashlib
import hmac
import time
from collections.abc import Mapping

import structlog

from hookrelay.errors import SignatureMismatchError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"
EVENT_ID_HEADER = "X-Webhook-ID"


def _as_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def sign_payload(payload: bytes | str, secret: str, timestamp: int) -> str:
    """Generate HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Serialized request body.
        secret: Endpoint signing secret.
        timestamp: Unix timestamp sent alongside the signature.

    Returns:
        Hex-encoded signature.
    """
    # Raw bytes are signed as-is so any body, valid UTF-8 or not, verifies.
    signed_payload = f"{timestamp}.".encode("utf-8") + _as_bytes(payload)
    return hmac.new(
        secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    payload: bytes | str,
    signature: str,
    secret: str,
    timestamp: int,
) -> bool:
    """Verify HMAC-SHA256 signature of a webhook payload.

    Args:
        payload: Serialized request body as received.
        signature: Claimed signature to verify.
        secret: Endpoint signing secret.
        timestamp: Timestamp from the request.

    Returns:
        True if signature is valid, False otherwise.
    """
    expected = sign_payload(payload, secret, timestamp)

    # Constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))

    if not is_valid:
        logger.warning("webhook_signature_invalid", timestamp=timestamp)

    return is_valid


def build_signature_headers(
    payload: bytes | str,
    secret: str,
    *,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Create HTTP headers with signature for webhook delivery.

    Args:
        payload: Serialized request body.
        secret: Endpoint signing secret.
        timestamp: Optional Unix timestamp (defaults to current time).

    Returns:
        Dictionary of headers to include in request.
    """
    if timestamp is None:
        timestamp = int(time.time())

    return {
        SIGNATURE_HEADER: sign_payload(payload, secret, timestamp),
        TIMESTAMP_HEADER: str(timestamp),
    }


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


def verify_from_headers(
    payload: bytes | str,
    headers: Mapping[str, str],
    secret: str,
    *,
    tolerance_seconds: int | None = None,
    now: int | None = None,
) -> bool:
    """Verify webhook signature from request headers.

    Intended for receivers building their own handlers.

    Args:
        payload: Raw request body.
        headers: Request headers (matched case-insensitively).
        secret: Endpoint signing secret.
        tolerance_seconds: Reject timestamps older or newer than this, if set.
        now: Current Unix time, for testing.

    Returns:
        True if the signature is valid (and fresh, when a tolerance is given).

    Raises:
        SignatureMismatchError: If required headers are missing or malformed.
    """
    signature = _header(headers, SIGNATURE_HEADER)
    timestamp_str = _header(headers, TIMESTAMP_HEADER)

    if not signature:
        raise SignatureMismatchError(f"Missing {SIGNATURE_HEADER} header")

    if not timestamp_str:
        raise SignatureMismatchError(f"Missing {TIMESTAMP_HEADER} header")

    try:
        timestamp = int(timestamp_str)
    except ValueError as e:
        raise SignatureMismatchError(
            f"Invalid {TIMESTAMP_HEADER} header: must be integer"
        ) from e

    if tolerance_seconds is not None:
        current = int(time.time()) if now is None else now
        age = abs(current - timestamp)
        if age > tolerance_seconds:
            logger.warning(
                "webhook_signature_expired",
                timestamp=timestamp,
                age_seconds=age,
                tolerance_seconds=tolerance_seconds,
            )
            return False

    return verify_signature(payload, signature, secret, timestamp)


def require_valid_signature(
    payload: bytes | str,
    signature: str,
    secret: str,
    timestamp: int,
) -> None:
    """Raise unless the signature matches.

    Raises:
        SignatureMismatchError: If the signature does not match.
    """
    if not verify_signature(payload, signature, secret, timestamp):
        raise SignatureMismatchError(
            "Webhook signature does not match payload",
            details={"timestamp": timestamp},
        )
