"""
Webhook request signing.

Receivers verify a callback by recomputing
HMAC-SHA256(secret, "{timestamp}.{raw_body}") and comparing it with the
X-Webhook-Signature header ("sha256=<hex>").
"""
import hashlib
import hmac

from app.exceptions import SignatureComputationError

SIGNATURE_PREFIX = "sha256="


def signature_base(timestamp: int | str, body: str) -> str:
    """Exact string the HMAC is computed over."""
    return f"{timestamp}.{body}"


def sign(secret: bytes, message: str) -> str:
    """
    Compute HMAC-SHA256 of a message, hex-encoded lowercase.

    Args:
        secret: Raw endpoint secret bytes
        message: Signature base string

    Returns:
        Hex digest, or "" when the secret is empty
    """
    if not secret:
        return ""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    try:
        return hmac.new(
            key=bytes(secret),
            msg=message.encode("utf-8"),
            digestmod=hashlib.sha256,
        ).hexdigest()
    except (TypeError, ValueError, AttributeError) as e:
        raise SignatureComputationError(f"Could not sign payload: {e}") from e


def signature_header(secret: bytes, timestamp: int | str, body: str) -> str:
    """Value for the X-Webhook-Signature header."""
    return f"{SIGNATURE_PREFIX}{sign(secret, signature_base(timestamp, body))}"


def verify_signature(secret: bytes, timestamp: int | str, body: str, header: str) -> bool:
    """Constant-time check of an X-Webhook-Signature header value."""
    expected = signature_header(secret, timestamp, body)
    return hmac.compare_digest(expected, header or "")
