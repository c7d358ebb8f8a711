# allylab_notify/webhooks/signing.py
"""
Payload signing.

Signatures are HMAC-SHA256 over the exact bytes sent on the wire, so
receivers can verify against the raw request body.
"""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of body keyed by secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signature_header(secret: str, body: bytes) -> str:
    """Value for the X-AllyLab-Signature header."""
    return f"{SIGNATURE_PREFIX}{sign(secret, body)}"


def verify_signature(secret: str, body: bytes, header_value: str) -> bool:
    """
    Check a received X-AllyLab-Signature header.

    Args:
        secret: Shared destination secret
        body: Raw request body as received
        header_value: Header value, "sha256=<hex>"

    Returns:
        True if the signature matches
    """
    if not header_value or not header_value.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign(secret, body)
    return hmac.compare_digest(expected, header_value[len(SIGNATURE_PREFIX):])
