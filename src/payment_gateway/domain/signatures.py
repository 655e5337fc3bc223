"""HMAC helpers for webhook signature checks."""

import hashlib
import hmac


def compute_signature(secret: str, message: str | bytes) -> str:
    """Hex HMAC-SHA256 of message."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(message: str | bytes, signature: str, secret: str) -> bool:
    """Constant-time comparison of signature against the expected HMAC."""
    if not signature or not secret:
        return False
    expected = compute_signature(secret, message)
    return hmac.compare_digest(expected, signature.strip().lower())


def parse_signature_header(header: str) -> dict[str, str]:
    """
    Split a ``key=value,key=value`` signature header.

    >>> parse_signature_header("ts=1700000000,v1=abc")
    {'ts': '1700000000', 'v1': 'abc'}
    """
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts
