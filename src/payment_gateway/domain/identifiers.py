"""Identifier generation."""

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: str = "") -> str:
    """
    Generate a sortable, unique id such as ``pay_lq2x8k1c_k3j9x0a1b2``.

    The middle part is the current time in milliseconds (base 36), so ids
    created later sort after earlier ones.
    """
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(10))
    return f"{prefix}_{timestamp}_{random_part}" if prefix else f"{timestamp}_{random_part}"
