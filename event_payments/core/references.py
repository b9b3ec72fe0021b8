"""Payment reference generation."""
import secrets
import string
import time

REFERENCE_PREFIX = "EVT_"

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_reference() -> str:
    """
    Generate an opaque, unguessable payment reference.

    Millisecond timestamp in base 36 followed by 4 random bytes in hex,
    upper-cased, e.g. ``EVT_LQZ3K8XA9F2C41D7``. The unique constraint on
    ``registrations.paystack_reference`` remains the authoritative guard.
    """
    timestamp = _to_base36(time.time_ns() // 1_000_000)
    random_part = secrets.token_hex(4)
    return f"{REFERENCE_PREFIX}{timestamp}{random_part}".upper()
