"""Webhook signature verification."""
import hashlib
import hmac
from typing import Optional


class SignatureVerifier:
    """
    Checks that a webhook body was signed by Paystack.

    Paystack sends ``X-Paystack-Signature: hex(HMAC-SHA512(secret, raw_body))``.
    The body must be the exact bytes received; re-serializing parsed JSON can
    change them and break valid signatures.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("A webhook signing secret is required")
        self._secret = secret.encode("utf-8")

    def compute(self, payload: bytes) -> str:
        """Return the hex signature Paystack would send for ``payload``."""
        return hmac.new(self._secret, payload, hashlib.sha512).hexdigest()

    def verify(self, payload: bytes, signature: Optional[str]) -> bool:
        """Return True only for a well-formed signature matching ``payload``."""
        if not isinstance(payload, (bytes, bytearray)) or not isinstance(signature, str):
            return False
        candidate = signature.strip().lower()
        if not candidate or not candidate.isascii():
            return False
        return hmac.compare_digest(self.compute(bytes(payload)), candidate)
