"""HMAC-SHA256 webhook signatures shared by payment and delivery callbacks."""

import hashlib
import hmac


def compute_signature(payload: bytes | str, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes | str, signature: str | None, secret: str | None) -> bool:
    """Constant-time check of a provided signature against the payload.

    An empty secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
