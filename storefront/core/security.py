"""
Storefront Inventory - Security helpers (JWT decode with shared secret, webhook HMAC)
"""
import hashlib
import hmac
from typing import Any

from jose import jwt

from storefront.core.config import get_settings

settings = get_settings()


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str) -> bool:
    """Check the gateway's HMAC-SHA256 body signature.

    With no PAYMENT_WEBHOOK_SECRET configured every delivery is accepted,
    which is only meant for local development.
    """
    if not settings.PAYMENT_WEBHOOK_SECRET:
        return True
    expected = sign_payload(body, settings.PAYMENT_WEBHOOK_SECRET)
    return hmac.compare_digest(expected, signature or "")
