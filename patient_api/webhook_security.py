"""
Webhook Security Module

Signature and shared-secret verification for inbound pharmacy and
telehealth webhooks. All comparisons run in constant time.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when webhook authentication fails"""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def compute_hmac_sha256_base64(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload and return base64 encoded"""
    signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def verify_md_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify an MD Integrations webhook signature.

    The header holds the HMAC-SHA256 of the raw request body, hex encoded and
    optionally prefixed with "sha256=". Base64 encoded signatures are accepted
    as well.
    """
    if not signature:
        logger.warning("🚫 MD webhook signature header missing")
        return False

    received = signature.strip()
    if received.lower().startswith("sha256="):
        received = received[7:]

    expected_hex = compute_hmac_sha256(secret, raw_body)
    if constant_time_compare(expected_hex, received.lower()):
        return True

    expected_b64 = compute_hmac_sha256_base64(secret, raw_body)
    return constant_time_compare(expected_b64, received)


def verify_bearer_secret(authorization: Optional[str], secret: Optional[str]) -> None:
    """
    Verify a webhook that authenticates with "Authorization: Bearer <secret>".

    Raises:
        WebhookSignatureError: 401 without a header, 500 when no secret is
            configured, 403 when the secret does not match
    """
    if not authorization:
        raise WebhookSignatureError("Missing authorization header", status_code=401)

    if not secret:
        logger.error("❌ Webhook secret not configured")
        raise WebhookSignatureError("Webhook secret not configured", status_code=500)

    if not constant_time_compare(authorization, f"Bearer {secret}"):
        logger.warning("🚫 Webhook authorization mismatch")
        raise WebhookSignatureError("Invalid authorization", status_code=403)
