"""
Webhook Security Module

Signature verification for payment-processor webhooks (Standard Webhooks
format used by Dodo Payments):
- Constant-time signature comparison
- Timestamp validation against replays
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def extract_svix_signing_key(secret: str) -> bytes:
    """
    Extract Standard Webhooks signing key bytes from a whsec_ style secret.

    - Incoming secret typically looks like: "whsec_BASE64KEY"
    - The HMAC key is the BASE64-decoded bytes of the part after "whsec_"
    - If not prefixed, attempt base64 decode; if that fails, fall back to UTF-8 bytes
    """
    try:
        if secret.startswith("whsec_"):
            return base64.b64decode(secret[6:])
        return base64.b64decode(secret, validate=True)
    except (ValueError, TypeError):
        return secret.encode("utf-8")


def verify_timestamp(
    timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[float] = None
) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
        current_time = int(now if now is not None else time.time())
        age = abs(current_time - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def compute_signature(secret: str, webhook_id: str, timestamp: str, raw_body: bytes) -> str:
    """base64(HMAC_SHA256(key, "webhook-id.webhook-timestamp.payload"))"""
    signing_key = extract_svix_signing_key(secret)
    signed_message = b".".join([webhook_id.encode("utf-8"), timestamp.encode("utf-8"), raw_body])
    return base64.b64encode(hmac.new(signing_key, signed_message, hashlib.sha256).digest()).decode("utf-8")


def create_webhook_signature_header(secret: str, webhook_id: str, timestamp: str, raw_body: bytes) -> str:
    return f"v1,{compute_signature(secret, webhook_id, timestamp, raw_body)}"


def signature_matches(secret: str, webhook_id: str, timestamp: str, raw_body: bytes, header: str) -> bool:
    """
    The header may carry several space-separated "v1,<sig>" entries
    while a secret is being rotated; any match is accepted.
    """
    expected = compute_signature(secret, webhook_id, timestamp, raw_body)
    for candidate in (header or "").split():
        version, _, received = candidate.partition(",")
        if version == "v1" and constant_time_compare(expected, received):
            return True
    return False


async def verify_dodo_webhook(request: Request, secret: str) -> bytes:
    """
    Verify a Dodo Payments webhook and return its raw body.

    Raises:
        HTTPException(401): on missing headers, stale timestamp or bad signature
    """
    # Get raw body BEFORE any parsing - the signature covers exact bytes
    raw_body = await request.body()

    signature_header = request.headers.get("webhook-signature", "")
    timestamp = request.headers.get("webhook-timestamp", "")
    webhook_id = request.headers.get("webhook-id", "")

    logger.info(f"📥 Dodo webhook received: id={webhook_id or 'unknown'}")

    if not signature_header or not timestamp or not webhook_id:
        logger.error("❌ Missing webhook signature headers")
        raise HTTPException(status_code=401, detail="Missing webhook signature headers")

    if not verify_timestamp(timestamp):
        logger.error("❌ Webhook timestamp expired or invalid")
        raise HTTPException(status_code=401, detail="Webhook timestamp expired")

    if not signature_matches(secret, webhook_id, timestamp, raw_body, signature_header):
        logger.error(f"❌ Dodo webhook signature verification failed: {webhook_id}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    logger.info(f"✅ Dodo webhook signature verified successfully: {webhook_id}")
    return raw_body
