"""
Utility functions shared by the webhook route and the pipeline.
"""

import hmac
import hashlib
import logging
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms(moment: datetime) -> int:
    """Convert a naive UTC datetime to epoch milliseconds."""
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)


_STARTED_AT = time.monotonic()


def process_uptime() -> float:
    """Seconds since this module was first imported."""
    return time.monotonic() - _STARTED_AT


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature for {len(body)} bytes")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
