import hashlib
import hmac
import logging
import time
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 900

def constant_time_equal(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without short-circuiting on the first difference"""
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a, b):
        result |= x ^ y
    return result == 0

def parse_signature_header(header: str) -> Tuple[Optional[str], List[str]]:
    """Split `t=<unix>,v1=<hex>[,v1=<hex>...]` into the timestamp and v1 hashes"""
    timestamp = None
    hashes = []
    for part in header.split(','):
        key, sep, value = part.strip().partition('=')
        if not sep:
            continue
        if key == 't':
            timestamp = value
        elif key == 'v1' and value:
            hashes.append(value)
    return timestamp, hashes

def compute_signature(body: bytes, timestamp: str, secret: str) -> str:
    payload = timestamp.encode() + b'.' + body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

def validate_signature(
    body: bytes,
    header: Optional[str],
    secret: Optional[str],
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None
) -> bool:
    """Validate a Surge webhook signature. Any missing piece fails closed."""
    if not secret:
        logger.error("Webhook secret is not configured; rejecting request")
        return False
    if not header:
        logger.warning("Missing Surge-Signature header")
        return False

    timestamp, hashes = parse_signature_header(header)
    if not timestamp or not hashes:
        logger.warning("Invalid signature format")
        return False

    try:
        webhook_time = int(timestamp)
    except ValueError:
        logger.warning("Signature timestamp is not an integer")
        return False

    current = int(now if now is not None else time.time())
    if abs(current - webhook_time) > tolerance:
        logger.warning("Webhook timestamp outside replay window")
        return False

    expected = compute_signature(body, timestamp, secret).encode()
    for candidate in hashes:
        if constant_time_equal(expected, candidate.lower().encode()):
            return True

    logger.warning("Signature validation failed")
    return False
