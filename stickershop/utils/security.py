# stickershop/utils/security.py
import hashlib
import hmac
import time
from typing import Dict, Optional
from ..models.result import NotConfigured, ValidationFailed

STRIPE_TOLERANCE_SECONDS = 300

def _parse_signature_header(header: str) -> Dict[str, list]:
    parts: Dict[str, list] = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key and value:
            parts.setdefault(key, []).append(value)
    return parts

def compute_stripe_signature(payload: bytes, timestamp: int, secret: str) -> str:
    """Stripe v1 signature: HMAC-SHA256 of '{timestamp}.{payload}'"""
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()

def verify_stripe_signature(payload: bytes, header: Optional[str], secret: Optional[str],
                            tolerance: int = STRIPE_TOLERANCE_SECONDS,
                            now: Optional[float] = None) -> None:
    """Check a Stripe-Signature header, raising on any mismatch"""
    if not secret:
        raise NotConfigured("STRIPE_WEBHOOK_SECRET is not configured")
    if not secret.startswith("whsec_"):
        raise NotConfigured("STRIPE_WEBHOOK_SECRET has invalid format")
    if not header:
        raise ValidationFailed("Missing Stripe-Signature header")

    parts = _parse_signature_header(header)
    try:
        timestamp = int(parts["t"][0])
    except (KeyError, ValueError):
        raise ValidationFailed("Malformed Stripe-Signature header")

    expected = compute_stripe_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in parts.get("v1", [])):
        raise ValidationFailed("Webhook signature does not match")

    current = now if now is not None else time.time()
    if abs(current - timestamp) > tolerance:
        raise ValidationFailed("Webhook timestamp outside tolerance")

def verify_admin_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant time comparison of the admin API key"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)
