"""
Payment provider webhooks

This package provides:
- HMAC signature verification of inbound deliveries
- Normalization of provider events into PaymentEvent values
- The ingestion pipeline (import WebhookProcessor from webhooks.processor)
"""

from .events import (
    PaymentStatus,
    PaymentEvent,
    EventNormalizer,
    MalformedEvent,
)
from .signature import (
    SignatureVerifier,
    HmacSignatureVerifier,
    SignatureError,
    SignatureMissing,
    SignatureInvalid,
)

__all__ = [
    "PaymentStatus",
    "PaymentEvent",
    "EventNormalizer",
    "MalformedEvent",
    "SignatureVerifier",
    "HmacSignatureVerifier",
    "SignatureError",
    "SignatureMissing",
    "SignatureInvalid",
]
