import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE_SECONDS = 300


class SignatureError(Exception):
    pass


class SignatureMissing(SignatureError):
    pass


class SignatureInvalid(SignatureError):
    pass


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a `t=...,v1=...` header for a payload, as the provider sends it."""
    if timestamp is None:
        timestamp = int(time.time())
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(payload, secret, timestamp)}"


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureInvalid("Signature timestamp is not an integer") from None
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)

    if timestamp is None:
        raise SignatureInvalid("Signature header has no timestamp")
    if not signatures:
        raise SignatureInvalid(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


class SignatureVerifier(ABC):
    @abstractmethod
    def verify(self, payload: bytes, header: Optional[str]) -> None:
        """Raise SignatureMissing or SignatureInvalid unless the payload is authentic."""


class HmacSignatureVerifier(SignatureVerifier):
    """
    HMAC-SHA256 verification of `"{timestamp}.{body}"` against a shared secret.

    Every `v1` entry of the header is compared in constant time, so a secret
    rotation window (two signatures in one header) verifies against either.
    A tolerance of 0 disables the replay window check.
    """

    def __init__(
        self,
        secret: str,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def verify(self, payload: bytes, header: Optional[str]) -> None:
        if not header or not header.strip():
            raise SignatureMissing("Signature header missing")

        if not self.secret:
            logger.error("Webhook secret is not configured. Rejecting signed request.")
            raise SignatureInvalid("Webhook secret not configured")

        timestamp, signatures = parse_signature_header(header)
        expected = compute_signature(payload, self.secret, timestamp)

        expected_bytes = expected.encode("utf-8")
        if not any(hmac.compare_digest(expected_bytes, candidate.encode("utf-8")) for candidate in signatures):
            raise SignatureInvalid("No signature matches the payload")

        if self.tolerance_seconds and abs(self.clock() - timestamp) > self.tolerance_seconds:
            raise SignatureInvalid("Signature timestamp outside the tolerance window")
