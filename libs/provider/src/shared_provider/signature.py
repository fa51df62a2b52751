import hashlib
import hmac
import time
from typing import Optional


class SignatureVerificationError(Exception):
    pass


def _parse_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_signature(
        payload: bytes,
        header: Optional[str],
        secret: str,
        tolerance: int = 300,
        now: Optional[float] = None
) -> None:
    """Check a ``Mux-Signature`` header (``t=<unix>,v1=<hex>``) against the raw body"""
    if not header:
        raise SignatureVerificationError("Missing signature header")
    timestamp, signatures = _parse_header(header)
    if timestamp is None or not signatures:
        raise SignatureVerificationError("Malformed signature header")
    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise SignatureVerificationError("Signature timestamp outside tolerance")
    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureVerificationError("Signature mismatch")
