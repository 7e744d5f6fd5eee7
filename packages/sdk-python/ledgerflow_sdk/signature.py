"""Signature utilities for computation engine operators."""

import hashlib
import hmac
from typing import Dict


def sign_engine_request(raw_body: bytes, secret: str) -> str:
    """Return the ``X-Signature`` header value for a request body."""
    if not isinstance(raw_body, bytes):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_engine_request(
    headers: Dict[str, str],
    raw_body: bytes,
    secret: str,
) -> bool:
    """
    Verify a signed aggregate request received by an engine.

    Args:
        headers: Request headers dictionary
        raw_body: Raw request body bytes, exactly as received
        secret: Shared HMAC key

    Returns:
        True if the signature matches, False otherwise
    """
    signature_header = headers.get("X-Signature") or headers.get("x-signature") or ""

    # Parse signature (format: "sha256=<hex>")
    if not signature_header.startswith("sha256="):
        return False

    # Constant-time comparison
    return hmac.compare_digest(signature_header, sign_engine_request(raw_body, secret))
