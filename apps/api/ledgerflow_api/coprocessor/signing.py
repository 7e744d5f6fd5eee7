"""Request signing for the computation engine."""

import hashlib
import hmac
import json

SIGNATURE_HEADER = "X-Signature"


def canonical_body(payload: dict) -> bytes:
    """Serialize deterministically; the signature covers exactly these bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def compute_signature(body: bytes, key: str) -> str:
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def signature_header(body: bytes, key: str) -> str:
    return f"sha256={compute_signature(body, key)}"


def verify_signature(body: bytes, header: str, key: str) -> bool:
    """Constant-time check of an ``X-Signature`` header value."""
    if not header or not header.startswith("sha256="):
        return False
    return hmac.compare_digest(header[len("sha256="):], compute_signature(body, key))
