"""Deterministic fingerprints and content address checks."""

import hashlib
import re

# CIDv0 (base58btc, sha2-256 multihash) and CIDv1 (base32, multibase prefix "b")
_SHORT_FORM = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44,}$")
_LONG_FORM = re.compile(r"^b[A-Za-z2-7]{58,}$")
_FINGERPRINT = re.compile(r"^0x[0-9a-f]{64}$")


def fingerprint_for(content_address: str) -> str:
    """Return the ledger dedup key for a content address."""
    digest = hashlib.sha3_256(content_address.encode("utf-8")).hexdigest()
    return f"0x{digest}"


def is_valid_content_address(content_address: str) -> bool:
    """Check the address belongs to one of the two recognized families."""
    if not content_address:
        return False
    return bool(_SHORT_FORM.match(content_address) or _LONG_FORM.match(content_address))


def is_valid_fingerprint(fingerprint: str) -> bool:
    return bool(_FINGERPRINT.match(fingerprint or ""))


def normalize_submitter(submitter: str) -> str:
    """Submitter identities compare case-insensitively."""
    return submitter.strip().lower()
