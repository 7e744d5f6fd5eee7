"""Seed data for development and testing."""

import json
import logging

from sqlalchemy.orm import Session

from ledgerflow_api.indexer.store import RecordIndexStore
from ledgerflow_api.ledger.fingerprint import fingerprint_for
from ledgerflow_api.ledger.service import AttestationLedger
from ledgerflow_api.storage.content_store import cid_v1_for

logger = logging.getLogger(__name__)

DEMO_SUBMITTER = "0x742d35cc6634c0532925a3b844bc9e7595f0beb"

SAMPLE_RECORDS = [
    {"category": "food", "note": "Sample food expense"},
    {"category": "transport", "note": "Sample transport expense"},
]


def _sample_blob(index: int, category: str) -> bytes:
    # Placeholder envelope; the amount bytes are not a real ciphertext
    envelope = {
        "encryptedAmount": list(f"sample-{index}".encode()),
        "metadata": {"category": category},
    }
    return json.dumps(envelope, sort_keys=True).encode()


def seed_records(db: Session) -> int:
    """Attest and index the sample records. Returns how many were added."""
    ledger = AttestationLedger(db)
    store = RecordIndexStore(db)
    added = 0

    for index, sample in enumerate(SAMPLE_RECORDS, start=1):
        content_address = cid_v1_for(_sample_blob(index, sample["category"]))
        fingerprint = fingerprint_for(content_address)
        if ledger.is_attested(fingerprint):
            continue

        event = ledger.attest(DEMO_SUBMITTER, fingerprint, content_address)
        db.commit()
        store.upsert_confirmed(event)
        store.register_pending(
            content_address,
            DEMO_SUBMITTER,
            category=sample["category"],
            note=sample["note"],
        )
        added += 1

    logger.info(f"Seeded {added} sample records")
    return added


def seed_all(db: Session) -> int:
    """Seed all initial data."""
    return seed_records(db)
