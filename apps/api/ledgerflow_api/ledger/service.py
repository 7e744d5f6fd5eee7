"""Attestation ledger with replay protection and hash chaining."""

import hashlib
import json
import logging
import time
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledgerflow_api.errors import DuplicateFingerprint
from ledgerflow_api.ledger.events import AttestedEvent, LedgerEvent, PublicKeyRegisteredEvent
from ledgerflow_api.ledger.fingerprint import normalize_submitter
from ledgerflow_api.models import Attestation, ChainEvent, PublicKeyRegistration
from ledgerflow_api.settings import get_settings
from ledgerflow_api.utils.metrics import attestations_total

logger = logging.getLogger(__name__)


class AttestationLedger:
    """Append-only log of attestations.

    The only failure mode of ``attest`` is a fingerprint that was already
    recorded. Every other input is stored verbatim: the ledger does not
    look inside content addresses or auxiliary bytes.
    """

    def __init__(self, db: Session, chain_id: Optional[str] = None):
        """Initialize ledger."""
        self.db = db
        self.chain_id = chain_id or get_settings().ledger_chain_id

    def _hash_event(self, event_data: dict) -> str:
        """Compute hash of event data."""
        # Create deterministic JSON representation
        event_str = json.dumps(event_data, sort_keys=True)
        return "0x" + hashlib.sha256(event_str.encode()).hexdigest()

    def _get_last_event(self) -> Optional[ChainEvent]:
        return (
            self.db.query(ChainEvent)
            .order_by(ChainEvent.block_number.desc())
            .first()
        )

    def _event_data(self, event: ChainEvent) -> dict:
        return {
            "chain_id": self.chain_id,
            "block_number": event.block_number,
            "event_type": event.event_type,
            "submitter": event.submitter,
            "payload": event.payload_json,
            "previous_hash": event.previous_event_hash,
            "timestamp": event.timestamp,
        }

    def _append_event(self, event_type: str, submitter: str, payload: dict, timestamp: int) -> ChainEvent:
        """Append event to the chain as a new block."""
        last_event = self._get_last_event()
        chain_event = ChainEvent(
            block_number=(last_event.block_number + 1) if last_event else 1,
            previous_event_hash=last_event.event_hash if last_event else None,
            event_type=event_type,
            submitter=submitter,
            payload_json=payload,
            timestamp=timestamp,
        )
        chain_event.event_hash = self._hash_event(self._event_data(chain_event))
        self.db.add(chain_event)
        return chain_event

    def attest(
        self,
        submitter: str,
        fingerprint: str,
        content_address: str,
        auxiliary: bytes = b"",
    ) -> AttestedEvent:
        """Record an attestation and return the emitted event.

        Raises:
            DuplicateFingerprint: if the fingerprint is already recorded.
        """
        submitter = normalize_submitter(submitter)
        if self.is_attested(fingerprint):
            attestations_total.labels(outcome="duplicate").inc()
            logger.info(f"Rejected duplicate attestation {fingerprint} from {submitter}")
            raise DuplicateFingerprint(fingerprint)

        timestamp = int(time.time())
        payload = {
            "fingerprint": fingerprint,
            "content_address": content_address,
            "auxiliary": "0x" + auxiliary.hex(),
        }
        chain_event = self._append_event("Attested", submitter, payload, timestamp)
        self.db.add(
            Attestation(
                fingerprint=fingerprint,
                content_address=content_address,
                submitter=submitter,
                auxiliary=auxiliary,
                block_number=chain_event.block_number,
                created_at=timestamp,
            )
        )
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            if not self.is_attested(fingerprint):
                # Lost a block-number race, not a fingerprint race
                raise
            attestations_total.labels(outcome="duplicate").inc()
            raise DuplicateFingerprint(fingerprint)

        attestations_total.labels(outcome="accepted").inc()
        return self.to_event(chain_event)

    def register_public_key(self, submitter: str, public_key: bytes) -> PublicKeyRegisteredEvent:
        """Announce a public key for a submitter."""
        submitter = normalize_submitter(submitter)
        timestamp = int(time.time())
        chain_event = self._append_event(
            "PublicKeyRegistered",
            submitter,
            {"public_key": "0x" + public_key.hex()},
            timestamp,
        )
        self.db.add(
            PublicKeyRegistration(
                submitter=submitter,
                public_key=public_key,
                block_number=chain_event.block_number,
            )
        )
        self.db.flush()
        return self.to_event(chain_event)

    def is_attested(self, fingerprint: str) -> bool:
        return (
            self.db.query(Attestation.id)
            .filter(Attestation.fingerprint == fingerprint)
            .first()
            is not None
        )

    def list_content_addresses(self, submitter: str) -> list[str]:
        """Content addresses attested by a submitter, in insertion order."""
        rows = (
            self.db.query(Attestation.content_address)
            .filter(Attestation.submitter == normalize_submitter(submitter))
            .order_by(Attestation.block_number.asc())
            .all()
        )
        return [row.content_address for row in rows]

    def attestation_count(self, submitter: str) -> int:
        return (
            self.db.query(func.count(Attestation.id))
            .filter(Attestation.submitter == normalize_submitter(submitter))
            .scalar()
        )

    def latest_block_number(self) -> int:
        """Height of the chain, 0 when empty."""
        return self.db.query(func.max(ChainEvent.block_number)).scalar() or 0

    def events_between(self, from_block: int, to_block: int) -> list[LedgerEvent]:
        """Events in the inclusive block range, ascending."""
        rows = (
            self.db.query(ChainEvent)
            .filter(
                ChainEvent.block_number >= from_block,
                ChainEvent.block_number <= to_block,
            )
            .order_by(ChainEvent.block_number.asc())
            .all()
        )
        return [self.to_event(row) for row in rows]

    def to_event(self, chain_event: ChainEvent) -> LedgerEvent:
        """Convert a stored block into its event payload."""
        payload = chain_event.payload_json
        if chain_event.event_type == "Attested":
            return AttestedEvent(
                submitter=chain_event.submitter,
                fingerprint=payload["fingerprint"],
                content_address=payload["content_address"],
                timestamp=chain_event.timestamp,
                auxiliary=payload.get("auxiliary", "0x"),
                block_number=chain_event.block_number,
                tx_hash=chain_event.event_hash,
            )
        return PublicKeyRegisteredEvent(
            submitter=chain_event.submitter,
            public_key=payload["public_key"],
            timestamp=chain_event.timestamp,
            block_number=chain_event.block_number,
            tx_hash=chain_event.event_hash,
        )

    def verify_chain(self) -> tuple[bool, Optional[str]]:
        """Verify hash chain integrity."""
        events = (
            self.db.query(ChainEvent)
            .order_by(ChainEvent.block_number.asc())
            .all()
        )

        previous_hash = None
        for event in events:
            # Verify previous hash matches
            if event.previous_event_hash != previous_hash:
                return False, f"Block {event.block_number}: previous hash mismatch"

            # Verify event hash
            computed_hash = self._hash_event(self._event_data(event))
            if computed_hash != event.event_hash:
                return False, f"Block {event.block_number}: event hash mismatch"

            previous_hash = event.event_hash

        return True, None
