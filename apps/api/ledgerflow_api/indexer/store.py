"""Idempotent persistence for indexed records and dead letters."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerflow_api.errors import ValidationError
from ledgerflow_api.ledger.events import AttestedEvent
from ledgerflow_api.ledger.fingerprint import fingerprint_for, normalize_submitter
from ledgerflow_api.models import DeadLetterEvent, IndexedRecord
from ledgerflow_api.utils.metrics import dead_letter_replays

logger = logging.getLogger(__name__)


class RecordIndexStore:
    """Upserts keyed by content address.

    The unique constraints on ``content_address`` and ``fingerprint`` are the
    only concurrency control; a lost insert race falls through to an update.
    """

    def __init__(self, db: Session):
        """Initialize store."""
        self.db = db

    def get(self, content_address: str) -> Optional[IndexedRecord]:
        return (
            self.db.query(IndexedRecord)
            .filter(IndexedRecord.content_address == content_address)
            .first()
        )

    def _confirm(self, record: IndexedRecord, event: AttestedEvent):
        """Move status forward and fill chain metadata that is still unknown."""
        if record.status == "pending":
            # The ledger's fingerprint wins over the one computed at registration
            record.fingerprint = event.fingerprint
        record.status = "confirmed"
        if record.observed_at_block is None:
            record.observed_at_block = event.block_number
        if record.tx_hash is None:
            record.tx_hash = event.tx_hash
        if record.attested_at is None:
            record.attested_at = datetime.utcfromtimestamp(event.timestamp)

    def upsert_confirmed(self, event: AttestedEvent) -> IndexedRecord:
        """Insert a confirmed record, or confirm the existing one."""
        record = self.get(event.content_address)
        if record is None:
            record = IndexedRecord(
                content_address=event.content_address,
                fingerprint=event.fingerprint,
                submitter_address=normalize_submitter(event.submitter),
                observed_at_block=event.block_number,
                tx_hash=event.tx_hash,
                attested_at=datetime.utcfromtimestamp(event.timestamp),
                status="confirmed",
            )
            self.db.add(record)
            try:
                self.db.commit()
                return record
            except IntegrityError:
                self.db.rollback()
                record = self.get(event.content_address)
                if record is None:
                    # Fingerprint is bound to another content address
                    raise

        self._confirm(record, event)
        self.db.commit()
        return record

    def register_pending(
        self,
        content_address: str,
        submitter: str,
        category: Optional[str] = None,
        note: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> tuple[IndexedRecord, bool]:
        """Optimistic client write. Returns the record and whether it was created.

        An existing record keeps its status and submitter; only category and
        note are filled, and only when they are still unset.
        """
        record = self.get(content_address)
        if record is None:
            record = IndexedRecord(
                content_address=content_address,
                fingerprint=fingerprint or fingerprint_for(content_address),
                submitter_address=normalize_submitter(submitter),
                category=category,
                note=note,
                status="pending",
            )
            self.db.add(record)
            try:
                self.db.commit()
                return record, True
            except IntegrityError:
                self.db.rollback()
                record = self.get(content_address)
                if record is None:
                    raise ValidationError(
                        "Fingerprint is already bound to another content address"
                    )

        if record.category is None and category is not None:
            record.category = category
        if record.note is None and note is not None:
            record.note = note
        self.db.commit()
        return record, False

    def dead_letter(self, event: AttestedEvent, error: Exception) -> DeadLetterEvent:
        """Park an event that could not be persisted."""
        letter = DeadLetterEvent(
            content_address=event.content_address,
            block_number=event.block_number,
            event_json=event.model_dump(),
            error=str(error)[:1000],
            status="pending",
        )
        self.db.add(letter)
        self.db.commit()
        return letter

    def pending_dead_letters(self, limit: int = 100) -> list[DeadLetterEvent]:
        return (
            self.db.query(DeadLetterEvent)
            .filter(DeadLetterEvent.status == "pending")
            .order_by(DeadLetterEvent.id.asc())
            .limit(limit)
            .all()
        )

    def replay_dead_letters(self, limit: int = 100, max_attempts: int = 5) -> dict:
        """Re-apply pending dead letters through the normal upsert."""
        counts = {"resolved": 0, "failed": 0, "abandoned": 0}
        letter_ids = [letter.id for letter in self.pending_dead_letters(limit)]

        for letter_id in letter_ids:
            letter = self.db.get(DeadLetterEvent, letter_id)
            event = AttestedEvent(**letter.event_json)
            try:
                self.upsert_confirmed(event)
            except SQLAlchemyError as e:
                self.db.rollback()
                letter = self.db.get(DeadLetterEvent, letter_id)
                letter.attempts += 1
                letter.last_attempt_at = datetime.utcnow()
                letter.error = str(e)[:1000]
                if letter.attempts >= max_attempts:
                    letter.status = "abandoned"
                    counts["abandoned"] += 1
                    dead_letter_replays.labels(outcome="abandoned").inc()
                    logger.error(
                        f"Dead letter {letter_id} for {letter.content_address} abandoned "
                        f"after {letter.attempts} attempts"
                    )
                else:
                    counts["failed"] += 1
                    dead_letter_replays.labels(outcome="failed").inc()
                self.db.commit()
                continue

            letter = self.db.get(DeadLetterEvent, letter_id)
            letter.status = "resolved"
            letter.resolved_at = datetime.utcnow()
            self.db.commit()
            counts["resolved"] += 1
            dead_letter_replays.labels(outcome="resolved").inc()

        if letter_ids:
            logger.info(f"Dead-letter replay: {counts}")
        return counts
