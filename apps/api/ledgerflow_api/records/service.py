"""Read-only projections over indexed records."""

from typing import Optional

from sqlalchemy.orm import Session

from ledgerflow_api.errors import NotFound
from ledgerflow_api.ledger.fingerprint import normalize_submitter
from ledgerflow_api.models import IndexedRecord
from ledgerflow_api.settings import get_settings


class RecordQueryService:
    """Query API over ``indexed_records``. Never writes."""

    def __init__(self, db: Session):
        """Initialize query service."""
        self.db = db
        self.settings = get_settings()

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Apply the default and the server-side hard maximum."""
        if limit is None:
            return self.settings.records_default_limit
        return max(1, min(limit, self.settings.records_max_limit))

    def list_records(
        self,
        category: Optional[str] = None,
        submitter_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[IndexedRecord]:
        """Newest first."""
        query = self.db.query(IndexedRecord)
        if category:
            query = query.filter(IndexedRecord.category == category)
        if submitter_address:
            query = query.filter(
                IndexedRecord.submitter_address == normalize_submitter(submitter_address)
            )
        return (
            query.order_by(IndexedRecord.created_at.desc(), IndexedRecord.id.desc())
            .limit(self.clamp_limit(limit))
            .all()
        )

    def get_record(self, content_address: str) -> IndexedRecord:
        record = (
            self.db.query(IndexedRecord)
            .filter(IndexedRecord.content_address == content_address)
            .first()
        )
        if not record:
            raise NotFound(f"Record not found: {content_address}")
        return record

    def get_proof(self, content_address: str) -> dict:
        """Chain metadata for a record. Never includes payload values."""
        try:
            record = self.get_record(content_address)
        except NotFound:
            raise NotFound(f"Proof not found: {content_address}")

        return {
            "content_address": record.content_address,
            "fingerprint": record.fingerprint,
            "chain_ref": {
                "tx_hash": record.tx_hash,
                "block_number": record.observed_at_block,
                "attested_at": record.attested_at,
            },
            "submitter_address": record.submitter_address,
            "category": record.category,
            "status": record.status,
        }
