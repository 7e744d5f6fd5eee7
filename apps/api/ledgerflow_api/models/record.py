"""Indexed record and dead-letter models."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, JSON, String, Text

from ledgerflow_api.db.base import Base


class IndexedRecord(Base):
    """Off-chain projection of an attestation, one per content address."""

    __tablename__ = "indexed_records"

    id = Column(Integer, primary_key=True, index=True)
    content_address = Column(Text, nullable=False, unique=True, index=True)
    fingerprint = Column(String(66), nullable=False, unique=True, index=True)
    submitter_address = Column(String(255), nullable=False, index=True)  # Lower-cased
    observed_at_block = Column(BigInteger, nullable=True)  # NULL until the event is seen
    tx_hash = Column(String(66), nullable=True)
    attested_at = Column(DateTime, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    note = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, confirmed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class DeadLetterEvent(Base):
    """Indexer event that failed to persist, kept for replay."""

    __tablename__ = "dead_letter_events"

    id = Column(Integer, primary_key=True, index=True)
    content_address = Column(Text, nullable=False, index=True)
    block_number = Column(BigInteger, nullable=True)
    event_json = Column(JSON, nullable=False)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)  # pending, resolved, abandoned
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_attempt_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
