"""Attestation ledger models.

These tables back the local chain: every emitted event occupies one block,
and attestations are keyed by their fingerprint. Nothing in the codebase
updates or deletes rows here.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, JSON, LargeBinary, String, Text

from ledgerflow_api.db.base import Base


class ChainEvent(Base):
    """Append-only event log with hash chaining."""

    __tablename__ = "ledger_events"

    block_number = Column(Integer, primary_key=True, autoincrement=True)
    event_hash = Column(String(66), nullable=False, unique=True, index=True)
    previous_event_hash = Column(String(66), nullable=True)  # NULL for genesis
    event_type = Column(String(64), nullable=False, index=True)  # Attested, PublicKeyRegistered
    submitter = Column(String(255), nullable=False, index=True)
    payload_json = Column(JSON, nullable=False)
    timestamp = Column(BigInteger, nullable=False)  # Unix seconds, ledger-assigned

    __table_args__ = (
        {"sqlite_autoincrement": True},
    )


class Attestation(Base):
    """Fingerprint -> content address binding."""

    __tablename__ = "attestations"

    id = Column(Integer, primary_key=True, index=True)
    fingerprint = Column(String(66), nullable=False, unique=True, index=True)
    content_address = Column(Text, nullable=False)
    submitter = Column(String(255), nullable=False, index=True)
    auxiliary = Column(LargeBinary, nullable=False, default=b"")
    block_number = Column(Integer, nullable=False)
    created_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        {"sqlite_autoincrement": True},
    )


class PublicKeyRegistration(Base):
    """Public key announced by a submitter."""

    __tablename__ = "public_keys"

    id = Column(Integer, primary_key=True, index=True)
    submitter = Column(String(255), nullable=False, index=True)
    public_key = Column(LargeBinary, nullable=False)
    block_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
