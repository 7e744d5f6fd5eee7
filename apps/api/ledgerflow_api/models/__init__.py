"""Database models - import all models here for Alembic discovery."""

from ledgerflow_api.models.ledger import Attestation, ChainEvent, PublicKeyRegistration
from ledgerflow_api.models.record import DeadLetterEvent, IndexedRecord

__all__ = [
    "ChainEvent",
    "Attestation",
    "PublicKeyRegistration",
    "IndexedRecord",
    "DeadLetterEvent",
]
