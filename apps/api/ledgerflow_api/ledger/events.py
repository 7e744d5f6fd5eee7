"""Event payloads emitted by the attestation ledger."""

from typing import Literal, Union

from pydantic import BaseModel


class AttestedEvent(BaseModel):
    """Emitted once per accepted attestation."""

    event_type: Literal["Attested"] = "Attested"
    submitter: str
    fingerprint: str
    content_address: str
    timestamp: int
    auxiliary: str = "0x"  # Hex, never interpreted

    # Chain position, filled in by the ledger
    block_number: int
    tx_hash: str


class PublicKeyRegisteredEvent(BaseModel):
    """Emitted when a submitter announces a public key."""

    event_type: Literal["PublicKeyRegistered"] = "PublicKeyRegistered"
    submitter: str
    public_key: str  # Hex
    timestamp: int
    block_number: int
    tx_hash: str


LedgerEvent = Union[AttestedEvent, PublicKeyRegisteredEvent]
