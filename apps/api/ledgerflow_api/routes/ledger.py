"""Attestation ledger endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ledgerflow_api.db.session import get_db
from ledgerflow_api.dependencies import get_chain_client
from ledgerflow_api.errors import ValidationError
from ledgerflow_api.ledger.chain import LocalChainClient
from ledgerflow_api.ledger.fingerprint import fingerprint_for, is_valid_fingerprint
from ledgerflow_api.ledger.service import AttestationLedger

router = APIRouter(prefix="/v1/ledger", tags=["ledger"])


class AttestationRequest(BaseModel):
    """Attestation submission.

    ``fingerprint`` defaults to the fingerprint of the content address.
    ``auxiliary`` is a ``0x`` hex string stored without interpretation.
    """

    submitter: str
    content_address: str
    fingerprint: Optional[str] = None
    auxiliary: str = "0x"


class PublicKeyRequest(BaseModel):
    submitter: str
    public_key: str  # 0x hex


def _hex_bytes(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except ValueError:
        raise ValidationError(f"{field} must be a hex string")


@router.post("/attestations", status_code=status.HTTP_201_CREATED)
async def submit_attestation(
    request: AttestationRequest,
    chain_client: LocalChainClient = Depends(get_chain_client),
):
    """Submit an attestation. Duplicate fingerprints are rejected with 409."""
    fingerprint = request.fingerprint or fingerprint_for(request.content_address)
    if not is_valid_fingerprint(fingerprint):
        raise ValidationError("fingerprint must be 0x followed by 64 lowercase hex characters")

    event = await chain_client.submit_attestation(
        submitter=request.submitter,
        fingerprint=fingerprint,
        content_address=request.content_address,
        auxiliary=_hex_bytes(request.auxiliary, "auxiliary"),
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "event": event.model_dump()},
    )


@router.get("/attestations/{fingerprint}")
async def get_attestation_status(
    fingerprint: str,
    chain_client: LocalChainClient = Depends(get_chain_client),
):
    return {
        "success": True,
        "fingerprint": fingerprint,
        "attested": await chain_client.is_attested(fingerprint),
    }


@router.get("/submitters/{submitter}/content-addresses")
async def list_submitter_content_addresses(submitter: str, db: Session = Depends(get_db)):
    """Content addresses a submitter attested, in ledger order."""
    ledger = AttestationLedger(db)
    content_addresses = ledger.list_content_addresses(submitter)
    return {
        "success": True,
        "submitter": submitter.lower(),
        "count": ledger.attestation_count(submitter),
        "content_addresses": content_addresses,
    }


@router.post("/public-keys", status_code=status.HTTP_201_CREATED)
async def register_public_key(
    request: PublicKeyRequest,
    chain_client: LocalChainClient = Depends(get_chain_client),
):
    event = await chain_client.submit_public_key(
        request.submitter, _hex_bytes(request.public_key, "public_key")
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "event": event.model_dump()},
    )


@router.get("/verify")
async def verify_ledger(db: Session = Depends(get_db)):
    """Recompute the event hash chain."""
    ledger = AttestationLedger(db)
    valid, error = ledger.verify_chain()
    return {
        "success": True,
        "valid": valid,
        "error": error,
        "block_number": ledger.latest_block_number(),
    }
