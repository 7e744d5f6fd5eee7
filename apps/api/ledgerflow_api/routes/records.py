"""Query API over indexed records."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ledgerflow_api.db.session import get_db
from ledgerflow_api.errors import ValidationError
from ledgerflow_api.indexer.store import RecordIndexStore
from ledgerflow_api.ledger.fingerprint import is_valid_content_address
from ledgerflow_api.records.service import RecordQueryService

router = APIRouter(prefix="/v1", tags=["records"])


class RecordResponse(BaseModel):
    """Indexed record."""

    content_address: str
    fingerprint: str
    submitter_address: str
    observed_at_block: Optional[int] = None
    tx_hash: Optional[str] = None
    attested_at: Optional[datetime] = None
    category: Optional[str] = None
    note: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PendingRecordRequest(BaseModel):
    """Optimistic registration sent by a client right after submitting."""

    content_address: str
    submitter_address: str
    category: Optional[str] = None
    note: Optional[str] = None


@router.get("/records")
async def list_records(
    category: Optional[str] = None,
    submitter_address: Optional[str] = Query(None, alias="submitterAddress"),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    """List records, newest first."""
    records = RecordQueryService(db).list_records(
        category=category,
        submitter_address=submitter_address,
        limit=limit,
    )
    return {
        "success": True,
        "count": len(records),
        "records": [RecordResponse.model_validate(r).model_dump(mode="json") for r in records],
    }


@router.get("/records/{content_address}")
async def get_record(content_address: str, db: Session = Depends(get_db)):
    record = RecordQueryService(db).get_record(content_address)
    return {
        "success": True,
        "record": RecordResponse.model_validate(record).model_dump(mode="json"),
    }


@router.get("/proof/{content_address}")
async def get_proof(content_address: str, db: Session = Depends(get_db)):
    """Chain metadata for a record. Payload values are never returned."""
    proof = RecordQueryService(db).get_proof(content_address)
    if proof["chain_ref"]["attested_at"] is not None:
        proof["chain_ref"]["attested_at"] = proof["chain_ref"]["attested_at"].isoformat()
    return {"success": True, "proof": proof, "encrypted": True}


@router.post("/records/pending")
async def register_pending(request: PendingRecordRequest, db: Session = Depends(get_db)):
    """Create a pending record, or fill unknown fields of an existing one."""
    if not is_valid_content_address(request.content_address):
        raise ValidationError(f"Invalid content address: {request.content_address}")

    record, created = RecordIndexStore(db).register_pending(
        content_address=request.content_address,
        submitter=request.submitter_address,
        category=request.category,
        note=request.note,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        content={
            "success": True,
            "created": created,
            "record": RecordResponse.model_validate(record).model_dump(mode="json"),
        },
    )
