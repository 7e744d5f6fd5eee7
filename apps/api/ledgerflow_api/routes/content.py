"""Encrypted blob upload and retrieval."""

import base64
import binascii

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ledgerflow_api.dependencies import get_store
from ledgerflow_api.errors import ValidationError
from ledgerflow_api.ledger.fingerprint import fingerprint_for, is_valid_content_address
from ledgerflow_api.settings import get_settings

router = APIRouter(prefix="/v1", tags=["content"])


class ContentUploadRequest(BaseModel):
    ciphertext: str  # Base64


@router.post("/content", status_code=status.HTTP_201_CREATED)
async def upload_content(request: ContentUploadRequest, store=Depends(get_store)):
    """Store an encrypted blob and return its content address."""
    try:
        data = base64.b64decode(request.ciphertext, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("ciphertext must be base64")
    if not data:
        raise ValidationError("ciphertext must not be empty")

    max_bytes = get_settings().content_upload_max_bytes
    if len(data) > max_bytes:
        raise ValidationError(f"ciphertext exceeds {max_bytes} bytes")

    content_address = await store.upload(data)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "success": True,
            "content_address": content_address,
            "fingerprint": fingerprint_for(content_address),
            "size": len(data),
        },
    )


@router.get("/content/{content_address}")
async def retrieve_content(content_address: str, store=Depends(get_store)):
    if not is_valid_content_address(content_address):
        raise ValidationError(f"Invalid content address: {content_address}")

    data = await store.retrieve(content_address)
    return {
        "success": True,
        "content_address": content_address,
        "ciphertext": base64.b64encode(data).decode("ascii"),
        "encrypted": True,
    }
