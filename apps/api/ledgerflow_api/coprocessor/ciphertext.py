"""Decoding of client-written ciphertext blobs.

A blob is either opaque bytes or a JSON envelope::

    {"encryptedAmount": <shape>, "metadata": {...}}

where ``<shape>`` is a byte array (list of ints), a base64 or ``0x`` hex
string, or an input bundle ``{"handles": [...], "inputProof": ...}``.
Nothing here decrypts anything.
"""

import base64
import binascii
import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from ledgerflow_api.errors import UnsupportedCiphertextShape


class OpaqueCiphertext(BaseModel):
    """Raw blob with no envelope."""

    kind: Literal["opaque"] = "opaque"
    data: bytes


class BytesCiphertext(BaseModel):
    """Envelope whose amount is a single serialized ciphertext."""

    kind: Literal["bytes"] = "bytes"
    data: bytes = b""
    metadata: dict = Field(default_factory=dict)


class HandlesCiphertext(BaseModel):
    """Envelope holding an encrypted-input bundle."""

    kind: Literal["handles"] = "handles"
    handles: list[bytes] = Field(default_factory=list)
    input_proof: Optional[bytes] = None
    metadata: dict = Field(default_factory=dict)


CiphertextEnvelope = Union[OpaqueCiphertext, BytesCiphertext, HandlesCiphertext]


class Extracted(BaseModel):
    kind: Literal["extracted"] = "extracted"
    ciphertext_b64: str


class MetadataOnly(BaseModel):
    """Envelope carries metadata but no ciphertext."""

    kind: Literal["metadata_only"] = "metadata_only"
    metadata: dict


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str


ExtractionResult = Union[Extracted, MetadataOnly, Failed]


def _decode_bytes(value: Any, field: str) -> bytes:
    """Decode one serialized byte string from its JSON representation."""
    if isinstance(value, list):
        if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in value):
            raise UnsupportedCiphertextShape(f"{field}: array must contain byte values 0-255")
        return bytes(value)

    if isinstance(value, str):
        if value.startswith("0x"):
            try:
                return bytes.fromhex(value[2:])
            except ValueError:
                raise UnsupportedCiphertextShape(f"{field}: invalid hex string")
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise UnsupportedCiphertextShape(f"{field}: invalid base64 string")

    # Serialized Node Buffer: {"type": "Buffer", "data": [...]}
    if isinstance(value, dict) and value.get("type") == "Buffer" and "data" in value:
        return _decode_bytes(value["data"], field)

    raise UnsupportedCiphertextShape(f"{field}: unsupported type {type(value).__name__}")


def decode_envelope(blob: bytes) -> CiphertextEnvelope:
    """Classify a blob. Raises UnsupportedCiphertextShape on a malformed envelope."""
    try:
        document = json.loads(blob)
    except (UnicodeDecodeError, ValueError):
        return OpaqueCiphertext(data=blob)

    if not isinstance(document, dict) or not (
        "encryptedAmount" in document or "metadata" in document
    ):
        return OpaqueCiphertext(data=blob)

    metadata = document.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise UnsupportedCiphertextShape("metadata must be an object")

    amount = document.get("encryptedAmount")
    if amount is None:
        return BytesCiphertext(data=b"", metadata=metadata)

    if isinstance(amount, dict) and "handles" in amount:
        handles = amount["handles"]
        if not isinstance(handles, list):
            raise UnsupportedCiphertextShape("encryptedAmount.handles must be an array")
        proof = amount.get("inputProof")
        return HandlesCiphertext(
            handles=[_decode_bytes(h, f"encryptedAmount.handles[{i}]") for i, h in enumerate(handles)],
            input_proof=_decode_bytes(proof, "encryptedAmount.inputProof") if proof is not None else None,
            metadata=metadata,
        )

    return BytesCiphertext(data=_decode_bytes(amount, "encryptedAmount"), metadata=metadata)


def extract_ciphertext(envelope: CiphertextEnvelope) -> ExtractionResult:
    """Pick the ciphertext to forward to the computation engine."""
    if isinstance(envelope, OpaqueCiphertext):
        if not envelope.data:
            return Failed(reason="empty blob")
        return Extracted(ciphertext_b64=base64.b64encode(envelope.data).decode("ascii"))

    if isinstance(envelope, BytesCiphertext):
        data = envelope.data
    else:
        data = envelope.handles[0] if envelope.handles else b""

    if data:
        return Extracted(ciphertext_b64=base64.b64encode(data).decode("ascii"))
    if envelope.metadata:
        return MetadataOnly(metadata=envelope.metadata)
    return Failed(reason="envelope has neither ciphertext nor metadata")
