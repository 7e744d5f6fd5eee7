"""Aggregation over stored ciphertexts via the computation engine."""

import asyncio
import logging
from typing import Optional

from ledgerflow_api.coprocessor.ciphertext import Extracted, MetadataOnly, decode_envelope, extract_ciphertext
from ledgerflow_api.coprocessor.engine import EngineClient, EngineResult, MockEngine
from ledgerflow_api.errors import (
    ContentStoreError,
    ContentUnavailable,
    EngineUnreachable,
    UnsupportedCiphertextShape,
    ValidationError,
)
from ledgerflow_api.settings import get_settings
from ledgerflow_api.utils.metrics import aggregations_total

logger = logging.getLogger(__name__)

OPERATIONS = ("sum", "max", "min", "avg")


class AggregationService:
    """Fetch referenced ciphertexts and delegate the aggregate to the engine.

    Any fetch failure fails the whole batch. The mock engine is used only
    when ``allow_mock_engine`` is set; otherwise engine failures propagate.
    """

    def __init__(
        self,
        content_store,
        engine: Optional[EngineClient] = None,
        allow_mock_engine: Optional[bool] = None,
        mock_engine: Optional[MockEngine] = None,
    ):
        """Initialize aggregation service."""
        self.content_store = content_store
        self.engine = engine or EngineClient()
        self.allow_mock_engine = (
            allow_mock_engine if allow_mock_engine is not None else get_settings().allow_mock_engine
        )
        self.mock_engine = mock_engine or MockEngine()

    @staticmethod
    def validate(content_addresses: list[str], operation: str):
        if not content_addresses:
            raise ValidationError("content_addresses must not be empty")
        if operation not in OPERATIONS:
            raise ValidationError(f"Invalid operation. Must be one of: {', '.join(OPERATIONS)}")

    async def _fetch_all(self, content_addresses: list[str]) -> list[bytes]:
        results = await asyncio.gather(
            *(self.content_store.retrieve(address) for address in content_addresses),
            return_exceptions=True,
        )
        for address, result in zip(content_addresses, results):
            if isinstance(result, ContentStoreError):
                logger.warning(f"Aggregation batch rejected, fetch failed for {address}: {result}")
                raise ContentUnavailable(address, result.message)
            if isinstance(result, BaseException):
                raise result
        return results

    @staticmethod
    def _ciphertext_for(address: str, blob: bytes) -> str:
        try:
            envelope = decode_envelope(blob)
        except UnsupportedCiphertextShape as e:
            raise UnsupportedCiphertextShape(f"{address}: {e.message}")

        extracted = extract_ciphertext(envelope)
        if isinstance(extracted, Extracted):
            return extracted.ciphertext_b64
        if isinstance(extracted, MetadataOnly):
            raise UnsupportedCiphertextShape(f"{address}: envelope holds metadata but no ciphertext")
        raise UnsupportedCiphertextShape(f"{address}: {extracted.reason}")

    async def _compute(self, ciphertexts: list[str], operation: str) -> tuple[EngineResult, str]:
        try:
            return await self.engine.compute(ciphertexts, operation), "remote"
        except EngineUnreachable as e:
            if not self.allow_mock_engine:
                raise
            logger.warning(f"Engine unavailable, using mock engine: {e.message}")
            return await self.mock_engine.compute(ciphertexts, operation), "mock"

    async def aggregate(self, content_addresses: list[str], operation: str) -> dict:
        """Aggregate without decrypting. Returns the engine result verbatim."""
        self.validate(content_addresses, operation)

        logger.info(f"Fetching {len(content_addresses)} ciphertexts for {operation}")
        blobs = await self._fetch_all(content_addresses)
        ciphertexts = [
            self._ciphertext_for(address, blob) for address, blob in zip(content_addresses, blobs)
        ]

        result, mode = await self._compute(ciphertexts, operation)
        aggregations_total.labels(operation=operation, engine=mode).inc()

        return {
            "result_ciphertext": result.result_ciphertext,
            "proof": result.proof,
            "metadata": {
                "operation": operation,
                "item_count": len(content_addresses),
                "engine_version": result.engine_version,
                "mode": mode,
            },
        }

    async def health_check(self) -> dict:
        if self.engine.configured:
            health = await self.engine.health_check()
            if health["ok"] or not self.allow_mock_engine:
                return {**health, "mode": "remote"}
        if self.allow_mock_engine:
            return {"ok": True, "engine_version": self.mock_engine.version, "mode": "mock"}
        return {"ok": False, "engine_version": None, "mode": "unconfigured"}
