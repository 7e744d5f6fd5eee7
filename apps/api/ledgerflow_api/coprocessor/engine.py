"""Homomorphic computation engine clients."""

import asyncio
import base64
import hashlib
import json
import logging
import time
from typing import Optional
from urllib.parse import urljoin

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ledgerflow_api.coprocessor.signing import SIGNATURE_HEADER, canonical_body, signature_header
from ledgerflow_api.errors import EngineUnreachable
from ledgerflow_api.settings import get_settings
from ledgerflow_api.utils.metrics import engine_duration

logger = logging.getLogger(__name__)

MOCK_ENGINE_VERSION = "v0.9-mock"


class EngineResult(BaseModel):
    """Engine response, passed back to callers verbatim."""

    result_ciphertext: str
    proof: Optional[str] = None
    engine_version: str
    items_count: int


class EngineClient:
    """Signed HTTP client for the external computation engine.

    Every attempt re-sends the same canonical body, so retrying an aggregate
    request is safe.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        hmac_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        target_type: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize engine client."""
        settings = get_settings()
        self.url = url if url is not None else settings.engine_url
        self.hmac_key = hmac_key or settings.engine_hmac_key
        self.timeout_seconds = timeout_seconds or settings.engine_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.engine_max_retries
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else settings.engine_retry_backoff_seconds
        )
        self.target_type = target_type or settings.engine_target_type
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def build_request(self, ciphertexts: list[str], op: str) -> tuple[bytes, dict]:
        """Canonical body and headers for one aggregate call."""
        body = canonical_body(
            {
                "ciphertexts": ciphertexts,
                "op": op,
                "targetType": self.target_type,
                "outputFormat": "ciphertext",
            }
        )
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature_header(body, self.hmac_key),
        }
        return body, headers

    @staticmethod
    def _parse(data, item_count: int) -> EngineResult:
        if not isinstance(data, dict):
            raise EngineUnreachable("Computation engine returned malformed response")
        result_ciphertext = data.get("resultCiphertext")
        if not result_ciphertext:
            raise EngineUnreachable("Computation engine returned no result ciphertext")
        meta = data.get("meta") or {}
        if not isinstance(meta, dict):
            raise EngineUnreachable("Computation engine returned malformed response")
        try:
            return EngineResult(
                result_ciphertext=result_ciphertext,
                proof=data.get("proof"),
                engine_version=data.get("engineVersion") or data.get("coprocVersion") or "unknown",
                items_count=meta.get("itemsCount", item_count),
            )
        except PydanticValidationError:
            raise EngineUnreachable("Computation engine returned malformed response")

    async def compute(self, ciphertexts: list[str], op: str) -> EngineResult:
        """Run one aggregate. Raises EngineUnreachable once retries are spent."""
        if not self.configured:
            raise EngineUnreachable("Computation engine is not configured")

        body, headers = self.build_request(ciphertexts, op)
        attempts = self.max_retries + 1
        last_error = None

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            for attempt in range(attempts):
                if attempt:
                    await asyncio.sleep(self.retry_backoff_seconds * (2 ** (attempt - 1)))
                started = time.perf_counter()
                try:
                    response = await client.post(self.url, content=body, headers=headers)
                except httpx.HTTPError as e:
                    last_error = f"{type(e).__name__}: {e}"
                    logger.warning(f"Engine call failed (attempt {attempt + 1}/{attempts}): {last_error}")
                    continue
                finally:
                    engine_duration.observe(time.perf_counter() - started)

                if response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(f"Engine returned {response.status_code} (attempt {attempt + 1}/{attempts})")
                    continue
                if response.status_code >= 400:
                    # Rejected request (bad signature, bad payload); retrying cannot help
                    raise EngineUnreachable(
                        f"Computation engine rejected request: HTTP {response.status_code}"
                    )

                try:
                    data = response.json()
                except ValueError:
                    raise EngineUnreachable("Computation engine returned invalid JSON")
                return self._parse(data, len(ciphertexts))

        raise EngineUnreachable(f"Computation engine unreachable after {attempts} attempt(s): {last_error}")

    async def health_check(self) -> dict:
        if not self.configured:
            return {"ok": False, "engine_version": None}
        async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
            try:
                response = await client.get(urljoin(self.url, "health"))
            except httpx.HTTPError as e:
                logger.warning(f"Engine health check failed: {e}")
                return {"ok": False, "engine_version": None}
        version = None
        if response.status_code < 400:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                version = data.get("engineVersion")
        return {"ok": response.status_code < 400, "engine_version": version}


class MockEngine:
    """Deterministic non-cryptographic stand-in, for demonstrations only.

    Values are derived from ciphertext digests, not from plaintext.
    """

    version = MOCK_ENGINE_VERSION

    def __init__(self, target_type: Optional[str] = None):
        """Initialize mock engine."""
        self.target_type = target_type or get_settings().engine_target_type

    @staticmethod
    def _pseudo_amount(ciphertext: str) -> int:
        digest = hashlib.sha256(ciphertext.encode()).digest()
        return int.from_bytes(digest[:4], "big") % 1000 + 10

    async def compute(self, ciphertexts: list[str], op: str) -> EngineResult:
        amounts = [self._pseudo_amount(c) for c in ciphertexts]
        if op == "max":
            value = max(amounts)
        elif op == "min":
            value = min(amounts)
        elif op == "avg":
            value = sum(amounts) // len(amounts)
        else:
            value = sum(amounts)

        payload = json.dumps({"value": value, "type": self.target_type}).encode()
        return EngineResult(
            result_ciphertext=base64.b64encode(payload).decode("ascii"),
            engine_version=self.version,
            items_count=len(ciphertexts),
        )
