"""Content-addressed blob storage for encrypted payloads.

Blobs are opaque: nothing here decodes or inspects them. Uploads go through
the Pinata pinning API and reads go through an IPFS gateway, both with
bounded request timeouts.
"""

import base64
import hashlib
import json
import logging
from typing import Optional

import httpx

from ledgerflow_api.errors import ContentNotFound, ContentStoreError, RateLimited
from ledgerflow_api.settings import get_settings

logger = logging.getLogger(__name__)

# CIDv1 prefix: version 1, raw codec, sha2-256, 32-byte digest
_CIDV1_RAW_SHA256_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])


def cid_v1_for(data: bytes) -> str:
    """CIDv1 (raw leaves, base32) for a blob."""
    multihash = _CIDV1_RAW_SHA256_PREFIX + hashlib.sha256(data).digest()
    return "b" + base64.b32encode(multihash).decode("ascii").lower().rstrip("=")


class IPFSContentStore:
    """IPFS content store (Pinata for pinning, gateway for reads)."""

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        secret_api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize content store client."""
        settings = get_settings()
        self.gateway_url = (gateway_url or settings.ipfs_gateway_url).rstrip("/")
        self.api_url = api_url or settings.pinata_api_url
        self.api_key = api_key if api_key is not None else settings.pinata_api_key
        self.secret_api_key = (
            secret_api_key if secret_api_key is not None else settings.pinata_secret_api_key
        )
        self.timeout_seconds = timeout_seconds or settings.content_fetch_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    @staticmethod
    def _raise_for_status(response: httpx.Response, content_address: str = ""):
        if response.status_code < 400:
            return
        if response.status_code in (400, 404):
            raise ContentNotFound(f"Content not found: {content_address}")
        if response.status_code == 429:
            raise RateLimited("Content store rate limit exceeded")
        raise ContentStoreError(
            f"Content store returned HTTP {response.status_code}"
        )

    async def upload(self, data: bytes) -> str:
        """Pin a blob and return its content address."""
        if not self.api_key or not self.secret_api_key:
            raise ContentStoreError("Content store upload is not configured")

        metadata = {
            "name": "encrypted-expense",
            "keyvalues": {"type": "fhe-expense"},
        }
        async with self._client() as client:
            try:
                response = await client.post(
                    self.api_url,
                    files={"file": ("encrypted-expense.blob", data, "application/octet-stream")},
                    data={"pinataMetadata": json.dumps(metadata)},
                    headers={
                        "pinata_api_key": self.api_key,
                        "pinata_secret_api_key": self.secret_api_key,
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"Content upload failed: {e}")
                raise ContentStoreError(f"Content upload failed: {e}") from e

        self._raise_for_status(response)
        content_address = response.json().get("IpfsHash")
        if not content_address:
            raise ContentStoreError("No content address returned by content store")
        logger.debug(f"Uploaded {len(data)} bytes as {content_address}")
        return content_address

    async def retrieve(self, content_address: str) -> bytes:
        """Fetch a blob by content address."""
        async with self._client() as client:
            try:
                response = await client.get(f"{self.gateway_url}/{content_address}")
            except httpx.TimeoutException as e:
                raise ContentStoreError(f"Content fetch timed out: {content_address}") from e
            except httpx.HTTPError as e:
                raise ContentStoreError(f"Content fetch failed: {e}") from e

        self._raise_for_status(response, content_address)
        return response.content

    async def health_check(self) -> bool:
        """Check the gateway answers at all."""
        async with self._client() as client:
            try:
                response = await client.get(self.gateway_url, timeout=5.0)
            except httpx.HTTPError:
                return False
        return response.status_code < 500


class InMemoryContentStore:
    """Process-local content store for development and tests."""

    def __init__(self):
        """Initialize content store."""
        self._blobs: dict[str, bytes] = {}

    async def upload(self, data: bytes) -> str:
        content_address = cid_v1_for(data)
        self._blobs[content_address] = data
        return content_address

    async def retrieve(self, content_address: str) -> bytes:
        try:
            return self._blobs[content_address]
        except KeyError:
            raise ContentNotFound(f"Content not found: {content_address}")

    async def health_check(self) -> bool:
        return True


# Global instance
_content_store = None


def get_content_store():
    """Get or create the configured content store."""
    global _content_store
    if _content_store is None:
        provider = get_settings().content_store_provider
        if provider == "memory":
            _content_store = InMemoryContentStore()
        elif provider == "ipfs":
            _content_store = IPFSContentStore()
        else:
            raise ValueError(f"Unknown content store provider: {provider}")
        logger.info(f"Content store initialized: {provider}")
    return _content_store
