"""Ledgerflow API client."""

import base64
from typing import Optional

import requests


class LedgerflowClient:
    """Client for Ledgerflow API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 30.0):
        """Initialize client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, payload: dict) -> dict:
        response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def upload_ciphertext(self, ciphertext: bytes) -> dict:
        """Store an encrypted blob; returns its content address and fingerprint."""
        return self._post(
            "/v1/content",
            {"ciphertext": base64.b64encode(ciphertext).decode("ascii")},
        )

    def attest(
        self,
        submitter: str,
        content_address: str,
        fingerprint: Optional[str] = None,
        auxiliary: bytes = b"",
    ) -> dict:
        """Submit an attestation. A duplicate fingerprint raises HTTPError (409)."""
        payload = {
            "submitter": submitter,
            "content_address": content_address,
            "auxiliary": "0x" + auxiliary.hex(),
        }
        if fingerprint:
            payload["fingerprint"] = fingerprint
        return self._post("/v1/ledger/attestations", payload)

    def register_pending(
        self,
        content_address: str,
        submitter_address: str,
        category: Optional[str] = None,
        note: Optional[str] = None,
    ) -> dict:
        return self._post(
            "/v1/records/pending",
            {
                "content_address": content_address,
                "submitter_address": submitter_address,
                "category": category,
                "note": note,
            },
        )

    def list_records(
        self,
        category: Optional[str] = None,
        submitter_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> dict:
        """List indexed records, newest first."""
        params = {}
        if category:
            params["category"] = category
        if submitter_address:
            params["submitterAddress"] = submitter_address
        if limit:
            params["limit"] = limit
        return self._get("/v1/records", params=params)

    def get_record(self, content_address: str) -> dict:
        return self._get(f"/v1/records/{content_address}")

    def get_proof(self, content_address: str) -> dict:
        """Chain metadata for a record (never payload values)."""
        return self._get(f"/v1/proof/{content_address}")

    def aggregate(self, content_addresses: list[str], operation: str = "sum") -> dict:
        """Aggregate encrypted records; the result stays encrypted."""
        return self._post(
            "/v1/aggregate",
            {"content_addresses": content_addresses, "operation": operation},
        )

    def verify_ledger(self) -> dict:
        return self._get("/v1/ledger/verify")
