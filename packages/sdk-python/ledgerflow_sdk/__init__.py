"""Ledgerflow Python SDK."""

__version__ = "0.1.0"

from ledgerflow_sdk.client import LedgerflowClient
from ledgerflow_sdk.signature import sign_engine_request, verify_engine_request

__all__ = ["LedgerflowClient", "sign_engine_request", "verify_engine_request"]
