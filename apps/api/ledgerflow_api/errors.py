"""Error taxonomy and the uniform HTTP error envelope."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LedgerflowError(Exception):
    """Base class for domain errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DuplicateFingerprint(LedgerflowError):
    """Ledger already holds an attestation with this fingerprint."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "DUPLICATE_FINGERPRINT"

    def __init__(self, fingerprint: str):
        super().__init__(f"Already attested: {fingerprint}")
        self.fingerprint = fingerprint


class NotFound(LedgerflowError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class ValidationError(LedgerflowError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"


class ContentStoreError(LedgerflowError):
    """Content store request failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "CONTENT_STORE_ERROR"


class ContentNotFound(ContentStoreError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "CONTENT_NOT_FOUND"


class RateLimited(ContentStoreError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "CONTENT_STORE_RATE_LIMITED"


class ContentUnavailable(LedgerflowError):
    """A referenced blob could not be fetched; the whole batch fails."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "CONTENT_UNAVAILABLE"

    def __init__(self, content_address: str, reason: str):
        super().__init__(f"Content unavailable for {content_address}: {reason}")
        self.content_address = content_address
        self.reason = reason


class EngineUnreachable(LedgerflowError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "ENGINE_UNREACHABLE"


class UnsupportedCiphertextShape(LedgerflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "UNSUPPORTED_CIPHERTEXT_SHAPE"


def error_envelope(message: str, error_code: str, status_code: int) -> JSONResponse:
    """Build the uniform error response body."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "error_code": error_code},
    )


def register_exception_handlers(app: FastAPI):
    """Install handlers that render every error in the same envelope."""

    @app.exception_handler(LedgerflowError)
    async def ledgerflow_error_handler(request: Request, exc: LedgerflowError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return error_envelope(exc.message, exc.error_code, exc.status_code)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        response = error_envelope(str(exc.detail), "HTTP_ERROR", exc.status_code)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
        return error_envelope(message, ValidationError.error_code, status.HTTP_400_BAD_REQUEST)
