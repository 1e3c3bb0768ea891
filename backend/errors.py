"""
Error taxonomy for the ledger backend.

Every error a request can fail with carries an HTTP status and a
machine-readable code. Flask handlers in app.py render them as:

    {"error": {"code": ..., "message": ..., "traceId": ..., "details": ...}}

RowUpsertError is the exception: it is raised and contained inside the
storage layer and the sync orchestrator and never reaches a response.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for errors with an HTTP mapping."""

    status = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details or {}

    def to_dict(self, trace_id: Optional[str] = None) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message, "traceId": trace_id}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ConfigurationError(LedgerError):
    """Required keys or credentials are missing. Never retried."""

    status = 500
    code = "CONFIGURATION_ERROR"


class DecryptionError(LedgerError):
    status = 500
    code = "DECRYPTION_FAILED"


class Unauthorized(LedgerError):
    """Bearer token missing or rejected.

    ``kind`` separates the failure modes callers care about:
    missing, malformed, expired, signature_invalid, audience_mismatch,
    issuer_mismatch, missing_subject, undecryptable.
    """

    status = 401
    code = "UNAUTHORIZED"

    def __init__(self, kind: str, message: str):
        super().__init__(message, details={"kind": kind})
        self.kind = kind


class AggregatorTimeoutError(LedgerError):
    """The aggregator did not answer within the per-call timeout."""

    status = 504
    code = "AGGREGATOR_TIMEOUT"


class UpstreamError(LedgerError):
    """The aggregator answered with a non-2xx response."""

    status = 502
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, upstream_status: Optional[int] = None, payload: Any = None):
        details = {"upstreamStatus": upstream_status}
        if payload is not None:
            details["payload"] = payload
        super().__init__(message, details=details)
        self.upstream_status = upstream_status
        self.payload = payload


class RowUpsertError(LedgerError):
    """A single record could not be mapped or written."""

    code = "ROW_UPSERT_FAILED"

    def __init__(self, message: str, entity: str, key: Optional[str] = None):
        super().__init__(message, details={"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class ValidationError(LedgerError):
    status = 400
    code = "INVALID_REQUEST"


class CredentialConflictError(LedgerError):
    status = 409
    code = "CREDENTIAL_CONFLICT"


class SchemaNotReadyError(LedgerError):
    status = 503
    code = "SCHEMA_NOT_MIGRATED"


class TenantContextError(LedgerError):
    """A storage call named an owner other than the session's tenant."""

    status = 500
    code = "TENANT_CONTEXT_MISMATCH"
