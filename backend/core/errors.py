"""
Domain errors raised by the inventory ledger services.

Every error carries a machine-readable `code`, the HTTP status the API maps it
to, and a `context` dict (entity, requested amount, available amount, ...) so
the caller can correct the request and retry.
"""

from typing import Any, Dict, Optional

from fastapi import status


class LedgerError(Exception):
    code: str = "LEDGER_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "context": {k: (str(v) if not isinstance(v, (int, float, bool, str)) else v) for k, v in self.context.items()},
        }


class InvalidQuantity(LedgerError):
    code = "INVALID_QUANTITY"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidAssignmentTarget(LedgerError):
    code = "INVALID_ASSIGNMENT_TARGET"
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientLocationStock(LedgerError):
    code = "INSUFFICIENT_LOCATION_STOCK"
    status_code = status.HTTP_409_CONFLICT


class ExceedsAvailable(LedgerError):
    code = "EXCEEDS_AVAILABLE"
    status_code = status.HTTP_409_CONFLICT


class NothingAvailable(LedgerError):
    code = "NOTHING_AVAILABLE"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(LedgerError):
    code = "INVALID_TRANSITION"
    status_code = status.HTTP_409_CONFLICT


class Conflict(LedgerError):
    """Concurrent write collision, or a write refused because of dependent rows."""

    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class NotAuthorized(LedgerError):
    code = "NOT_AUTHORIZED"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Optional[Any] = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, entity=entity, entity_id=entity_id)


class LedgerEntryImmutable(LedgerError):
    """Raised by the ORM listeners when code tries to rewrite or drop history."""

    code = "LEDGER_ENTRY_IMMUTABLE"
    status_code = status.HTTP_409_CONFLICT
