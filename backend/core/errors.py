"""
LEDGER ERROR TAXONOMY

Every rejection raised by the ledger core is a LedgerError subclass with a
stable machine-readable code. Route handlers translate these into HTTP
responses; the core itself never imports FastAPI.

    LedgerError
    +-- ValidationError          VALIDATION_ERROR          400
    +-- ForbiddenError           FORBIDDEN                 403
    +-- NotFoundError            NOT_FOUND                 404
    +-- InvalidStateTransition   INVALID_STATE_TRANSITION  409
    +-- LinkIntegrityError       LINK_INTEGRITY_ERROR      422
    +-- ConcurrentModificationError  CONCURRENT_MODIFICATION  409

NotFoundError is also raised for records outside the caller's visibility,
so that "missing" and "not yours" cannot be told apart.
"""

from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    """Base class for ledger core rejections."""
    code = "LEDGER_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""
    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class ForbiddenError(LedgerError):
    """Authenticated, but not entitled to this operation on this record."""
    code = "FORBIDDEN"
    http_status = 403


class NotFoundError(LedgerError):
    """No such record, or the record is outside the caller's visibility."""
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class InvalidStateTransition(LedgerError):
    """Raised when a status change is not allowed from the current state."""
    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, entity: str, from_state: str, to_state: str, allowed: List[str] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []

        allowed_str = f" Allowed transitions from '{from_state}': {self.allowed}" if self.allowed else ""
        message = f"Invalid transition for {entity}: '{from_state}' -> '{to_state}'.{allowed_str}"
        super().__init__(message, {"from": from_state, "to": to_state, "allowed": self.allowed})


class LinkIntegrityError(LedgerError):
    """A link id does not resolve, or more than one link is set."""
    code = "LINK_INTEGRITY_ERROR"
    http_status = 422


class ConcurrentModificationError(LedgerError):
    """The record kept changing underneath a conditional write."""
    code = "CONCURRENT_MODIFICATION"
    http_status = 409
