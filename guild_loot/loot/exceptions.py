"""
Domain errors raised by the loot services.

Each error carries the HTTP status it maps to and a stable code for clients;
``loot.api.error_handling.loot_exception_handler`` renders them.
"""

from typing import Optional


class LootError(Exception):
    """Base exception for loot tracker errors."""

    status_code = 400
    code = 'LOOT_ERROR'

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class Unauthenticated(LootError):
    """Raised when an operation needs a signed-in user."""
    status_code = 401
    code = 'UNAUTHENTICATED'


class Forbidden(LootError):
    """Raised when a role, attendance or restriction check fails."""
    status_code = 403
    code = 'FORBIDDEN'


class NotFound(LootError):
    """Raised when a referenced record does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class ValidationFailed(LootError):
    """Raised when request values are malformed or out of bounds."""
    status_code = 400
    code = 'VALIDATION_FAILED'


class InvalidItem(ValidationFailed):
    """Raised when an item id does not belong to the referenced kill."""
    code = 'INVALID_ITEM'


class InvalidBid(ValidationFailed):
    """Raised when a bid amount does not beat the current price."""
    code = 'INVALID_BID'


class Conflict(LootError):
    """Raised when the request collides with existing state."""
    status_code = 409
    code = 'CONFLICT'


class InvalidState(Conflict):
    """Raised when a record is not in a state that allows the transition."""
    code = 'INVALID_STATE'


class InsufficientFunds(LootError):
    """Raised when a wallet cannot cover a hold or charge."""
    status_code = 409
    code = 'INSUFFICIENT_FUNDS'

    def __init__(self, available: int, required: int, message: Optional[str] = None):
        self.available = available
        self.required = required
        message = message or f"Insufficient diamonds: {available} available, {required} required"
        super().__init__(message)
