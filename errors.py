"""
Error taxonomy for the scheduling engine

Services raise these; the API layer maps them to HTTP responses.
"""

from typing import Any, Dict, Optional


class CareCadenceError(Exception):
    """Base class for engine errors with a structured reason"""

    code: str = "error"

    def __init__(self, reason: str, **context: Any):
        super().__init__(reason)
        self.reason = reason
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.reason, **self.context}


class ValidationError(CareCadenceError, ValueError):
    """Malformed input to an operation; nothing was changed"""

    code = "validation_error"


class StateConflictError(CareCadenceError):
    """Transition not allowed from the current status"""

    code = "state_conflict"

    def __init__(self, reason: str, current_status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(reason, current_status=current_status, action=action)
        self.current_status = current_status
        self.action = action


class NotFoundError(CareCadenceError, LookupError):
    """Referenced entity does not exist"""

    code = "not_found"


class PersistenceError(CareCadenceError):
    """Storage failure; the session was rolled back and the call may be retried"""

    code = "persistence_error"

    def __init__(self, reason: str, operation: str):
        super().__init__(reason, operation=operation, retryable=True)
        self.operation = operation
