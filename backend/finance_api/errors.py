"""Error taxonomy shared by the store layer and the HTTP boundary.

Each error knows its HTTP status and a stable ``code``; the handlers in
``main`` render all of them as ``{"error": {"code", "message", "details"}}``.
"""

from typing import Optional


class FinanceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal Error"

    def __init__(self, message: Optional[str] = None, details: Optional[list[dict[str, str]]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)


class Unauthorized(FinanceError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Unauthorized"


class ValidationFailed(FinanceError):
    status_code = 422
    code = "VALIDATION_ERROR"
    default_message = "Invalid request payload"


class NotFound(FinanceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class EmailTaken(FinanceError):
    status_code = 409
    code = "EMAIL_TAKEN"
    default_message = "email already registered"


class NoActiveBudget(FinanceError):
    status_code = 400
    code = "NO_ACTIVE_BUDGET"
    default_message = "No active budget found"


class StoreError(FinanceError):
    # The wrapped driver error stays on __cause__; only the generic message leaves the process.
    pass
