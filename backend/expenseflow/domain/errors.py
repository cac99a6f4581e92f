"""Domain Errors

Every error the engine raises on purpose derives from DomainError. The API
layer turns them into `{"error": {"code", "message", "details"}}` with the
class's http_status.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.error_code, "message": self.message, "details": self.details}}


# 401 / 403
class AuthenticationError(DomainError):
    """X-User-Id missing, unknown or inactive"""
    error_code = "AUTHENTICATION_ERROR"
    http_status = 401


class AuthorizationError(DomainError):
    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class PermissionDeniedError(AuthorizationError):
    """Role or ownership check failed"""
    error_code = "PERMISSION_DENIED"


class NotEligibleApproverError(AuthorizationError):
    """Actor has no pending entry at the current approval level"""
    error_code = "NOT_ELIGIBLE_APPROVER"


# 400
class ValidationError(DomainError):
    error_code = "VALIDATION_ERROR"


class WorkflowValidationError(ValidationError):
    """Workflow definition is inconsistent; details lists each problem"""
    error_code = "WORKFLOW_VALIDATION_ERROR"


# 404
class NotFoundError(DomainError):
    error_code = "NOT_FOUND"
    http_status = 404


class WorkflowNotFoundError(NotFoundError):
    """Missing, inactive, or belongs to another tenant"""
    error_code = "WORKFLOW_NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    """Missing, belongs to another tenant, or hidden from the actor"""
    error_code = "EXPENSE_NOT_FOUND"


# 409
class ConflictError(DomainError):
    error_code = "CONFLICT"
    http_status = 409


class ConcurrencyError(ConflictError):
    """Versioned write lost against a concurrent update"""
    error_code = "CONCURRENCY_CONFLICT"


class InvalidStateError(ConflictError):
    """Expense status does not allow the action"""
    error_code = "INVALID_STATE"


class AlreadyResolvedError(InvalidStateError):
    """Expense is already approved, rejected or paid"""
    error_code = "ALREADY_RESOLVED"


class AlreadyExistsError(ConflictError):
    error_code = "ALREADY_EXISTS"


# 502
class ExternalServiceError(DomainError):
    error_code = "EXTERNAL_SERVICE_ERROR"
    http_status = 502


class NotificationSendError(ExternalServiceError):
    """Mail relay rejected or failed a notification"""
    error_code = "NOTIFICATION_SEND_ERROR"
