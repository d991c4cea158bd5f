from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details=details
        )

class PolicyViolationError(AppException):
    """User-correctable rule violation. Never retried automatically."""
    def __init__(
        self,
        message: str,
        error_code: str = "POLICY_VIOLATION",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )

class InsufficientBalanceError(PolicyViolationError):
    def __init__(self, message: str = "You do not have enough leave days remaining", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="INSUFFICIENT_BALANCE", details=details)

class OverlappingLeaveError(PolicyViolationError):
    def __init__(self, message: str = "You have an overlapping leave request for these dates", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="OVERLAPPING_LEAVE", details=details)

class InvalidLeaveTransitionError(PolicyViolationError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="INVALID_TRANSITION", details=details)

class InvalidLeaveDatesError(PolicyViolationError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="INVALID_DATES", details=details)

class AlreadyProcessedError(AppException):
    """Raised when a unique-constraint conflict shows the work was already done. Safe to retry."""
    def __init__(self, message: str = "This record was already processed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="ALREADY_PROCESSED",
            details=details
        )

class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_FAILED"
        )

class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )
