from fastapi import HTTPException, status
from typing import Optional, Dict, Any

class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Unknown id or voucher code"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class InvalidStateError(BaseAPIException):
    """Voucher/report is not in a state that permits the requested transition"""
    def __init__(self, message: str = "Invalid state transition", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="STATE_001",
            message=message,
            details=details
        )

class ExpiredError(BaseAPIException):
    """Voucher expired (raised after the lazy expired transition is committed)"""
    def __init__(self, message: str = "Voucher has expired", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_410_GONE,
            error_code="VOUCHER_EXPIRED",
            message=message,
            details=details
        )

class InsufficientBalanceError(BaseAPIException):
    """Insufficient balance errors"""
    def __init__(self, message: str = "Insufficient balance", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BALANCE_001",
            message=message,
            details=details
        )

class InvalidDeltaError(BaseAPIException):
    """Zero (no-op) point delta"""
    def __init__(self, message: str = "Point delta must be non-zero", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="DELTA_001",
            message=message,
            details=details
        )

class AlreadyResolvedError(BaseAPIException):
    """Report already reached a terminal state.

    Expected under retries and concurrent operators; callers should treat it
    as "someone already resolved this".
    """
    def __init__(self, message: str = "Report already resolved", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="REPORT_ALREADY_RESOLVED",
            message=message,
            details=details
        )

class ConflictError(BaseAPIException):
    """Storage-level optimistic concurrency failure"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )

class TransientError(BaseAPIException):
    """Storage/network failure.

    The outcome of a write is unknown: re-query state before retrying.
    """
    def __init__(self, message: str = "Temporary storage failure", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="TRANSIENT_001",
            message=message,
            details=details
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )
