"""Error taxonomy for the transport request service.

Every entry point either returns a result or raises one of these. The HTTP
layer turns them into a uniform JSON body via ``to_dict()``.
"""

from typing import Any, Dict, Optional


class TransportServiceError(Exception):
    """Base exception for all transport request errors."""

    def __init__(
        self, detail: str, status_code: int = 500, error_code: str = "INTERNAL_ERROR"
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "success": False,
            "error": self.error_code,
            "detail": self.detail,
        }


class NotFound(TransportServiceError):
    """Raised when a referenced transport request does not exist."""

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(
            detail=f"Transport request {request_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
        )


class InvalidInput(TransportServiceError):
    """Raised for malformed input. Never reaches the record store."""

    def __init__(self, detail: str, error_code: str = "INVALID_INPUT", status_code: int = 400):
        super().__init__(detail=detail, status_code=status_code, error_code=error_code)


class InvalidStatus(InvalidInput):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(detail=f"Invalid status value: {value!r}")


class InvalidTransition(InvalidInput):
    """Raised when a status change would leave a terminal state."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            detail=f"Cannot change status from {current} to {requested}",
            error_code="INVALID_TRANSITION",
            status_code=409,
        )


class Unauthorized(TransportServiceError):
    """Raised when a gated operation is attempted without a valid session."""

    def __init__(
        self,
        detail: str = "Dispatcher login required",
        clear_session: bool = False,
        redirect: Optional[str] = None,
    ):
        self.clear_session = clear_session
        self.redirect = redirect
        super().__init__(detail=detail, status_code=401, error_code="UNAUTHORIZED")

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.redirect:
            body["redirect"] = self.redirect
        return body


class AuthFailed(TransportServiceError):
    def __init__(self):
        super().__init__(
            detail="Invalid username or password",
            status_code=401,
            error_code="AUTH_FAILED",
        )


class RemoteError(TransportServiceError):
    """Raised on the client side when the service answers with an error or is unreachable."""

    def __init__(self, detail: str, status_code: int = 503, error_code: str = "NETWORK_ERROR"):
        super().__init__(detail=detail, status_code=status_code, error_code=error_code)


class StoreFailure(TransportServiceError):
    """Raised when the record store itself errors."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            detail=f"Could not {operation} transport requests, please try again",
            status_code=503,
            error_code="STORE_FAILURE",
        )
