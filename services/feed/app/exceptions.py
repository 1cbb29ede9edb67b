"""
Feed service — domain-specific HTTP exceptions.

All exceptions use preset status codes and detail messages so that callers
never need to specify these at the call site. The shared error envelope
handler renders them as ``{"error": {...}, "request_id": ...}``.
"""
from fastapi import HTTPException, status


class NotAuthenticated(HTTPException):
    """No caller identity on a route that needs one."""

    def __init__(self, detail: str = "User ID required") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ServiceUnavailable(HTTPException):
    """Feed content cannot be produced right now; the client should retry."""

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feed temporarily unavailable. Please retry shortly.",
            headers={"Retry-After": "5"},
        )
