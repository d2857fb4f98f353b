"""HTTP-aware error hierarchy shared by routers and services."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException


class ApiError(HTTPException):
    """Base error; ``detail`` always carries ``code``, ``message`` and ``details``."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        resolved_status = status_code or type(self).status_code
        resolved_code = code or type(self).code
        super().__init__(
            status_code=resolved_status,
            detail={"code": resolved_code, "message": message, "details": details},
        )
        self.code = resolved_code
        self.message = message
        self.details = details


class ValidationError(ApiError):
    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, constraint: Optional[str] = None):
        details = None
        if field or constraint:
            details = {"field": field, "constraint": constraint}
        super().__init__(message, details=details)


class AuthorizationError(ApiError):
    status_code = 403
    code = "FORBIDDEN"

    @classmethod
    def authentication_required(cls, message: str) -> "AuthorizationError":
        return cls(message, status_code=401, code="UNAUTHORIZED")


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class TransientStorageError(ApiError):
    status_code = 503
    code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str = "Catalog storage is temporarily unavailable. Try again shortly."):
        super().__init__(message)


class RateLimitedError(ApiError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, scope: str, *, limit: int, window_seconds: int, retry_after: int):
        super().__init__(
            f"Rate limit exceeded for {scope}. Try again later.",
            details={"limit": limit, "windowSeconds": window_seconds},
        )
        self.headers = {"Retry-After": str(max(retry_after, 1))}
