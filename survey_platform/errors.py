"""Error taxonomy shared by the auth layer, the store adapters and the API.

Every request-level failure is an `AppError` carrying an HTTP status and a
short snake_case code. The API renders them as `{"detail": code}` so clients
can branch on a stable string.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ConfigError(RuntimeError):
    """Invalid or missing configuration. Raised at startup only."""


class AppError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.code}


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"

    def __init__(self, errors: Optional[List[Dict[str, str]]] = None, code: Optional[str] = None):
        self.errors = list(errors or [])
        super().__init__(code)

    @classmethod
    def field(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.code, "errors": self.errors}


class InvalidCredentials(AppError):
    # One code for unknown user and wrong password alike.
    status_code = 401
    code = "invalid_credentials"


class Unauthenticated(AppError):
    status_code = 401
    code = "missing_token"


class InvalidToken(AppError):
    status_code = 403
    code = "token_invalid"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"


class StoreError(AppError):
    """A database failure. The driver message stays server-side unless in dev mode."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(None, message)
