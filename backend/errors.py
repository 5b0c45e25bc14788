"""Typed failures raised by the core and rendered by the exception handlers in main."""
from typing import List, Optional

from fastapi import status

# Where FastAPI found the bad value; not part of the field name
_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[dict]] = None):
        self.errors = errors or []
        if message is None and self.errors:
            message = ", ".join(e["message"] for e in self.errors)
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Build from a pydantic ``ValidationError``, one entry per failing field."""
        errors = []
        for err in exc.errors():
            loc = tuple(err.get("loc", ()))
            if loc and loc[0] in _LOCATION_PREFIXES:
                loc = loc[1:]
            field = ".".join(str(p) for p in loc)
            msg = err.get("msg", "Invalid value")
            if msg.startswith("Value error, "):
                msg = msg[len("Value error, "):]
            errors.append({"field": field, "message": f"{field}: {msg}" if field else msg})
        return cls(errors=errors)


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to access this resource"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class InternalError(AppError):
    pass


class TokenError(Exception):
    """Raised by the token service; never reaches the client directly."""


class InvalidTokenError(TokenError):
    pass


class ExpiredTokenError(TokenError):
    pass
