"""Exception taxonomy shared by the page handlers."""

from __future__ import annotations

from typing import Optional

from fastapi import status


class PageError(Exception):
    """Failure that ends a page request with the generic error page."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    title: str = "Something went wrong"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationAbsent(PageError):
    """No identity was resolved for a route that requires one."""

    status_code = status.HTTP_401_UNAUTHORIZED
    title = "Sign in required"


class AuthorizationMismatch(PageError):
    """The resolved identity does not own the requested resource."""

    status_code = status.HTTP_403_FORBIDDEN
    title = "Unauthorized"


class BackendRejection(PageError):
    """The backend API answered a read with a structured error."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.code = code


class BackendTransportError(Exception):
    """Raised when the backend API cannot be reached or answers with garbage."""


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects a call or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


__all__ = [
    "AuthenticationAbsent",
    "AuthorizationMismatch",
    "BackendRejection",
    "BackendTransportError",
    "IdentityProviderError",
    "PageError",
]
