from __future__ import annotations


class IdentityError(Exception):
    """Base error for identity provider failures."""


class InvalidTokenError(IdentityError):
    def __init__(self, message: str = "Unable to verify token.") -> None:
        super().__init__(message)


class TokenExpiredError(InvalidTokenError):
    def __init__(self) -> None:
        super().__init__("Token has expired.")


class IdentityUnavailableError(IdentityError):
    """Raised when the identity provider cannot be reached or rejects an admin call."""
