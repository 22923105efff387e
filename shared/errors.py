"""
Shared error handling for the Menu Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class MenuServiceException(Exception):
    """Base exception for Menu Service components."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


# Authentication


class AuthenticationError(MenuServiceException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHENTICATION_ERROR"):
        super().__init__(code, message, details)


class MalformedHeaderError(AuthenticationError):
    """Authorization header missing or not `Bearer <token>`."""

    def __init__(self, message: str = "Invalid authorization header format", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_HEADER")


class MalformedTokenError(AuthenticationError):
    """Token cannot be parsed as a JWT."""

    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_TOKEN")


class UnsupportedAlgorithmError(AuthenticationError):
    """Token declares a signing algorithm outside the RSA family."""

    def __init__(self, algorithm: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Unexpected signing method: {algorithm}",
            {"alg": algorithm, **(details or {})},
            code="UNSUPPORTED_ALGORITHM"
        )


class KeyResolutionError(AuthenticationError):
    """Verification key could not be resolved."""

    def __init__(self, message: str = "Unable to resolve signing key", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="KEY_RESOLUTION_ERROR")


class InvalidSignatureError(AuthenticationError):
    """Signature does not verify against the resolved key."""

    def __init__(self, message: str = "Invalid token signature", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_SIGNATURE")


class MalformedClaimsError(AuthenticationError):
    """Claim set is not a key/value mapping."""

    def __init__(self, message: str = "Invalid token claims", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_CLAIMS")


class TokenExpiredError(AuthenticationError):
    """Expiry claim missing or in the past."""

    def __init__(self, message: str = "Token has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="TOKEN_EXPIRED")


class InvalidAudienceError(AuthenticationError):
    """Audience claim does not contain the expected audience."""

    def __init__(self, message: str = "Invalid audience", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_AUDIENCE")


class MissingAudienceError(AuthenticationError):
    """Audience claim absent."""

    def __init__(self, message: str = "Audience claim is required", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MISSING_AUDIENCE")


class MissingSubjectError(AuthenticationError):
    """Subject claim absent."""

    def __init__(self, message: str = "Subject claim is required", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MISSING_SUBJECT")


# Authorization


class AuthorizationError(MenuServiceException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHORIZATION_ERROR"):
        super().__init__(code, message, details)


class ForbiddenError(AuthorizationError):
    """Acting on a resource owned by another user."""

    def __init__(self, message: str = "You can only delete your own favorites", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="FORBIDDEN")


# Absence


class NotFoundError(MenuServiceException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None,
                 code: str = "NOT_FOUND"):
        super().__init__(code, message, details)


class MenuNotFoundError(NotFoundError):
    def __init__(self, menu_id: int):
        super().__init__("Menu not found", {"menu_id": menu_id}, code="MENU_NOT_FOUND")


class FavoriteNotFoundError(NotFoundError):
    def __init__(self, message: str = "Favorite not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="FAVORITE_NOT_FOUND")


class KeyNotFoundError(NotFoundError):
    def __init__(self, kid: str):
        super().__init__("Unable to find appropriate key", {"kid": kid}, code="KEY_NOT_FOUND")


# Conflicts


class ConflictError(MenuServiceException):
    """Write collides with an existing row."""

    status_code = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None,
                 code: str = "CONFLICT"):
        super().__init__(code, message, details)


class DuplicateFavoriteError(ConflictError):
    def __init__(self, user_id: int, menu_id: int):
        super().__init__(
            "Menu is already in favorites",
            {"user_id": user_id, "menu_id": menu_id},
            code="DUPLICATE_FAVORITE"
        )


class DuplicateSubjectError(ConflictError):
    """Another request created the user first; re-read to recover."""

    def __init__(self, subject: str):
        super().__init__("User already exists for subject", {"subject": subject}, code="DUPLICATE_SUBJECT")


# Bad input


class ValidationError(MenuServiceException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


# Internal faults


class StorageError(MenuServiceException):
    """Storage layer fault."""

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class FetchError(MenuServiceException):
    """Failure talking to the identity provider."""

    def __init__(self, message: str = "Failed to fetch key set", details: Optional[Dict[str, Any]] = None):
        super().__init__("FETCH_ERROR", message, details)
