"""
Token validation package.

Turns an `Authorization: Bearer <token>` header into a verified subject:
RSA signature against the identity provider's key set, then expiry,
audience and subject checks. Every failure is an AuthenticationError
subclass; nothing is downgraded to anonymous access.
"""

from .token_validator import RSA_ALGORITHMS, TokenValidator, extract_bearer_token

__all__ = ["RSA_ALGORITHMS", "TokenValidator", "extract_bearer_token"]
