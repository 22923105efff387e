"""
JWKS client package.

Retrieves the identity provider's JSON Web Key Set and turns the entry
matching a token's key id (kid) into an RSA public key.

Key points:
- Fetches go through a circuit breaker and fail as FetchError.
- Caching is opt-in (cache_ttl > 0); a missing kid forces one re-fetch.
"""

from .client import JWKSClient, rsa_public_key_from_jwk

__all__ = ["JWKSClient", "rsa_public_key_from_jwk"]
