"""
JWKS client for the identity provider.
"""

import asyncio
import binascii
import time
from typing import Any, Dict, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa
from jose.utils import base64url_decode

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import FetchError, KeyNotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


def rsa_public_key_from_jwk(entry: Dict[str, Any]) -> rsa.RSAPublicKey:
    """Build an RSA public key from a JWK's base64url modulus and exponent."""
    if entry.get("kty", "RSA") != "RSA":
        raise FetchError("Key is not an RSA key", {"kid": entry.get("kid"), "kty": entry.get("kty")})

    try:
        n = int.from_bytes(base64url_decode(entry["n"].encode("ascii")), "big")
        e = int.from_bytes(base64url_decode(entry["e"].encode("ascii")), "big")
        return rsa.RSAPublicNumbers(e, n).public_key()
    except (KeyError, AttributeError, UnicodeEncodeError, binascii.Error, ValueError) as exc:
        raise FetchError("Invalid key encoding", {"kid": entry.get("kid")}) from exc


class JWKSClient:
    """Resolves signing keys from `https://<domain>/.well-known/jwks.json`.

    With `cache_ttl` of 0 every lookup downloads the key set, so each
    verification costs one HTTPS round trip to the identity provider. A
    positive `cache_ttl` keeps the document for that many seconds; a `kid`
    missing from a cached document triggers one re-fetch, which picks up
    rotated keys.
    """

    def __init__(
        self,
        domain: str,
        cache_ttl: float = 0,
        http_timeout: float = 5.0,
        *,
        metrics: Optional[MetricsCollector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock=time.monotonic,
    ) -> None:
        self.domain = domain
        self.jwks_url = f"https://{domain}/.well-known/jwks.json"
        self.cache_ttl = cache_ttl
        self.metrics = metrics
        self.logger = get_logger("menu.jwks")
        self._clock = clock

        # kid -> raw JWK entry
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None
        self._fetched_at: float = 0.0
        self._key_cache: Dict[str, rsa.RSAPublicKey] = {}
        self._lock = asyncio.Lock()
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)

        self.circuit_breaker = CircuitBreaker("jwks", failure_threshold=5, recovery_timeout=30)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def get_public_key(self, kid: str) -> rsa.RSAPublicKey:
        """Return the verification key for `kid`.

        Raises:
            KeyNotFoundError: no entry in the key set has this kid.
            FetchError: the key set could not be downloaded or decoded.
        """
        entries = self._cached_entries()
        if entries is None or kid not in entries:
            entries = await self._refresh()

        entry = entries.get(kid)
        if entry is None:
            self.logger.warning("Key not found", kid=kid)
            raise KeyNotFoundError(kid)

        if kid in self._key_cache:
            return self._key_cache[kid]

        key = rsa_public_key_from_jwk(entry)
        if self.cache_ttl > 0:
            self._key_cache[kid] = key
        return key

    def _cached_entries(self) -> Optional[Dict[str, Dict[str, Any]]]:
        if self.cache_ttl <= 0 or self._entries is None:
            return None
        if self._clock() - self._fetched_at >= self.cache_ttl:
            return None
        return self._entries

    async def _refresh(self) -> Dict[str, Dict[str, Any]]:
        if self.cache_ttl <= 0:
            return await self._fetch_entries()

        seen = self._fetched_at
        async with self._lock:
            # Another task refreshed while we waited for the lock.
            if self._entries is not None and self._fetched_at != seen:
                return self._entries
            entries = await self._fetch_entries()
            self._entries = entries
            self._fetched_at = self._clock()
            self._key_cache.clear()
            return entries

    async def _fetch_entries(self) -> Dict[str, Dict[str, Any]]:
        start_time = time.time()
        try:
            document = await self.circuit_breaker.call(self._download)
        except CircuitBreakerOpenException as e:
            self._record_fetch("blocked", start_time)
            raise FetchError("Identity provider temporarily unavailable", {"url": self.jwks_url}) from e
        except (httpx.HTTPError, ValueError) as e:
            self._record_fetch("error", start_time)
            self.logger.error("Failed to fetch JWKS", url=self.jwks_url, error=str(e))
            raise FetchError(details={"url": self.jwks_url}) from e

        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            self._record_fetch("error", start_time)
            raise FetchError("JWKS response missing 'keys' array", {"url": self.jwks_url})

        entries = {
            entry["kid"]: entry
            for entry in keys
            if isinstance(entry, dict) and isinstance(entry.get("kid"), str)
        }
        self._record_fetch("ok", start_time)
        self.logger.info("JWKS fetched", keys_count=len(entries))
        return entries

    async def _download(self) -> Any:
        response = await self._client.get(self.jwks_url)
        response.raise_for_status()
        return response.json()

    def _record_fetch(self, status: str, start_time: float) -> None:
        if self.metrics:
            self.metrics.record_jwks_fetch(status, time.time() - start_time)

    def clear_cache(self):
        """Clear all caches."""
        self._entries = None
        self._fetched_at = 0.0
        self._key_cache.clear()
        self.logger.info("JWKS cache cleared")
