"""
Token validation for protected routes.
"""

import json
import math
import time
from typing import Any, Callable, Dict, Optional, Protocol

from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from jose import jwk, jws, jwt
from jose.exceptions import JOSEError, JWTError

from shared.errors import (
    AuthenticationError, FetchError, InvalidAudienceError, InvalidSignatureError,
    KeyNotFoundError, KeyResolutionError, MalformedClaimsError, MalformedHeaderError,
    MalformedTokenError, MissingAudienceError, MissingSubjectError, TokenExpiredError,
    UnsupportedAlgorithmError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

RSA_ALGORITHMS = ("RS256", "RS384", "RS512")


class KeyResolver(Protocol):
    async def get_public_key(self, kid: str) -> rsa.RSAPublicKey:
        ...


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        raise MalformedHeaderError("Authorization header is required")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise MalformedHeaderError()

    return parts[1]


class TokenValidator:
    """Verifies RSA-signed access tokens and returns their subject.

    Checks run in a fixed order: algorithm, key resolution, signature,
    claim decoding, expiry, audience, subject. The first failing check
    raises its own AuthenticationError subclass.
    """

    def __init__(
        self,
        key_resolver: KeyResolver,
        audience: str,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.key_resolver = key_resolver
        self.audience = audience
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("menu.validator")

    async def verify_authorization(self, authorization: Optional[str]) -> str:
        """Verify the token carried by an Authorization header value."""
        try:
            token = extract_bearer_token(authorization)
        except MalformedHeaderError as e:
            self._record(e.code)
            raise
        return await self.verify_token(token)

    async def verify_token(self, token: str) -> str:
        """Verify a raw token and return its subject."""
        try:
            subject = await self._verify(token)
        except AuthenticationError as e:
            self._record(e.code)
            self.logger.warning("Token verification failed", code=e.code, error=e.message)
            raise

        self._record("ok")
        self.logger.debug("Token verified", subject=subject)
        return subject

    async def _verify(self, token: str) -> str:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise MalformedTokenError(details={"error": str(e)}) from e

        algorithm = header.get("alg")
        if algorithm not in RSA_ALGORITHMS:
            raise UnsupportedAlgorithmError(algorithm)

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise KeyResolutionError("kid header is required")

        try:
            public_key = await self.key_resolver.get_public_key(kid)
        except (KeyNotFoundError, FetchError) as e:
            raise KeyResolutionError(e.message, {"kid": kid, "cause": e.code}) from e

        payload = self._verify_signature(token, public_key, algorithm)
        claims = self._decode_claims(payload)

        self._check_expiry(claims)
        self._check_audience(claims)
        return self._subject(claims)

    def _verify_signature(self, token: str, public_key: rsa.RSAPublicKey, algorithm: str) -> bytes:
        pem = public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode("ascii")
        try:
            key = jwk.construct(pem, algorithm)
            return jws.verify(token, key, algorithms=[algorithm])
        except JOSEError as e:
            raise InvalidSignatureError(details={"error": str(e)}) from e

    def _decode_claims(self, payload: bytes) -> Dict[str, Any]:
        try:
            claims = json.loads(payload)
        except ValueError as e:
            raise MalformedClaimsError() from e
        if not isinstance(claims, dict):
            raise MalformedClaimsError()
        return claims

    def _check_expiry(self, claims: Dict[str, Any]) -> None:
        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenExpiredError("Expiration claim is required")
        if isinstance(exp, float) and not math.isfinite(exp):
            raise TokenExpiredError("Expiration claim must be finite", {"exp": str(exp)})
        # now == exp counts as expired
        if exp <= self._clock():
            raise TokenExpiredError(details={"exp": exp})

    def _check_audience(self, claims: Dict[str, Any]) -> None:
        aud = claims.get("aud")
        if aud is None:
            raise MissingAudienceError()

        if isinstance(aud, str):
            valid = aud == self.audience
        elif isinstance(aud, list):
            valid = any(isinstance(item, str) and item == self.audience for item in aud)
        else:
            valid = False

        if not self.audience or not valid:
            raise InvalidAudienceError()

    def _subject(self, claims: Dict[str, Any]) -> str:
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise MissingSubjectError()
        return subject

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_token_verification(result)
