"""
Unit tests for TokenValidator.
"""

import base64
import json
import time

import pytest
from jose import jwt
from prometheus_client import CollectorRegistry

from shared.errors import (
    AuthenticationError, FetchError, InvalidAudienceError, InvalidSignatureError,
    KeyResolutionError, MalformedClaimsError, MalformedHeaderError, MalformedTokenError,
    MissingAudienceError, MissingSubjectError, TokenExpiredError, UnsupportedAlgorithmError
)
from shared.metrics import MetricsCollector
from service_menu.app.validation.token_validator import TokenValidator, extract_bearer_token

from .conftest import AUDIENCE, KID, StaticKeyResolver


def _segment(data) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class TestExtractBearerToken:
    """Test cases for Authorization header parsing."""

    def test_valid_header(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    @pytest.mark.parametrize("header", [
        None,
        "",
        "Bearer",
        "Bearer ",
        "Basic abc",
        "bearer abc",
        "Bearer a b",
        "abc.def.ghi",
    ])
    def test_malformed_header(self, header):
        with pytest.raises(MalformedHeaderError) as exc_info:
            extract_bearer_token(header)

        assert exc_info.value.status_code == 401


class TestTokenValidator:
    """Test cases for TokenValidator."""

    @pytest.fixture
    def now(self):
        return time.time()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("menu", CollectorRegistry())

    @pytest.fixture
    def validator(self, key_resolver, metrics, now):
        return TokenValidator(key_resolver, AUDIENCE, metrics=metrics, clock=lambda: now)

    @pytest.mark.asyncio
    async def test_valid_token(self, validator, make_token, metrics):
        """Test a well-formed token yields its subject."""
        token = make_token("auth0|abc")

        subject = await validator.verify_token(token)

        assert subject == "auth0|abc"
        assert metrics.registry.get_sample_value(
            "token_verifications_total", {"result": "ok"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_verify_authorization_header(self, validator, make_token):
        token = make_token("auth0|abc")

        assert await validator.verify_authorization(f"Bearer {token}") == "auth0|abc"

    @pytest.mark.asyncio
    async def test_missing_header_counts_failure(self, validator, metrics):
        with pytest.raises(MalformedHeaderError):
            await validator.verify_authorization(None)

        assert metrics.registry.get_sample_value(
            "token_verifications_total", {"result": "MALFORMED_HEADER"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_garbage_token(self, validator):
        with pytest.raises(MalformedTokenError):
            await validator.verify_token("not-a-jwt")

    @pytest.mark.asyncio
    async def test_hmac_algorithm_rejected(self, validator, key_resolver):
        """Test symmetric algorithms are refused before any key lookup."""
        token = jwt.encode(
            {"sub": "auth0|abc", "aud": AUDIENCE, "exp": int(time.time()) + 60},
            "shared-secret",
            algorithm="HS256",
            headers={"kid": KID}
        )

        with pytest.raises(UnsupportedAlgorithmError):
            await validator.verify_token(token)

        assert key_resolver.calls == []

    @pytest.mark.asyncio
    async def test_none_algorithm_rejected(self, validator):
        token = ".".join([
            _segment({"alg": "none", "kid": KID}),
            _segment({"sub": "auth0|abc", "aud": AUDIENCE, "exp": int(time.time()) + 60}),
            ""
        ])

        with pytest.raises(UnsupportedAlgorithmError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_missing_kid(self, validator, make_token):
        token = make_token(kid=None)

        with pytest.raises(KeyResolutionError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_unknown_kid(self, validator, make_token):
        """Test a kid absent from the key set is a key resolution failure."""
        token = make_token(kid="rotated-away")

        with pytest.raises(KeyResolutionError) as exc_info:
            await validator.verify_token(token)

        assert exc_info.value.details["kid"] == "rotated-away"
        assert exc_info.value.details["cause"] == "KEY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_key_set_unavailable(self, make_token, now):
        """Test a fetch failure surfaces as an authentication error."""

        class FailingResolver:
            async def get_public_key(self, kid):
                raise FetchError()

        validator = TokenValidator(FailingResolver(), AUDIENCE, clock=lambda: now)

        with pytest.raises(KeyResolutionError) as exc_info:
            await validator.verify_token(make_token())

        assert isinstance(exc_info.value, AuthenticationError)
        assert exc_info.value.details["cause"] == "FETCH_ERROR"

    @pytest.mark.asyncio
    async def test_signed_by_other_key(self, validator, make_token, other_signing_key):
        """Test a token signed with a key other than the published one."""
        token = make_token(key=other_signing_key)

        with pytest.raises(InvalidSignatureError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_tampered_payload(self, validator, make_token):
        header, _, signature = make_token("auth0|abc").split(".")
        forged = _segment({"sub": "auth0|admin", "aud": AUDIENCE, "exp": int(time.time()) + 60})

        with pytest.raises(InvalidSignatureError):
            await validator.verify_token(".".join([header, forged, signature]))

    @pytest.mark.asyncio
    async def test_non_object_claims(self, key_resolver, signing_key, now):
        from jose import jws
        from .conftest import private_pem

        token = jws.sign(b"[1, 2, 3]", private_pem(signing_key), headers={"kid": KID}, algorithm="RS256")
        validator = TokenValidator(key_resolver, AUDIENCE, clock=lambda: now)

        with pytest.raises(MalformedClaimsError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_expired_one_second_ago(self, validator, make_token, now):
        token = make_token(exp=int(now) - 1)

        with pytest.raises(TokenExpiredError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_expiry_equal_to_now_is_expired(self, key_resolver, make_token):
        exp = int(time.time()) + 100
        validator = TokenValidator(key_resolver, AUDIENCE, clock=lambda: float(exp))

        with pytest.raises(TokenExpiredError):
            await validator.verify_token(make_token(exp=exp))

    @pytest.mark.asyncio
    async def test_valid_for_one_more_second(self, key_resolver, make_token):
        exp = int(time.time()) + 100
        validator = TokenValidator(key_resolver, AUDIENCE, clock=lambda: float(exp - 1))

        assert await validator.verify_token(make_token("auth0|abc", exp=exp)) == "auth0|abc"

    @pytest.mark.asyncio
    async def test_missing_exp(self, validator, make_token):
        with pytest.raises(TokenExpiredError):
            await validator.verify_token(make_token(omit=("exp",)))

    @pytest.mark.asyncio
    async def test_non_numeric_exp(self, validator, make_token):
        with pytest.raises(TokenExpiredError):
            await validator.verify_token(make_token(exp="tomorrow"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exp", [float("nan"), float("inf")])
    async def test_non_finite_exp(self, validator, make_token, exp):
        """Test NaN and Infinity expirations are rejected instead of never expiring."""
        with pytest.raises(TokenExpiredError):
            await validator.verify_token(make_token(exp=exp))

    @pytest.mark.asyncio
    async def test_huge_integer_exp_is_accepted(self, validator, make_token):
        assert await validator.verify_token(make_token("auth0|abc", exp=10**30)) == "auth0|abc"

    @pytest.mark.asyncio
    async def test_audience_list_containing_expected(self, validator, make_token):
        token = make_token("auth0|abc", aud=["https://other.example.com", AUDIENCE])

        assert await validator.verify_token(token) == "auth0|abc"

    @pytest.mark.asyncio
    async def test_audience_list_without_expected(self, validator, make_token):
        token = make_token(aud=["https://other.example.com"])

        with pytest.raises(InvalidAudienceError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_wrong_audience(self, validator, make_token):
        with pytest.raises(InvalidAudienceError):
            await validator.verify_token(make_token(aud="https://other.example.com"))

    @pytest.mark.asyncio
    async def test_audience_prefix_is_not_a_match(self, validator, make_token):
        with pytest.raises(InvalidAudienceError):
            await validator.verify_token(make_token(aud=AUDIENCE + "/extra"))

    @pytest.mark.asyncio
    async def test_missing_audience(self, validator, make_token):
        with pytest.raises(MissingAudienceError):
            await validator.verify_token(make_token(omit=("aud",)))

    @pytest.mark.asyncio
    async def test_unconfigured_audience_rejects_everything(self, key_resolver, make_token):
        validator = TokenValidator(key_resolver, "")

        with pytest.raises(InvalidAudienceError):
            await validator.verify_token(make_token(aud=""))

    @pytest.mark.asyncio
    async def test_missing_subject(self, validator, make_token):
        with pytest.raises(MissingSubjectError):
            await validator.verify_token(make_token(omit=("sub",)))

    @pytest.mark.asyncio
    async def test_empty_subject(self, validator, make_token):
        with pytest.raises(MissingSubjectError):
            await validator.verify_token(make_token(""))

    @pytest.mark.asyncio
    async def test_failure_order_expiry_before_audience(self, validator, make_token, now):
        """Test the first failing check determines the error."""
        token = make_token(exp=int(now) - 10, aud="https://other.example.com")

        with pytest.raises(TokenExpiredError):
            await validator.verify_token(token)

    @pytest.mark.asyncio
    async def test_rs512_accepted(self, validator, make_token):
        token = make_token("auth0|abc", algorithm="RS512")

        assert await validator.verify_token(token) == "auth0|abc"

    @pytest.mark.asyncio
    async def test_resolver_receives_header_kid(self, make_token, signing_key, now):
        resolver = StaticKeyResolver({"custom": signing_key.public_key()})
        validator = TokenValidator(resolver, AUDIENCE, clock=lambda: now)

        await validator.verify_token(make_token(kid="custom"))

        assert resolver.calls == ["custom"]
