"""
Test Capability Tokens

Signing, verification, claim validators and the embedded scope.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from scopeguard.core.auth.errors import InvalidTokenError, TokenRejectedError
from scopeguard.core.auth.tokens import (
    TokenClaims,
    TokenIssuer,
    TokenVerifier,
    create_token_claims,
    decode_base64url,
    encode_base64url,
    extract_scope_from_token_context,
    generate_internal_token,
    generate_key_pair,
    generate_session_token,
    generate_token,
    get_token_time_to_live,
    is_token_expired,
    is_token_fresh,
    is_token_near_expiry,
    is_token_valid_for_service,
    load_private_key,
    load_public_key,
    serialize_private_key,
    serialize_public_key,
    token_supports_scope,
    validate_token_audience,
    validate_token_authz_version,
    validate_token_claims,
    validate_token_context,
    validate_token_expiration,
    validate_token_session,
    validate_token_subject,
    verify_token,
)
from scopeguard.data.models.authz import Scope


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def sample_claims(**overrides):
    values = dict(
        subject="user-1",
        session_id="sess-1",
        audience="orders",
        context={"type": "team", "id": "123"},
        ttl=timedelta(minutes=15),
        authz_version=1,
        now=NOW,
    )
    values.update(overrides)
    return create_token_claims(**values)


def substitute(segment: str, index: int) -> str:
    replacement = "A" if segment[index] != "A" else "B"
    return segment[:index] + replacement + segment[index + 1:]


class TestTokenCodec:

    def setup_method(self):
        self.private_key, self.public_key = generate_key_pair()

    def test_round_trip(self):
        claims = sample_claims()
        token = generate_token(claims, self.private_key)
        assert verify_token(token, self.public_key) == claims

    def test_round_trip_without_context(self):
        claims = sample_claims(context=None)
        token = generate_token(claims, self.private_key)

        payload = json.loads(decode_base64url(token.split(".")[2]))
        assert "ctx" not in payload

        verified = verify_token(token, self.public_key)
        assert verified.context == {}
        assert verified == claims

    def test_wire_format(self):
        token = generate_token(sample_claims(), self.private_key)
        parts = token.split(".")

        assert parts[:2] == ["v4", "public"]
        assert "=" not in token
        payload = decode_base64url(parts[2])
        assert payload == json.dumps(
            json.loads(payload), separators=(",", ":"), sort_keys=True
        ).encode()
        assert sorted(json.loads(payload)) == ["aud", "authz_ver", "ctx", "exp", "sid", "sub"]
        assert len(decode_base64url(parts[3])) == 64

    def test_expiry_is_unix_seconds(self):
        claims = sample_claims()
        assert claims.expires_at == int((NOW + timedelta(minutes=15)).timestamp())

    def test_tampered_payload_fails(self):
        token = generate_token(sample_claims(), self.private_key)
        version, purpose, payload, signature = token.split(".")

        for i in range(len(payload)):
            tampered = ".".join([version, purpose, substitute(payload, i), signature])
            with pytest.raises(InvalidTokenError):
                verify_token(tampered, self.public_key)

    def test_tampered_signature_fails(self):
        token = generate_token(sample_claims(), self.private_key)
        version, purpose, payload, signature = token.split(".")

        for i in range(len(signature)):
            tampered = ".".join([version, purpose, payload, substitute(signature, i)])
            with pytest.raises(InvalidTokenError):
                verify_token(tampered, self.public_key)

    def test_wrong_key_fails(self):
        _, other_public = generate_key_pair()
        token = generate_token(sample_claims(), self.private_key)
        with pytest.raises(InvalidTokenError, match="invalid token"):
            verify_token(token, other_public)

    @pytest.mark.parametrize("token", [
        "",
        "v4.public.abc",
        "v4.public.a.b.c",
        "v3.public.e30.AAAA",
        "v4.local.e30.AAAA",
        "v4.public.e30=.AAAA",
        "v4.public.e3+0.AAAA",
    ])
    def test_malformed_tokens_fail(self, token):
        with pytest.raises(InvalidTokenError):
            verify_token(token, self.public_key)

    def test_signed_non_object_payload_fails(self):
        payload = b"[1, 2, 3]"
        token = f"v4.public.{encode_base64url(payload)}.{encode_base64url(self.private_key.sign(payload))}"
        with pytest.raises(InvalidTokenError):
            verify_token(token, self.public_key)

    def test_signed_garbage_payload_fails(self):
        payload = b"not json"
        token = f"v4.public.{encode_base64url(payload)}.{encode_base64url(self.private_key.sign(payload))}"
        with pytest.raises(InvalidTokenError):
            verify_token(token, self.public_key)

    def test_base64url_is_strict(self):
        assert decode_base64url(encode_base64url(b"\xfb\xff")) == b"\xfb\xff"
        for bad in ["a", "e30=", "e3/0", "e3 0", "eB"]:
            with pytest.raises(ValueError):
                decode_base64url(bad)

    def test_session_token(self):
        token = generate_session_token("user-1", "sess-1", self.private_key, timedelta(hours=1))
        claims = verify_token(token, self.public_key)
        assert claims.audience == "session"
        assert claims.context == {"type": "global"}
        assert claims.authz_version == 1

    def test_internal_token(self):
        token = generate_internal_token(
            "user-1", "sess-1", "billing", {"type": "org", "id": "acme"}, self.private_key, 300
        )
        claims = verify_token(token, self.public_key)
        assert claims.audience == "billing"
        assert claims.context == {"type": "org", "id": "acme"}

    def test_pem_round_trip(self, tmp_path):
        private_path = tmp_path / "key.pem"
        private_path.write_bytes(serialize_private_key(self.private_key))
        public_pem = serialize_public_key(self.public_key)

        private_key = load_private_key(private_path)
        public_key = load_public_key(public_pem)

        token = generate_token(sample_claims(), private_key)
        assert verify_token(token, public_key).subject == "user-1"

    def test_claims_aliases(self):
        claims = TokenClaims.model_validate({"sub": "u", "sid": "s", "aud": "a", "exp": 10, "authz_ver": 2})
        assert claims.subject == "u"
        assert claims.context == {}
        assert claims.to_payload() == {"sub": "u", "sid": "s", "aud": "a", "exp": 10, "authz_ver": 2}


class TestTokenValidators:

    def test_valid_claims(self):
        assert not validate_token_claims(sample_claims()).has_errors()

    def test_missing_claims(self):
        errors = validate_token_claims(TokenClaims(authz_version=-1))
        assert errors.fields() == ["sub", "sid", "aud", "exp", "authz_ver"]
        assert errors.codes() == ["required", "required", "required", "required", "invalid_value"]

    def test_expiration(self):
        claims = sample_claims()
        assert not validate_token_expiration(claims, NOW).has_errors()
        assert validate_token_expiration(claims, NOW + timedelta(minutes=16)).codes() == ["expired"]

    def test_expiry_boundary_counts_as_expired(self):
        claims = sample_claims()
        assert not is_token_expired(claims, NOW + timedelta(minutes=15) - timedelta(seconds=1))
        assert is_token_expired(claims, NOW + timedelta(minutes=15))

    def test_zero_expiry_is_expired(self):
        assert is_token_expired(TokenClaims(), NOW)

    def test_audience(self):
        claims = sample_claims()
        assert not validate_token_audience(claims, "orders").has_errors()
        assert validate_token_audience(claims, "billing").codes() == ["invalid_audience"]

    def test_context(self):
        claims = sample_claims()
        assert not validate_token_context(claims, {"type": "team"}).has_errors()
        errors = validate_token_context(claims, {"type": "org", "tenant": "x"})
        assert errors.codes() == ["missing_context", "invalid_context"]
        assert errors.fields() == ["ctx.tenant", "ctx.type"]

    def test_subject_and_session(self):
        claims = sample_claims()
        assert validate_token_subject(claims, "user-2").codes() == ["invalid_subject"]
        assert validate_token_session(claims, "sess-2").codes() == ["invalid_session"]
        assert not validate_token_subject(claims, "user-1").has_errors()
        assert not validate_token_session(claims, "sess-1").has_errors()

    def test_authz_version(self):
        claims = sample_claims(authz_version=2)
        assert not validate_token_authz_version(claims, 2).has_errors()
        assert validate_token_authz_version(claims, 3).codes() == ["outdated_version"]

    def test_valid_for_service(self):
        claims = sample_claims()
        assert is_token_valid_for_service(claims, "orders", NOW)
        assert not is_token_valid_for_service(claims, "billing", NOW)
        assert not is_token_valid_for_service(claims, "orders", NOW + timedelta(hours=1))

    def test_time_to_live(self):
        claims = sample_claims()
        assert get_token_time_to_live(claims, NOW) == timedelta(minutes=15)
        assert get_token_time_to_live(claims, NOW + timedelta(hours=1)) == timedelta(0)

    def test_naive_now_is_read_as_utc(self):
        naive_now = NOW.replace(tzinfo=None)
        claims = sample_claims(now=naive_now)

        assert claims.expires_at == sample_claims().expires_at
        assert get_token_time_to_live(claims, naive_now) == timedelta(minutes=15)
        assert is_token_expired(claims, naive_now + timedelta(minutes=15))
        assert is_token_fresh(claims, naive_now, timedelta(minutes=5), NOW + timedelta(minutes=4))

    def test_near_expiry(self):
        claims = sample_claims()
        assert not is_token_near_expiry(claims, timedelta(minutes=5), NOW)
        assert is_token_near_expiry(claims, timedelta(minutes=5), NOW + timedelta(minutes=11))
        assert not is_token_near_expiry(claims, timedelta(minutes=5), NOW + timedelta(minutes=20))

    def test_freshness(self):
        claims = sample_claims()
        assert is_token_fresh(claims, NOW, timedelta(minutes=5), NOW + timedelta(minutes=4))
        assert not is_token_fresh(claims, NOW, timedelta(minutes=5), NOW + timedelta(minutes=6))
        assert not is_token_fresh(TokenClaims(), NOW, timedelta(minutes=5), NOW)


class TestEmbeddedScope:

    def test_scope_from_context(self):
        assert extract_scope_from_token_context(sample_claims()) == Scope(type="team", id="123")

    def test_global_scope_ignores_id(self):
        claims = sample_claims(context={"type": "global", "id": "ignored"})
        assert extract_scope_from_token_context(claims) == Scope(type="global", id="")

    def test_missing_type_or_id(self):
        assert extract_scope_from_token_context(sample_claims(context={})) is None
        assert extract_scope_from_token_context(sample_claims(context={"type": "team"})) is None

    def test_supports_scope(self):
        team = sample_claims()
        assert token_supports_scope(team, Scope(type="team", id="123"))
        assert not token_supports_scope(team, Scope(type="team", id="456"))

        everywhere = sample_claims(context={"type": "global"})
        assert token_supports_scope(everywhere, Scope(type="team", id="456"))

        assert not token_supports_scope(sample_claims(context={}), Scope(type="team", id="123"))


class TestIssuerAndVerifier:

    def setup_method(self):
        self.private_key, self.public_key = generate_key_pair()
        self.issuer = TokenIssuer(self.private_key, "orders", ttl=900, authz_version=2)
        self.verifier = TokenVerifier(self.public_key, "orders")

    def test_issue_and_verify(self):
        token = self.issuer.issue("user-1", "sess-1", scope=Scope(type="team", id="123"), now=NOW)
        claims = self.verifier.verify(token, now=NOW)
        assert claims.subject == "user-1"
        assert claims.context == {"type": "team", "id": "123"}
        assert claims.authz_version == 2

    def test_global_scope_has_no_id(self):
        token = self.issuer.issue("user-1", "sess-1", scope=Scope.global_(), now=NOW)
        assert self.verifier.verify(token, now=NOW).context == {"type": "global"}

    def test_expired_token_rejected(self):
        token = self.issuer.issue("user-1", "sess-1", now=NOW)
        with pytest.raises(TokenRejectedError) as exc_info:
            self.verifier.verify(token, now=NOW + timedelta(hours=1))
        assert exc_info.value.errors.codes() == ["expired"]

    def test_wrong_audience_rejected(self):
        token = TokenIssuer(self.private_key, "billing", ttl=900).issue("user-1", "sess-1", now=NOW)
        with pytest.raises(TokenRejectedError) as exc_info:
            self.verifier.verify(token, now=NOW)
        assert exc_info.value.errors.codes() == ["invalid_audience"]

    def test_min_authz_version(self):
        token = self.issuer.issue("user-1", "sess-1", now=NOW)
        verifier = TokenVerifier(self.public_key, "orders", min_authz_version=3)
        with pytest.raises(TokenRejectedError) as exc_info:
            verifier.verify(token, now=NOW)
        assert exc_info.value.errors.codes() == ["outdated_version"]

    def test_required_scope(self):
        token = self.issuer.issue("user-1", "sess-1", scope=Scope(type="team", id="123"), now=NOW)
        self.verifier.verify(token, required_scope=Scope(type="team", id="123"), now=NOW)
        with pytest.raises(TokenRejectedError) as exc_info:
            self.verifier.verify(token, required_scope=Scope(type="team", id="456"), now=NOW)
        assert exc_info.value.errors.codes() == ["invalid_scope"]

    def test_forged_token_is_invalid_not_rejected(self):
        other_private, _ = generate_key_pair()
        token = TokenIssuer(other_private, "orders", ttl=900).issue("user-1", "sess-1", now=NOW)
        with pytest.raises(InvalidTokenError) as exc_info:
            self.verifier.verify(token, now=NOW)
        assert not isinstance(exc_info.value, TokenRejectedError)
