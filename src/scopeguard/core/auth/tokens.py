"""
Capability Tokens

Signed, self-contained claims that let other services trust a prior
authorization decision without calling back.

Wire format:
    v4.public.<base64url(payload)>.<base64url(signature)>

- payload: compact JSON with sorted keys sub, sid, aud, exp, authz_ver
  and ctx (omitted when empty)
- signature: Ed25519 over the exact payload bytes
- base64url without padding

Lifecycle: Issued -> Valid -> Expired. There is no revocation state;
`authz_ver` can be compared against a minimum with
validate_token_authz_version.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ...data.models.authz import GLOBAL_SCOPE_TYPE, Scope, as_utc
from .errors import FieldError, InvalidTokenError, TokenRejectedError, ValidationErrors
from .scope import scope_matches

logger = logging.getLogger(__name__)

TOKEN_VERSION = "v4"
TOKEN_PURPOSE = "public"
SESSION_AUDIENCE = "session"
DEFAULT_AUTHZ_VERSION = 1
SIGNATURE_SIZE = 64

_B64URL_CHARS = re.compile(r"^[A-Za-z0-9_-]*$")


class TokenClaims(BaseModel):
    """
    Claims carried by a capability token.

    Attribute names are descriptive; the wire keys are the short aliases.
    context["type"] / context["id"] carry an embedded scope.
    """
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(default="", alias="sub")
    session_id: str = Field(default="", alias="sid")
    audience: str = Field(default="", alias="aud")
    context: Dict[str, str] = Field(default_factory=dict, alias="ctx")
    expires_at: int = Field(default=0, alias="exp")
    authz_version: int = Field(default=0, alias="authz_ver")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sub": self.subject,
            "sid": self.session_id,
            "aud": self.audience,
            "exp": self.expires_at,
            "authz_ver": self.authz_version,
        }
        if self.context:
            payload["ctx"] = dict(self.context)
        return payload


def _resolve_now(now: Optional[datetime]) -> datetime:
    """Current UTC time, or `now` with naive values read as UTC"""
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def _as_timedelta(ttl: Union[timedelta, int, float]) -> timedelta:
    return ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)


def create_token_claims(
    subject: str,
    session_id: str,
    audience: str,
    context: Optional[Mapping[str, str]],
    ttl: Union[timedelta, int, float],
    authz_version: int = DEFAULT_AUTHZ_VERSION,
    now: Optional[datetime] = None,
) -> TokenClaims:
    """Build claims expiring `ttl` after `now` (whole Unix seconds)."""
    now = _resolve_now(now)
    return TokenClaims(
        subject=subject,
        session_id=session_id,
        audience=audience,
        context=dict(context or {}),
        expires_at=int((now + _as_timedelta(ttl)).timestamp()),
        authz_version=authz_version,
    )


# =========================================================================
# ENCODING
# =========================================================================

def encode_base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_base64url(encoded: str) -> bytes:
    """
    Strict unpadded base64url decoding.

    Rejects padding, foreign characters and non-canonical trailing bits,
    so every accepted string maps to exactly one byte sequence.
    """
    if not _B64URL_CHARS.match(encoded) or len(encoded) % 4 == 1:
        raise ValueError("invalid base64url data")
    try:
        data = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    except binascii.Error as e:
        raise ValueError("invalid base64url data") from e
    if encode_base64url(data) != encoded:
        raise ValueError("non-canonical base64url data")
    return data


def encode_payload(claims: TokenClaims) -> bytes:
    """Canonical JSON bytes that get signed"""
    return json.dumps(claims.to_payload(), separators=(",", ":"), sort_keys=True).encode("utf-8")


def generate_token(claims: TokenClaims, private_key: Ed25519PrivateKey) -> str:
    """Sign claims and return the compact token string."""
    payload = encode_payload(claims)
    signature = private_key.sign(payload)
    return f"{TOKEN_VERSION}.{TOKEN_PURPOSE}.{encode_base64url(payload)}.{encode_base64url(signature)}"


def verify_token(token: str, public_key: Ed25519PublicKey) -> TokenClaims:
    """
    Verify a token signature and return its claims.

    The signature is checked over the decoded payload bytes before any
    claim is parsed. Claim values (expiry, audience...) are NOT checked
    here; use the validators or TokenVerifier.

    Raises:
        InvalidTokenError: For any format, encoding or signature problem
    """
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 4 or parts[0] != TOKEN_VERSION or parts[1] != TOKEN_PURPOSE:
        raise InvalidTokenError()

    try:
        payload = decode_base64url(parts[2])
        signature = decode_base64url(parts[3])
    except ValueError:
        raise InvalidTokenError() from None

    if len(signature) != SIGNATURE_SIZE:
        raise InvalidTokenError()

    try:
        public_key.verify(signature, payload)
    except InvalidSignature:
        raise InvalidTokenError() from None

    try:
        raw = json.loads(payload)
        if not isinstance(raw, dict):
            raise InvalidTokenError()
        return TokenClaims.model_validate(raw)
    except (ValueError, PydanticValidationError):
        raise InvalidTokenError() from None


def generate_session_token(
    user_id: str,
    session_id: str,
    private_key: Ed25519PrivateKey,
    ttl: Union[timedelta, int, float],
) -> str:
    """User session token: audience "session", global context."""
    claims = create_token_claims(
        user_id, session_id, SESSION_AUDIENCE, {"type": GLOBAL_SCOPE_TYPE}, ttl, DEFAULT_AUTHZ_VERSION
    )
    return generate_token(claims, private_key)


def generate_internal_token(
    user_id: str,
    session_id: str,
    audience: str,
    context: Optional[Mapping[str, str]],
    private_key: Ed25519PrivateKey,
    ttl: Union[timedelta, int, float],
) -> str:
    """Token for service-to-service calls on behalf of a user."""
    claims = create_token_claims(user_id, session_id, audience, context, ttl, DEFAULT_AUTHZ_VERSION)
    return generate_token(claims, private_key)


# =========================================================================
# VALIDATION
# =========================================================================

def validate_token_claims(claims: TokenClaims) -> ValidationErrors:
    errors = ValidationErrors()

    if not claims.subject:
        errors.append(FieldError("sub", "required", "Subject claim is required"))
    if not claims.session_id:
        errors.append(FieldError("sid", "required", "Session ID claim is required"))
    if not claims.audience:
        errors.append(FieldError("aud", "required", "Audience claim is required"))
    if claims.expires_at == 0:
        errors.append(FieldError("exp", "required", "Expiration time claim is required"))
    if claims.authz_version < 0:
        errors.append(FieldError(
            "authz_ver", "invalid_value", "Authorization version must be non-negative"
        ))

    return errors


def is_token_expired(claims: TokenClaims, now: Optional[datetime] = None) -> bool:
    """Expired once `now` reaches the expiry second; exp == 0 is always expired."""
    if claims.expires_at == 0:
        return True
    now = _resolve_now(now)
    return now.timestamp() >= claims.expires_at


def validate_token_expiration(claims: TokenClaims, now: Optional[datetime] = None) -> ValidationErrors:
    errors = ValidationErrors()
    if is_token_expired(claims, now):
        errors.append(FieldError("exp", "expired", "Token has expired"))
    return errors


def validate_token_audience(claims: TokenClaims, expected_audience: str) -> ValidationErrors:
    errors = ValidationErrors()
    if claims.audience != expected_audience:
        errors.append(FieldError(
            "aud", "invalid_audience", "Token audience does not match expected value"
        ))
    return errors


def validate_token_context(claims: TokenClaims, expected_context: Mapping[str, str]) -> ValidationErrors:
    errors = ValidationErrors()
    for key in sorted(expected_context):
        if key not in claims.context:
            errors.append(FieldError(f"ctx.{key}", "missing_context", "Required context key is missing"))
        elif claims.context[key] != expected_context[key]:
            errors.append(FieldError(
                f"ctx.{key}", "invalid_context", "Context value does not match expected value"
            ))
    return errors


def validate_token_subject(claims: TokenClaims, expected_subject: str) -> ValidationErrors:
    errors = ValidationErrors()
    if claims.subject != expected_subject:
        errors.append(FieldError(
            "sub", "invalid_subject", "Token subject does not match expected value"
        ))
    return errors


def validate_token_session(claims: TokenClaims, expected_session_id: str) -> ValidationErrors:
    errors = ValidationErrors()
    if claims.session_id != expected_session_id:
        errors.append(FieldError(
            "sid", "invalid_session", "Token session ID does not match expected value"
        ))
    return errors


def validate_token_authz_version(claims: TokenClaims, min_version: int) -> ValidationErrors:
    errors = ValidationErrors()
    if claims.authz_version < min_version:
        errors.append(FieldError(
            "authz_ver", "outdated_version", "Token authorization version is outdated"
        ))
    return errors


def validate_token_for_service(
    claims: TokenClaims,
    service: str,
    now: Optional[datetime] = None,
) -> ValidationErrors:
    """Structure, expiry and audience in one pass"""
    errors = ValidationErrors()
    errors.extend(validate_token_claims(claims))
    errors.extend(validate_token_expiration(claims, now))
    errors.extend(validate_token_audience(claims, service))
    return errors


def is_token_valid_for_service(claims: TokenClaims, service: str, now: Optional[datetime] = None) -> bool:
    return not validate_token_for_service(claims, service, now).has_errors()


def get_token_time_to_live(claims: TokenClaims, now: Optional[datetime] = None) -> timedelta:
    if is_token_expired(claims, now):
        return timedelta(0)
    now = _resolve_now(now)
    return datetime.fromtimestamp(claims.expires_at, tz=timezone.utc) - now


def is_token_near_expiry(
    claims: TokenClaims,
    threshold: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    ttl = get_token_time_to_live(claims, now)
    return timedelta(0) < ttl <= threshold


def is_token_fresh(
    claims: TokenClaims,
    issued_at: datetime,
    max_age: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    if claims.expires_at == 0:
        return False
    now = _resolve_now(now)
    return now - as_utc(issued_at) <= max_age


# =========================================================================
# EMBEDDED SCOPE
# =========================================================================

def extract_scope_from_token_context(claims: TokenClaims) -> Optional[Scope]:
    """
    Read the scope carried in the context.

    "type" is required; "id" is required unless the type is global, in
    which case any id is ignored.
    """
    scope_type = claims.context.get("type")
    if scope_type is None:
        return None

    if scope_type == GLOBAL_SCOPE_TYPE:
        return Scope(type=GLOBAL_SCOPE_TYPE, id="")

    scope_id = claims.context.get("id")
    if scope_id is None:
        return None
    return Scope(type=scope_type, id=scope_id)


def token_supports_scope(claims: TokenClaims, required_scope: Scope) -> bool:
    """The token's scope plays the grant side of the comparison."""
    token_scope = extract_scope_from_token_context(claims)
    if token_scope is None:
        return False
    return scope_matches(token_scope, required_scope)


def validate_token_scope(claims: TokenClaims, required_scope: Scope) -> ValidationErrors:
    errors = ValidationErrors()
    if not token_supports_scope(claims, required_scope):
        errors.append(FieldError("ctx", "invalid_scope", "Token scope does not match required scope"))
    return errors


# =========================================================================
# KEYS
# =========================================================================

def generate_key_pair() -> Tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def serialize_private_key(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def serialize_public_key(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _read_pem(source: Union[str, Path, bytes]) -> bytes:
    if isinstance(source, bytes):
        return source
    return Path(source).read_bytes()


def load_private_key(source: Union[str, Path, bytes]) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from PEM bytes or a PEM file path."""
    key = serialization.load_pem_private_key(_read_pem(source), password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError("Private key is not an Ed25519 key")
    return key


def load_public_key(source: Union[str, Path, bytes]) -> Ed25519PublicKey:
    """Load an Ed25519 public key from PEM bytes or a PEM file path."""
    key = serialization.load_pem_public_key(_read_pem(source))
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Public key is not an Ed25519 key")
    return key


# =========================================================================
# ISSUER / VERIFIER
# =========================================================================

class TokenIssuer:
    """Issues tokens for one audience with a fixed TTL"""

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        audience: str,
        ttl: Union[timedelta, int, float],
        authz_version: int = DEFAULT_AUTHZ_VERSION,
    ):
        self.private_key = private_key
        self.audience = audience
        self.ttl = _as_timedelta(ttl)
        self.authz_version = authz_version

    def issue(
        self,
        subject: str,
        session_id: str,
        scope: Optional[Scope] = None,
        context: Optional[Mapping[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> str:
        ctx = dict(context or {})
        if scope is not None:
            ctx["type"] = scope.type
            if not scope.is_global:
                ctx["id"] = scope.id

        claims = create_token_claims(
            subject, session_id, self.audience, ctx, self.ttl, self.authz_version, now
        )
        logger.debug(f"Issued token for {subject} (aud={self.audience}, exp={claims.expires_at})")
        return generate_token(claims, self.private_key)


class TokenVerifier:
    """
    Verifies tokens presented to one service.

    A token is accepted when its signature is valid, its claims are well
    formed, it has not expired and its audience is this service. A
    minimum authorization version and a required scope can be demanded
    on top.
    """

    def __init__(
        self,
        public_key: Ed25519PublicKey,
        audience: str,
        min_authz_version: Optional[int] = None,
    ):
        self.public_key = public_key
        self.audience = audience
        self.min_authz_version = min_authz_version

    def verify(
        self,
        token: str,
        required_scope: Optional[Scope] = None,
        now: Optional[datetime] = None,
    ) -> TokenClaims:
        """
        Raises:
            InvalidTokenError: Bad format or signature
            TokenRejectedError: Authentic token whose claims are not acceptable
        """
        claims = verify_token(token, self.public_key)

        errors = validate_token_for_service(claims, self.audience, now)
        if self.min_authz_version is not None:
            errors.extend(validate_token_authz_version(claims, self.min_authz_version))
        if required_scope is not None:
            errors.extend(validate_token_scope(claims, required_scope))

        if errors.has_errors():
            logger.info(f"Token for {claims.subject} rejected: {errors.codes()}")
            raise TokenRejectedError(errors)

        return claims
