"""
Bearer token verification.

Per request:
    no token            -> Unauthorized(missing)
    5 segments (JWE)    -> decrypt with the configured private key, then
                           continue with the inner 3-segment token
    3 segments, HS256   -> demo secret check; any failure falls through
    3 segments          -> identity provider: JWKS signature, issuer,
                           audience/client-id allow-list, subject
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from jwt import PyJWKClient

from auth.jwe import decrypt_compact
from cache_manager import TTLCache
from config import DemoConfig, IdentityConfig
from errors import ConfigurationError, Unauthorized, UpstreamError
from logging_config import get_logger
from security.identifiers import owner_id_for_subject

logger = get_logger(__name__)

DEMO_ALGORITHM = "HS256"
IDP_ALGORITHMS = ["RS256"]
JWKS_FETCH_TIMEOUT = 5
MISSING_TOKEN_VALUES = ("", "undefined", "null")


@dataclass
class VerifiedClaims:
    """Claims of a verified token. ``owner_id`` is the tenant identity."""

    subject: str
    owner_id: uuid.UUID
    email: Optional[str] = None
    name: Optional[str] = None
    demo: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], demo: bool = False) -> "VerifiedClaims":
        subject = str(payload["sub"])
        email = payload.get("email")
        name = (
            payload.get("name")
            or payload.get("preferred_username")
            or payload.get("cognito:username")
            or email
        )
        return cls(
            subject=subject,
            owner_id=owner_id_for_subject(subject),
            email=email,
            name=name,
            demo=demo,
            raw=payload,
        )


def _audiences(payload: Dict[str, Any]) -> List[str]:
    aud = payload.get("aud")
    if isinstance(aud, str):
        values = [aud]
    elif isinstance(aud, (list, tuple)):
        values = [str(a) for a in aud]
    else:
        values = []
    client_id = payload.get("client_id") or payload.get("clientId")
    if client_id:
        values.append(str(client_id))
    return values


class AuthVerifier:
    """Validates bearer tokens for one identity configuration.

    Key sets and loaded private keys live in injected TTL caches, so two
    verifiers with different identity providers never share state.
    """

    def __init__(
        self,
        identity: IdentityConfig,
        demo: Optional[DemoConfig] = None,
        key_set_cache: Optional[TTLCache] = None,
        private_key_cache: Optional[TTLCache] = None,
        jwk_client_factory: Callable[..., PyJWKClient] = PyJWKClient,
    ):
        self.identity = identity
        self.demo = demo or DemoConfig()
        self.key_sets = key_set_cache or TTLCache(ttl_seconds=identity.jwks_ttl_seconds, max_entries=8)
        self.private_keys = private_key_cache or TTLCache(ttl_seconds=3600, max_entries=4)
        self._jwk_client_factory = jwk_client_factory

    def verify(self, token: Optional[str]) -> VerifiedClaims:
        """Verify a bearer token and return its claims.

        Raises:
            Unauthorized: token missing, malformed or rejected
            ConfigurationError: identity provider not configured
        """
        if token is None or token.strip() in MISSING_TOKEN_VALUES:
            raise Unauthorized("missing", "Missing bearer token")
        token = token.strip()

        if token.count(".") == 4:
            token = self._decrypt(token)

        if token.count(".") != 2:
            raise Unauthorized("malformed", "Malformed token")

        if self.demo.enabled:
            claims = self._verify_demo(token)
            if claims is not None:
                return claims

        return self._verify_identity_provider(token)

    # ========================================================================
    # ENCRYPTED TOKENS
    # ========================================================================

    def _load_private_key(self):
        pem = self.identity.jwe_private_key
        if not pem:
            return None
        cache_key = hashlib.sha256(pem.encode("utf-8")).hexdigest()

        def load():
            try:
                return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"IDP_JWE_PRIVATE_KEY is not a usable PEM key: {e}")

        return self.private_keys.get_or_create(cache_key, load)

    def _decrypt(self, token: str) -> str:
        private_key = self._load_private_key()
        if private_key is None:
            raise Unauthorized("undecryptable", "Encrypted token received but no decryption key is configured")
        return decrypt_compact(token, private_key)

    # ========================================================================
    # DEMO TOKENS
    # ========================================================================

    def _verify_demo(self, token: str) -> Optional[VerifiedClaims]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError:
            return None
        if header.get("alg") != DEMO_ALGORITHM:
            return None

        try:
            payload = jwt.decode(
                token,
                self.demo.jwt_secret,
                algorithms=[DEMO_ALGORITHM],
                issuer=self.demo.issuer,
                options={"require": ["sub"], "verify_aud": False},
            )
        except jwt.InvalidTokenError as e:
            logger.debug(f"Demo token rejected, falling back to identity provider: {e}")
            return None
        return VerifiedClaims.from_payload(payload, demo=True)

    # ========================================================================
    # IDENTITY PROVIDER TOKENS
    # ========================================================================

    def _jwk_client(self) -> PyJWKClient:
        url = self.identity.jwks_url
        if not url:
            raise ConfigurationError("IDP_JWKS_URL is not configured")
        return self.key_sets.get_or_create(
            url,
            lambda: self._jwk_client_factory(
                url,
                cache_jwk_set=True,
                lifespan=self.identity.jwks_ttl_seconds,
                timeout=JWKS_FETCH_TIMEOUT,
            ),
        )

    def _verify_identity_provider(self, token: str) -> VerifiedClaims:
        client = self._jwk_client()

        try:
            signing_key = client.get_signing_key_from_jwt(token)
        except jwt.PyJWKClientConnectionError as e:
            logger.error(f"Identity provider key set unavailable: {e}")
            raise UpstreamError("Identity provider key set unavailable")
        except jwt.PyJWKClientError:
            raise Unauthorized("signature_invalid", "Token signature invalid")
        except jwt.DecodeError:
            raise Unauthorized("malformed", "Malformed token")

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=IDP_ALGORITHMS,
                issuer=self.identity.issuer or None,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthorized("expired", "Token expired")
        except jwt.InvalidIssuerError:
            raise Unauthorized("issuer_mismatch", "Issuer mismatch")
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError):
            raise Unauthorized("signature_invalid", "Token signature invalid")
        except jwt.MissingRequiredClaimError as e:
            raise Unauthorized("malformed", f"Token missing claim: {e.claim}")
        except jwt.InvalidTokenError:
            raise Unauthorized("malformed", "Malformed token")

        allowed = self.identity.allowed_audiences
        if allowed and not any(value in allowed for value in _audiences(payload)):
            raise Unauthorized("audience_mismatch", "Audience mismatch")

        if not payload.get("sub"):
            raise Unauthorized("missing_subject", "Token missing subject")

        return VerifiedClaims.from_payload(payload)
