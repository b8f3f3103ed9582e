"""
Bearer-token verification and the FastAPI dependencies that gate routes.

``TokenVerifier`` checks ID tokens issued by the OpenID Connect provider
against a key set handed to it at construction. ``current_user`` and
``current_admin`` extract the credential from the request, verify it once and
hand the resulting ``Identity`` to the handler as a parameter.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Sequence

import jwt
from fastapi import Depends, Request

from core.config import settings
from core.errors import Forbidden, InvalidToken, NoCredential

logger = logging.getLogger(__name__)

ID_TOKEN_COOKIE = "id_token"
ACCESS_TOKEN_COOKIE = "access_token"

CREDENTIAL_SOURCES = ("cookie", "header", "any")


@dataclass(frozen=True)
class Identity:
    """Verified caller, derived from a token once per request"""
    subject: str
    roles: FrozenSet[str] = frozenset()
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def has_role(self, role: str) -> bool:
        return role in self.roles


class TokenVerifier:
    """
    Verify provider-issued JWTs.

    Args:
        key_set: signing keys published by the provider (JWKS)
        issuer: expected ``iss``
        audience: expected ``aud`` (the application's client id)
        algorithms: accepted signing algorithms
        leeway: clock skew tolerated on ``exp`` / ``nbf``, in seconds
        subject_claim: claim holding the stable user id; ``sub`` is the fallback
        roles_claim: claim holding the role list
    """

    def __init__(
        self,
        key_set: jwt.PyJWKSet,
        issuer: str,
        audience: str,
        algorithms: Sequence[str] = ("RS256",),
        leeway: int = 0,
        subject_claim: str = "oid",
        roles_claim: str = "roles",
    ):
        self._keys = {key.key_id: key for key in key_set.keys}
        self.issuer = issuer
        self.audience = audience
        self.algorithms = list(algorithms)
        self.leeway = leeway
        self.subject_claim = subject_claim
        self.roles_claim = roles_claim

    def _signing_key(self, raw_token: str) -> jwt.PyJWK:
        header = jwt.get_unverified_header(raw_token)
        kid = header.get("kid")
        if kid in self._keys:
            return self._keys[kid]
        # A single published key without a kid still identifies itself
        if kid is None and len(self._keys) == 1:
            return next(iter(self._keys.values()))
        raise InvalidToken(f"unknown signing key {kid!r}")

    def verify(self, raw_token: str) -> Identity:
        """
        Return the identity carried by ``raw_token``.

        Structure, signature, issuer, audience and expiry/not-before are all
        checked; any failure raises ``InvalidToken`` without saying which.
        """
        if not raw_token:
            raise InvalidToken()
        try:
            key = self._signing_key(raw_token)
            claims = jwt.decode(
                raw_token,
                key=key.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", e)
            raise InvalidToken() from e

        subject = claims.get(self.subject_claim) or claims.get("sub")
        if not subject or not isinstance(subject, str):
            raise InvalidToken()

        roles = claims.get(self.roles_claim) or []
        if isinstance(roles, str):
            roles = [roles]
        return Identity(subject=subject, roles=frozenset(str(r) for r in roles), claims=claims)


def extract_credential(request: Request, source: str = "any") -> str:
    """
    Read the raw token from the request.

    ``cookie`` reads the ``id_token`` cookie, ``header`` reads
    ``Authorization: Bearer <token>``, ``any`` prefers the header and falls back
    to the cookie. A present header with another scheme is rejected.
    """
    if source not in CREDENTIAL_SOURCES:
        raise ValueError(f"unknown credential source {source!r}")

    if source in ("header", "any"):
        header = request.headers.get("Authorization")
        if header is not None:
            scheme, _, token = header.partition(" ")
            if scheme.lower() != "bearer" or not token.strip():
                raise NoCredential("malformed authorization header")
            return token.strip()
        if source == "header":
            raise NoCredential("no authorization header")

    token = request.cookies.get(ID_TOKEN_COOKIE)
    if not token:
        raise NoCredential("no authorization cookie")
    return token


def get_token_verifier(request: Request) -> TokenVerifier:
    verifier: Optional[TokenVerifier] = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        raise RuntimeError("token verifier not initialised")
    return verifier


async def current_user(
    request: Request,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    token = extract_credential(request, settings.auth_credential_source)
    identity = verifier.verify(token)
    logger.debug("Authenticated %s for %s %s", identity.subject, request.method, request.url.path)
    return identity


async def current_admin(identity: Identity = Depends(current_user)) -> Identity:
    if not identity.has_role(settings.auth_admin_role):
        logger.warning("Non-admin %s refused admin route", identity.subject)
        raise Forbidden()
    return identity
