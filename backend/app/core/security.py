from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Header, Request

from .config import Settings
from .errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "lifetrack-development-secret"
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to a single request."""

    id: str
    email: str | None = None
    name: str | None = None


def _hash_identifier(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


class TokenVerifier:
    """Validate HS256 bearer tokens issued by the identity provider."""

    def __init__(self, secret: str, *, audience: str | None = None) -> None:
        self._secret = secret
        self._audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenVerifier:
        secret = settings.jwt_secret
        if not secret:
            if settings.is_production:
                raise ConfigurationError("JWT_SECRET is required in production")
            logger.warning("JWT_SECRET not configured, using development secret")
            secret = DEV_JWT_SECRET
        return cls(secret, audience=settings.jwt_audience)

    def verify(self, token: str) -> Principal:
        options = {"require": ["sub"], "verify_aud": self._audience is not None}
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self._audience,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthError("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthError("invalid token") from exc

        subject = str(claims.get("sub") or "").strip()
        if not subject:
            raise AuthError("user id not found in token")
        return Principal(id=subject, email=claims.get("email"), name=claims.get("name"))

    def issue(
        self,
        principal: Principal,
        *,
        expires_in: timedelta = timedelta(hours=1),
    ) -> str:
        """Mint a token for ``principal``; used by local tooling and tests."""

        now = datetime.now(UTC)
        claims: dict[str, Any] = {
            "sub": principal.id,
            "iat": now,
            "exp": now + expires_in,
        }
        if principal.email:
            claims["email"] = principal.email
        if principal.name:
            claims["name"] = principal.name
        if self._audience:
            claims["aud"] = self._audience
        return jwt.encode(claims, self._secret, algorithm=JWT_ALGORITHM)


async def resolve_principal(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    """Reject the request with 401 unless it carries a valid bearer token."""

    if not authorization:
        raise AuthError("authorization header required")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("bearer token required")

    verifier: TokenVerifier = request.app.state.token_verifier
    principal = verifier.verify(token)

    request.state.principal = principal
    request.state.telemetry_user = _hash_identifier(principal.id)
    return principal


__all__ = [
    "DEV_JWT_SECRET",
    "Principal",
    "TokenVerifier",
    "resolve_principal",
]
