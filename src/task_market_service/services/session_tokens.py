"""HS256 session tokens issued at one-time-code verification."""

from __future__ import annotations

import time

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from task_market_service.core.exceptions import AuthenticationError


class SessionTokenIssuer:
    """Issues and verifies signed, expiring bearer tokens carrying a user id."""

    _ALGORITHM = "HS256"

    def __init__(self, secret: str, ttl_seconds: int) -> None:
        self._key = OctKey.import_key(secret)
        self._ttl_seconds = ttl_seconds
        self._claims_registry = jwt.JWTClaimsRegistry(
            sub={"essential": True},
            exp={"essential": True},
        )

    def issue(self, user_id: str) -> str:
        """Sign a token for user_id that expires after the configured TTL."""
        issued_at = int(time.time())
        claims = {"sub": user_id, "iat": issued_at, "exp": issued_at + self._ttl_seconds}
        return jwt.encode({"alg": self._ALGORITHM}, claims, self._key, algorithms=[self._ALGORITHM])

    def verify(self, token: str) -> str:
        """
        Verify signature and expiry, returning the user id.

        Raises:
            AuthenticationError: token is malformed, tampered with, or expired.
        """
        try:
            decoded = jwt.decode(token, self._key, algorithms=[self._ALGORITHM])
            self._claims_registry.validate(decoded.claims)
        except JoseError as exc:
            raise AuthenticationError(
                "Session token is invalid or expired",
                code="INVALID_TOKEN",
            ) from exc
        except ValueError as exc:
            raise AuthenticationError(
                "Session token is malformed",
                code="INVALID_TOKEN",
            ) from exc

        subject = decoded.claims.get("sub")
        if not isinstance(subject, str) or subject == "":
            raise AuthenticationError("Session token has no subject", code="INVALID_TOKEN")
        return subject
