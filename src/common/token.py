import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

import jwt

from src.common.keys import KeyManager
from src.common.result import Err, ErrorKind, Ok, Result
from src.common.security import b64url
from src.core.config import settings

ACCESS_TOKEN_TYPE = "access"


def scope_set(scope: str | None) -> set[str]:
    return set(scope.split()) if scope else set()


def at_hash(access_token: str) -> str:
    """OIDC at_hash: left half of SHA-256 over the access token, base64url."""
    digest = hashlib.sha256(access_token.encode("ascii")).digest()
    return b64url(digest[: len(digest) // 2])


class JWTService:
    """
    RS256 JWT service for access tokens and OIDC ID tokens.

    Design goals:
    - One signing key / algorithm pair, owned by the KeyManager
    - Access tokens and ID tokens are never interchangeable
    - Strict expiry, no leeway
    - Remain small, auditable, and predictable
    """

    def __init__(self, key_manager: KeyManager):
        self.key_manager = key_manager

    @property
    def issuer(self) -> str:
        return settings.ISSUER

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _utc_now() -> datetime:
        """
        Get the current UTC time.

        Returns:
            A timezone-aware datetime in UTC.
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def _to_timestamp(dt: datetime) -> int:
        """
        Convert a datetime to a UNIX timestamp.

        Args:
            dt: A timezone-aware datetime.

        Returns:
            Integer UNIX timestamp.
        """
        return int(dt.timestamp())

    def _encode_token(
        self,
        payload: Dict[str, Any],
        ttl_seconds: int,
    ) -> str:
        """
        Stamp the registered claims and sign.

        Args:
            payload: Token specific claims.
            ttl_seconds: Token lifetime in seconds.

        Returns:
            A signed compact JWS.
        """
        now: datetime = self._utc_now()

        claims: Dict[str, Any] = {
            **payload,
            "iss": self.issuer,
            "iat": self._to_timestamp(now),
            "exp": self._to_timestamp(now + timedelta(seconds=ttl_seconds)),
        }

        return self.key_manager.sign(claims)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def issue_access_token(
        self,
        user_id: str,
        client_id: str,
        scope: str,
        expires_in: Optional[int] = None,
    ) -> str:
        """
        Generate a signed access token.

        Args:
            user_id: Subject of the token.
            client_id: Client the token was issued to.
            scope: Space separated granted scope.
            expires_in: Optional lifetime override in seconds.

        Returns:
            A signed JWT access token.
        """
        ttl: int = expires_in if expires_in is not None else settings.ACCESS_TOKEN_TTL

        return self._encode_token(
            payload={
                "sub": user_id,
                "client_id": client_id,
                "scope": scope,
                "jti": secrets.token_hex(16),
                "typ": ACCESS_TOKEN_TYPE,
            },
            ttl_seconds=ttl,
        )

    def issue_id_token(
        self,
        user: Any,
        client_id: str,
        scope: str,
        auth_time: int,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> str:
        """
        Generate an OIDC ID token.

        Profile and email claims are released only when the matching scope
        was granted; nonce only when the authorization request carried one.

        Args:
            user: User record (id, name, username, email, ...).
            client_id: Audience of the token.
            scope: Space separated granted scope.
            auth_time: When the end user authenticated (UNIX seconds).
            nonce: Nonce from the authorization request.
            access_token: Access token issued alongside, for at_hash.

        Returns:
            A signed JWT ID token.
        """
        claims: Dict[str, Any] = {
            "sub": str(user.id),
            "aud": client_id,
            "auth_time": auth_time,
            **user_claims(user, scope),
        }
        claims.pop("updated_at", None)

        if nonce:
            claims["nonce"] = nonce
        if access_token:
            claims["at_hash"] = at_hash(access_token)

        return self._encode_token(payload=claims, ttl_seconds=settings.ID_TOKEN_TTL)

    def verify_access_token(self, token: str) -> Result[Dict[str, Any]]:
        """
        Verify an access token and return its decoded payload.

        Args:
            token: The JWT access token.

        Returns:
            Ok(claims), or Err(invalid_token) for any signature, expiry,
            issuer or type failure.
        """
        try:
            claims = self.key_manager.verify(
                token,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "sub", "typ"]},
            )
        except jwt.ExpiredSignatureError:
            return Err(ErrorKind.INVALID_TOKEN, "Access token expired")
        except jwt.InvalidTokenError:
            return Err(ErrorKind.INVALID_TOKEN, "Invalid access token")

        if claims.get("typ") != ACCESS_TOKEN_TYPE:
            return Err(ErrorKind.INVALID_TOKEN, "Invalid token type")

        return Ok(claims)

    def verify_id_token(self, token: str, audience: str) -> Dict[str, Any]:
        """
        Verify an ID token as a relying party would.

        Raises:
            jwt.InvalidTokenError: If the token does not verify.
        """
        return self.key_manager.verify(
            token,
            issuer=self.issuer,
            audience=audience,
            options={"require": ["exp", "iat", "iss", "sub", "aud", "auth_time"]},
        )


def user_claims(user: Any, scope: str) -> Dict[str, Any]:
    """Standard claims about the user released for the granted scope."""
    scopes = scope_set(scope)
    claims: Dict[str, Any] = {"sub": str(user.id)}

    if "profile" in scopes:
        claims["name"] = user.name
        claims["preferred_username"] = user.username or (user.email or "").split("@")[0]
        if user.picture:
            claims["picture"] = user.picture
        if user.updated_at:
            claims["updated_at"] = user.updated_at

    if "email" in scopes:
        claims["email"] = user.email
        claims["email_verified"] = bool(user.email_verified)

    return claims
