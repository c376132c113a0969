"""
RSA signing key management for the identity provider.

The key pair is loaded once at startup and wrapped in immutable value
objects, so a single KeyManager can be shared by every request without
locking. The key id (kid) is derived from the public modulus, which keeps
it stable across restarts for the same key material.
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.common.security import b64url

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
KEY_USE = "sig"


class KeyMaterialError(RuntimeError):
    """No usable signing key is configured."""


class InvalidSignature(jwt.InvalidTokenError):
    """Token header or signature does not match a known verification key."""


def _int_to_b64url(value: int) -> str:
    return b64url(value.to_bytes((value.bit_length() + 7) // 8, "big"))


def compute_key_id(public_key: rsa.RSAPublicKey) -> str:
    """First 16 hex chars of SHA-256 over the base64url modulus."""
    n = _int_to_b64url(public_key.public_numbers().n)
    return hashlib.sha256(n.encode("ascii")).hexdigest()[:16]


def public_key_to_jwk(public_key: rsa.RSAPublicKey, kid: str) -> Dict[str, str]:
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "use": KEY_USE,
        "alg": ALGORITHM,
        "kid": kid,
        "n": _int_to_b64url(numbers.n),
        "e": _int_to_b64url(numbers.e),
    }


def generate_private_key_pem(key_size: int = 2048) -> str:
    """Generate a PKCS#8 PEM private key. Development and tests only."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def _normalize_pem(pem: str | bytes) -> bytes:
    if isinstance(pem, bytes):
        return pem
    # env vars often carry literal "\n" sequences
    return pem.replace("\\n", "\n").encode("ascii")


@dataclass(frozen=True)
class VerificationKey:
    public_key: rsa.RSAPublicKey
    kid: str

    @classmethod
    def from_pem(cls, pem: str | bytes) -> "VerificationKey":
        try:
            key = serialization.load_pem_public_key(_normalize_pem(pem))
        except ValueError as exc:
            raise KeyMaterialError(f"Failed to parse public key: {exc}") from exc
        if not isinstance(key, rsa.RSAPublicKey):
            raise KeyMaterialError("Only RSA public keys are supported")
        return cls(public_key=key, kid=compute_key_id(key))


@dataclass(frozen=True)
class SigningKey:
    private_key: rsa.RSAPrivateKey
    kid: str

    @classmethod
    def from_pem(cls, pem: str | bytes) -> "SigningKey":
        try:
            key = serialization.load_pem_private_key(_normalize_pem(pem), password=None)
        except (ValueError, TypeError) as exc:
            raise KeyMaterialError(f"Failed to parse private key: {exc}") from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyMaterialError("Only RSA private keys are supported")
        return cls(private_key=key, kid=compute_key_id(key.public_key()))

    @property
    def verification_key(self) -> VerificationKey:
        return VerificationKey(public_key=self.private_key.public_key(), kid=self.kid)


class KeyManager:
    """Signs and verifies compact JWS with a single fixed algorithm (RS256)."""

    def __init__(
        self,
        signing_key: SigningKey,
        previous_keys: Sequence[VerificationKey] = (),
    ):
        self._signing_key = signing_key
        keys: Dict[str, VerificationKey] = {k.kid: k for k in previous_keys}
        keys[signing_key.kid] = signing_key.verification_key
        self._verification_keys: Mapping[str, VerificationKey] = MappingProxyType(keys)

    @classmethod
    def from_settings(cls, config: Any = None) -> "KeyManager":
        """
        Load key material from settings.

        Args:
            config: Settings object; defaults to the application settings.

        Returns:
            A ready KeyManager.

        Raises:
            KeyMaterialError: If no key is configured or it cannot be parsed.
        """
        if config is None:
            from src.core.config import settings as config

        pem: Optional[str] = config.OAUTH_PRIVATE_KEY
        if not pem and config.OAUTH_PRIVATE_KEY_PATH:
            path = Path(config.OAUTH_PRIVATE_KEY_PATH)
            if not path.is_file():
                raise KeyMaterialError(f"Private key file not found: {path}")
            pem = path.read_text()

        if not pem:
            raise KeyMaterialError(
                "OAuth private key not configured. Set OAUTH_PRIVATE_KEY "
                "or OAUTH_PRIVATE_KEY_PATH"
            )

        signing_key = SigningKey.from_pem(pem)
        previous = [VerificationKey.from_pem(p) for p in config.OAUTH_PREVIOUS_PUBLIC_KEYS]
        logger.info(
            "Loaded signing key kid=%s (%d previous verification keys)",
            signing_key.kid,
            len(previous),
        )
        return cls(signing_key, previous)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def key_id(self) -> str:
        return self._signing_key.kid

    def sign(self, payload: Dict[str, Any]) -> str:
        return jwt.encode(
            payload,
            self._signing_key.private_key,
            algorithm=ALGORITHM,
            headers={"kid": self._signing_key.kid},
        )

    def verify(self, token: str, **options: Any) -> Dict[str, Any]:
        """
        Verify a compact JWS and return its claims.

        Only RS256 with a key id we published is accepted, which rules out
        "alg": "none" and HMAC/RSA confusion. Extra keyword arguments are
        passed to jwt.decode (issuer, audience, options).

        Raises:
            InvalidSignature: Unknown algorithm, key id or bad signature.
            jwt.InvalidTokenError: Any other failure (expired, bad issuer, ...).
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as exc:
            raise InvalidSignature("Malformed token") from exc

        if header.get("alg") != ALGORITHM:
            raise InvalidSignature(f"Unexpected algorithm: {header.get('alg')}")

        key = self._verification_keys.get(header.get("kid", ""))
        if key is None:
            raise InvalidSignature("Unknown key id")

        try:
            return jwt.decode(token, key.public_key, algorithms=[ALGORITHM], **options)
        except (jwt.InvalidSignatureError, jwt.DecodeError) as exc:
            raise InvalidSignature(str(exc)) from exc

    def public_jwk(self) -> Dict[str, str]:
        return public_key_to_jwk(self._signing_key.private_key.public_key(), self._signing_key.kid)

    def jwks(self) -> Dict[str, list]:
        current = self.public_jwk()
        previous = [
            public_key_to_jwk(k.public_key, k.kid)
            for kid, k in self._verification_keys.items()
            if kid != self._signing_key.kid
        ]
        return {"keys": [current, *previous]}
