import base64
import hashlib
import hmac
import re
import secrets

from passlib.context import CryptContext

from src.common.result import Err, ErrorKind, Ok, Result
from src.core.config import settings

# RFC 7636 section 4.1: unreserved characters, 43 to 128 long
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")

PKCE_METHOD_S256 = "S256"

# Client secrets are long lived credentials: salted, slow hash
secret_context = CryptContext(schemes=["argon2"], deprecated="auto")


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_token(nbytes: int | None = None) -> str:
    """Opaque random token, URL safe."""
    return secrets.token_urlsafe(nbytes or settings.TOKEN_BYTES)


def hash_token(value: str) -> str:
    """SHA-256 hex digest used to persist codes and refresh tokens."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_client_secret(secret: str) -> str:
    return secret_context.hash(secret)


def verify_client_secret(secret: str, secret_hash: str) -> bool:
    return secret_context.verify(secret, secret_hash)


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------

def code_challenge(verifier: str) -> str:
    """S256 transform: BASE64URL(SHA256(ASCII(code_verifier)))."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_pkce_pair() -> tuple[str, str]:
    verifier = generate_token(32)
    return verifier, code_challenge(verifier)


def verify_pkce(
    verifier: str | None,
    stored_challenge: str,
    method: str = PKCE_METHOD_S256,
) -> Result[bool]:
    """
    Check a code_verifier against the challenge stored with the code.

    Returns Ok(True/False) for a well formed verifier and Err(invalid_request)
    for an unsupported method or a verifier that violates RFC 7636.
    """
    if method != PKCE_METHOD_S256:
        return Err(ErrorKind.INVALID_REQUEST, f"Unsupported code_challenge_method: {method}")

    if not verifier or not _VERIFIER_RE.match(verifier):
        return Err(
            ErrorKind.INVALID_REQUEST,
            "code_verifier must be 43-128 characters from the unreserved set",
        )

    return Ok(constant_time_equals(code_challenge(verifier), stored_challenge))
