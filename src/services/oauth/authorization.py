import logging
import re
from typing import Mapping, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from src.common.result import Err, ErrorKind, Ok, Result
from src.common.security import PKCE_METHOD_S256
from src.core.config import settings
from src.models.persistance.auth import User
from src.repositories.client_repo import get_client_by_id
from src.services.oauth import code_store
from src.services.oauth.client_registry import validate_redirect_uri, validate_scopes

logger = logging.getLogger(__name__)

# BASE64URL(SHA256(verifier)) without padding is always 43 characters
_CHALLENGE_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")


def build_redirect(redirect_uri: str, params: dict) -> str:
    query = urlencode({k: v for k, v in params.items() if v})
    separator = "&" if "?" in redirect_uri else "?"
    return f"{redirect_uri}{separator}{query}"


def _error_redirect(
    redirect_uri: str,
    kind: ErrorKind,
    description: str,
    state: Optional[str],
) -> Ok[str]:
    return Ok(
        build_redirect(
            redirect_uri,
            {"error": kind.value, "error_description": description, "state": state},
        )
    )


async def authorize(
    db: AsyncSession,
    user: Optional[User],
    params: Mapping[str, str],
) -> Result[str]:
    """
    Authorization endpoint (authorization code flow, PKCE mandatory).

    Until the client and its redirect_uri are verified, errors are returned
    as Err and rendered to the user agent directly. Once the redirect_uri is
    trusted, errors travel back to the client as query parameters.

    Returns:
        Ok(redirect URL) with either a code or an error, or Err.
    """
    client_id = params.get("client_id")
    redirect_uri = params.get("redirect_uri")
    state = params.get("state") or None

    if not client_id:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: client_id")

    client = await get_client_by_id(db, client_id)
    if client is None or not client.is_active:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")

    if not redirect_uri:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: redirect_uri")

    if not validate_redirect_uri(client, redirect_uri):
        logger.warning("Unregistered redirect_uri for client %s", client_id)
        return Err(ErrorKind.INVALID_REQUEST, "Invalid redirect_uri")

    # From here on the redirect_uri is trusted

    response_type = params.get("response_type")
    if not response_type:
        return _error_redirect(
            redirect_uri, ErrorKind.INVALID_REQUEST, "Missing required parameter: response_type", state
        )
    if response_type not in settings.RESPONSE_TYPES_SUPPORTED:
        return _error_redirect(
            redirect_uri, ErrorKind.UNSUPPORTED_RESPONSE_TYPE, "Only response_type=code is supported", state
        )

    if "authorization_code" not in client.grant_types:
        return _error_redirect(
            redirect_uri, ErrorKind.UNAUTHORIZED_CLIENT, "Client may not use the authorization code grant", state
        )

    code_challenge = params.get("code_challenge")
    if not code_challenge:
        return _error_redirect(
            redirect_uri, ErrorKind.INVALID_REQUEST, "PKCE code_challenge is required", state
        )

    method = params.get("code_challenge_method") or PKCE_METHOD_S256
    if method not in settings.CODE_CHALLENGE_METHODS_SUPPORTED:
        return _error_redirect(
            redirect_uri, ErrorKind.INVALID_REQUEST, "Only code_challenge_method=S256 is supported", state
        )

    if not _CHALLENGE_RE.match(code_challenge):
        return _error_redirect(
            redirect_uri, ErrorKind.INVALID_REQUEST, "Malformed code_challenge", state
        )

    scopes = validate_scopes(client, params.get("scope") or "")
    if isinstance(scopes, Err):
        return _error_redirect(redirect_uri, scopes.kind, scopes.description, state)

    if user is None:
        return _error_redirect(
            redirect_uri, ErrorKind.LOGIN_REQUIRED, "End-user authentication is required", state
        )

    if not user.is_active:
        return _error_redirect(
            redirect_uri, ErrorKind.ACCESS_DENIED, "User account is not active", state
        )

    code, _ = await code_store.issue_code(
        db,
        client=client,
        user_id=user.id,
        redirect_uri=redirect_uri,
        scope=scopes.value,
        code_challenge=code_challenge,
        code_challenge_method=method,
        nonce=params.get("nonce") or None,
        state=state,
    )
    logger.info("Issued authorization code client=%s user=%s", client_id, user.id)

    return Ok(build_redirect(redirect_uri, {"code": code, "state": state}))
