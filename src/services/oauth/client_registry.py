import asyncio
import base64
import binascii
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import unquote_plus

from sqlalchemy.ext.asyncio import AsyncSession

from src.common.result import Err, ErrorKind, Ok, Result
from src.common.security import hash_client_secret, verify_client_secret
from src.core.config import settings
from src.models.persistance.auth import Client
from src.repositories.client_repo import (
    create_client,
    get_client_by_id,
    list_clients,
    update_client,
)
from src.services.oauth import refresh_tokens

logger = logging.getLogger(__name__)

# Compared against when the client is unknown, so both paths cost the same
_DUMMY_SECRET_HASH = hash_client_secret("unknown-client")

_INVALID_CLIENT = Err(ErrorKind.INVALID_CLIENT, "Client authentication failed")


@dataclass(frozen=True)
class ClientCredentials:
    client_id: Optional[str]
    client_secret: Optional[str]
    method: str  # client_secret_basic | client_secret_post | none


@dataclass(frozen=True)
class RegisteredClient:
    client: Client
    client_secret: Optional[str]  # shown once


# ---------------------------------------------------------------------------
# Credential extraction
# ---------------------------------------------------------------------------

def extract_client_credentials(
    authorization: Optional[str],
    params: Mapping[str, str],
) -> Result[ClientCredentials]:
    """
    Read client credentials from HTTP Basic or from the request body.

    RFC 6749 section 2.3.1: Basic credentials are form-urlencoded before
    base64, and a client must not use more than one method per request.
    """
    body_id = params.get("client_id") or None
    body_secret = params.get("client_secret") or None

    if authorization and authorization[:6].lower() == "basic ":
        if body_secret:
            return Err(ErrorKind.INVALID_REQUEST, "Multiple client authentication methods")
        try:
            decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return _INVALID_CLIENT
        if ":" not in decoded:
            return _INVALID_CLIENT
        raw_id, raw_secret = decoded.split(":", 1)
        client_id = unquote_plus(raw_id)
        if body_id and body_id != client_id:
            return Err(ErrorKind.INVALID_REQUEST, "client_id mismatch")
        return Ok(ClientCredentials(client_id, unquote_plus(raw_secret), "client_secret_basic"))

    if body_secret:
        return Ok(ClientCredentials(body_id, body_secret, "client_secret_post"))

    return Ok(ClientCredentials(body_id, None, "none"))


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def authenticate(
    db: AsyncSession,
    credentials: ClientCredentials,
) -> Result[Client]:
    if not credentials.client_id:
        return _INVALID_CLIENT

    client = await get_client_by_id(db, credentials.client_id)

    if client is None or not client.is_active:
        await asyncio.to_thread(
            verify_client_secret, credentials.client_secret or "", _DUMMY_SECRET_HASH
        )
        logger.warning("Client authentication failed for client_id=%s", credentials.client_id)
        return _INVALID_CLIENT

    if client.is_public:
        if credentials.client_secret is not None:
            logger.warning("Secret presented by public client %s", client.client_id)
            return _INVALID_CLIENT
        return Ok(client)

    if credentials.client_secret is None or not client.client_secret_hash:
        logger.warning("Missing secret for confidential client %s", client.client_id)
        return _INVALID_CLIENT

    # Hash verification is CPU bound; keep it off the event loop
    verified = await asyncio.to_thread(
        verify_client_secret, credentials.client_secret, client.client_secret_hash
    )
    if not verified:
        logger.warning("Client authentication failed for client_id=%s", client.client_id)
        return _INVALID_CLIENT

    return Ok(client)


def validate_redirect_uri(client: Client, uri: str) -> bool:
    # Exact string match only; no prefix or sub-path matching
    return uri in client.redirect_uris


def validate_scopes(client: Client, scope: str) -> Result[str]:
    requested = scope.split()
    if not requested:
        return Err(ErrorKind.INVALID_SCOPE, "Missing scope")

    allowed = set(client.scopes) & set(settings.SUPPORTED_SCOPES)
    denied = [s for s in requested if s not in allowed]
    if denied:
        return Err(ErrorKind.INVALID_SCOPE, f"Scope not allowed: {' '.join(denied)}")

    # de-duplicate, keep the caller's order
    return Ok(" ".join(dict.fromkeys(requested)))


# ---------------------------------------------------------------------------
# Admin lifecycle
# ---------------------------------------------------------------------------

def _validate_metadata(
    redirect_uris: list[str],
    scopes: list[str],
    grant_types: list[str],
    token_endpoint_auth_method: str,
) -> Optional[Err]:
    if not redirect_uris:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required field: redirect_uris")

    unsupported_grants = set(grant_types) - set(settings.GRANT_TYPES_SUPPORTED)
    if unsupported_grants:
        return Err(
            ErrorKind.UNSUPPORTED_GRANT_TYPE,
            f"Unsupported grant_type(s): {', '.join(sorted(unsupported_grants))}",
        )

    unsupported_scopes = set(scopes) - set(settings.SUPPORTED_SCOPES)
    if unsupported_scopes:
        return Err(
            ErrorKind.INVALID_SCOPE,
            f"Unsupported scope(s): {', '.join(sorted(unsupported_scopes))}",
        )

    if token_endpoint_auth_method not in settings.TOKEN_ENDPOINT_AUTH_METHODS_SUPPORTED:
        return Err(
            ErrorKind.INVALID_REQUEST,
            f"Unsupported token_endpoint_auth_method: {token_endpoint_auth_method}",
        )

    return None


async def register_client(
    db: AsyncSession,
    *,
    client_name: str,
    redirect_uris: list[str],
    scopes: Optional[list[str]] = None,
    grant_types: Optional[list[str]] = None,
    token_endpoint_auth_method: str = "client_secret_basic",
    application_type: str = "web",
    is_first_party: bool = False,
) -> Result[RegisteredClient]:
    scopes = scopes or list(settings.DEFAULT_CLIENT_SCOPES)
    grant_types = grant_types or list(settings.GRANT_TYPES_SUPPORTED)

    error = _validate_metadata(redirect_uris, scopes, grant_types, token_endpoint_auth_method)
    if error:
        return error

    client_secret = None
    secret_hash = None
    if token_endpoint_auth_method != "none":
        client_secret = secrets.token_hex(32)
        secret_hash = await asyncio.to_thread(hash_client_secret, client_secret)

    client = await create_client(
        db,
        client_id=f"ec_{secrets.token_hex(12)}",
        client_secret_hash=secret_hash,
        issued_at=int(time.time()),
        client_name=client_name,
        redirect_uris=redirect_uris,
        scopes=scopes,
        grant_types=grant_types,
        response_types=list(settings.RESPONSE_TYPES_SUPPORTED),
        token_endpoint_auth_method=token_endpoint_auth_method,
        application_type=application_type,
        is_first_party=is_first_party,
    )
    logger.info("Registered client %s (%s)", client.client_id, client.client_name)
    return Ok(RegisteredClient(client=client, client_secret=client_secret))


async def rotate_client_secret(
    db: AsyncSession,
    client_id: str,
) -> Result[RegisteredClient]:
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")
    if client.is_public:
        return Err(ErrorKind.INVALID_REQUEST, "Public clients have no secret")

    client_secret = secrets.token_hex(32)
    client = await update_client(
        db,
        client,
        client_secret_hash=await asyncio.to_thread(hash_client_secret, client_secret),
        updated_at=int(time.time()),
    )
    logger.info("Rotated secret for client %s", client.client_id)
    return Ok(RegisteredClient(client=client, client_secret=client_secret))


async def update_client_metadata(
    db: AsyncSession,
    client_id: str,
    *,
    client_name: Optional[str] = None,
    redirect_uris: Optional[list[str]] = None,
    scopes: Optional[list[str]] = None,
) -> Result[Client]:
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")

    error = _validate_metadata(
        redirect_uris if redirect_uris is not None else client.redirect_uris,
        scopes if scopes is not None else client.scopes,
        client.grant_types,
        client.token_endpoint_auth_method,
    )
    if error:
        return error

    fields = {"updated_at": int(time.time())}
    if client_name is not None:
        fields["client_name"] = client_name
    if redirect_uris is not None:
        fields["redirect_uris"] = redirect_uris
    if scopes is not None:
        fields["scopes"] = scopes

    return Ok(await update_client(db, client, **fields))


async def deactivate_client(
    db: AsyncSession,
    client_id: str,
) -> Result[int]:
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")

    await update_client(
        db,
        client,
        is_active=False,
        suspended_at=None,
        updated_at=int(time.time()),
    )
    revoked = await refresh_tokens.revoke_client_tokens(db, client_id)
    logger.info("Deactivated client %s, revoked %d refresh tokens", client_id, revoked)
    return Ok(revoked)


async def suspend_client(
    db: AsyncSession,
    client_id: str,
) -> Result[Client]:
    """
    Take an active client out of service without touching its grants.

    While suspended the client cannot authenticate, so its refresh tokens are
    unusable; they work again after reactivate_client.
    """
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")
    if not client.is_active:
        return Err(ErrorKind.INVALID_REQUEST, "Only active clients can be suspended")

    now = int(time.time())
    client = await update_client(db, client, is_active=False, suspended_at=now, updated_at=now)
    logger.warning("Suspended client %s", client_id)
    return Ok(client)


async def reactivate_client(
    db: AsyncSession,
    client_id: str,
) -> Result[Client]:
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")
    if not client.is_suspended:
        return Err(ErrorKind.INVALID_REQUEST, "Only suspended clients can be reactivated")

    client = await update_client(
        db,
        client,
        is_active=True,
        suspended_at=None,
        updated_at=int(time.time()),
    )
    logger.info("Reactivated client %s", client_id)
    return Ok(client)


async def get_client(
    db: AsyncSession,
    client_id: str,
) -> Result[Client]:
    client = await get_client_by_id(db, client_id)
    if client is None:
        return Err(ErrorKind.INVALID_REQUEST, "Unknown client")
    return Ok(client)


async def list_registered_clients(db: AsyncSession) -> list[Client]:
    return await list_clients(db)


async def get_public_info(
    db: AsyncSession,
    client_id: str,
) -> Optional[Client]:
    # What a login or consent page may show about a client; active ones only
    client = await get_client_by_id(db, client_id)
    if client is None or not client.is_active:
        return None
    return client
