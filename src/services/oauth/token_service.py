"""
Token endpoint orchestration: grants, introspection, revocation, userinfo.

Each operation authenticates the client (where the endpoint requires it)
and composes the code store, the refresh token engine and the JWT codec.
Failures are returned as Err values; the route layer turns them into
RFC shaped error responses.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.common.result import Err, ErrorKind, Ok, Result
from src.common.token import JWTService, scope_set, user_claims
from src.core.config import settings
from src.models.persistance.auth import Client, User
from src.repositories.user_repo import get_user_by_id
from src.services.oauth import code_store, refresh_tokens
from src.services.oauth.client_registry import ClientCredentials, authenticate

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"

HINT_ACCESS_TOKEN = "access_token"
HINT_REFRESH_TOKEN = "refresh_token"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _load_active_user(db: AsyncSession, user_id: str) -> Optional[User]:
    user = await get_user_by_id(db, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def _token_response(
    jwt_service: JWTService,
    *,
    client: Client,
    user: User,
    scope: str,
    auth_time: int,
    refresh_token: Optional[str] = None,
    nonce: Optional[str] = None,
) -> Dict[str, Any]:
    # RSA signing is CPU bound; keep it off the event loop
    access_token = await asyncio.to_thread(
        jwt_service.issue_access_token,
        user.id,
        client.client_id,
        scope,
    )

    response: Dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": settings.ACCESS_TOKEN_TTL,
        "scope": scope,
    }

    if refresh_token:
        response["refresh_token"] = refresh_token

    if "openid" in scope_set(scope):
        response["id_token"] = await asyncio.to_thread(
            jwt_service.issue_id_token,
            user,
            client.client_id,
            scope,
            auth_time,
            nonce,
            access_token,
        )

    return response


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------

async def exchange_token(
    db: AsyncSession,
    jwt_service: JWTService,
    credentials: ClientCredentials,
    params: Mapping[str, str],
    context: Optional[refresh_tokens.RequestContext] = None,
) -> Result[Dict[str, Any]]:
    grant_type = params.get("grant_type")
    if not grant_type:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: grant_type")

    if grant_type not in settings.GRANT_TYPES_SUPPORTED:
        return Err(ErrorKind.UNSUPPORTED_GRANT_TYPE, f"Unsupported grant_type: {grant_type}")

    client = await authenticate(db, credentials)
    if isinstance(client, Err):
        return client
    client = client.value

    if grant_type not in client.grant_types:
        return Err(
            ErrorKind.UNAUTHORIZED_CLIENT,
            f"Client is not allowed to use grant_type {grant_type}",
        )

    if grant_type == GRANT_AUTHORIZATION_CODE:
        return await _authorization_code_grant(db, jwt_service, client, params, context)

    return await _refresh_token_grant(db, jwt_service, client, params, context)


async def _authorization_code_grant(
    db: AsyncSession,
    jwt_service: JWTService,
    client: Client,
    params: Mapping[str, str],
    context: Optional[refresh_tokens.RequestContext] = None,
) -> Result[Dict[str, Any]]:
    for name in ("code", "redirect_uri", "code_verifier"):
        if not params.get(name):
            return Err(ErrorKind.INVALID_REQUEST, f"Missing required parameter: {name}")

    consumed = await code_store.consume_code(
        db,
        code=params["code"],
        client_id=client.client_id,
        redirect_uri=params["redirect_uri"],
        code_verifier=params["code_verifier"],
    )
    if isinstance(consumed, Err):
        return consumed
    consumed = consumed.value

    user = await _load_active_user(db, consumed.user_id)
    if user is None:
        return Err(ErrorKind.INVALID_GRANT, "User not found or not active")

    plain_refresh = None
    family_id = None
    if GRANT_REFRESH_TOKEN in client.grant_types:
        issued = await refresh_tokens.issue(
            db,
            client_id=client.client_id,
            user_id=user.id,
            scope=consumed.scope,
            auth_time=consumed.auth_time,
            context=context,
        )
        await code_store.attach_family(db, consumed, issued.record.family_id)
        plain_refresh = issued.plain_token
        family_id = issued.record.family_id

    response = await _token_response(
        jwt_service,
        client=client,
        user=user,
        scope=consumed.scope,
        auth_time=consumed.auth_time,
        refresh_token=plain_refresh,
        nonce=consumed.nonce,
    )
    logger.info(
        "Issued tokens grant=authorization_code client=%s user=%s family=%s",
        client.client_id,
        user.id,
        family_id,
    )
    return Ok(response)


async def _refresh_token_grant(
    db: AsyncSession,
    jwt_service: JWTService,
    client: Client,
    params: Mapping[str, str],
    context: Optional[refresh_tokens.RequestContext] = None,
) -> Result[Dict[str, Any]]:
    presented = params.get("refresh_token")
    if not presented:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: refresh_token")

    rotated = await refresh_tokens.rotate(
        db,
        presented,
        client_id=client.client_id,
        requested_scope=params.get("scope") or None,
        context=context,
    )
    if isinstance(rotated, Err):
        return rotated
    record = rotated.value.record

    user = await _load_active_user(db, record.user_id)
    if user is None:
        await refresh_tokens.revoke_family(db, record.family_id, refresh_tokens.REASON_USER_INACTIVE)
        return Err(ErrorKind.INVALID_GRANT, "User not found or not active")

    response = await _token_response(
        jwt_service,
        client=client,
        user=user,
        scope=record.scope,
        auth_time=record.auth_time,
        refresh_token=rotated.value.plain_token,
    )
    logger.info(
        "Issued tokens grant=refresh_token client=%s user=%s family=%s generation=%d",
        client.client_id,
        user.id,
        record.family_id,
        record.generation,
    )
    return Ok(response)


# ---------------------------------------------------------------------------
# Introspection (RFC 7662)
# ---------------------------------------------------------------------------

def _describe_access_token(claims: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "active": True,
        "scope": claims.get("scope"),
        "client_id": claims.get("client_id"),
        "sub": claims.get("sub"),
        "exp": claims.get("exp"),
        "iat": claims.get("iat"),
        "iss": claims.get("iss"),
        "jti": claims.get("jti"),
        "token_type": "access_token",
    }


async def introspect_token(
    db: AsyncSession,
    jwt_service: JWTService,
    credentials: ClientCredentials,
    token: Optional[str],
    token_type_hint: Optional[str] = None,
) -> Result[Dict[str, Any]]:
    """
    Report whether a token is active.

    Anything that is not an active token the caller may see, whatever the
    reason, yields exactly {"active": False}.
    """
    client = await authenticate(db, credentials)
    if isinstance(client, Err):
        return client
    client = client.value

    if not token:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: token")

    async def as_refresh() -> Dict[str, Any]:
        return await refresh_tokens.introspect(db, token, client.client_id)

    def as_access() -> Dict[str, Any]:
        verified = jwt_service.verify_access_token(token)
        if isinstance(verified, Err):
            return dict(refresh_tokens.INACTIVE)
        return _describe_access_token(verified.value)

    if token_type_hint == HINT_REFRESH_TOKEN:
        result = await as_refresh()
        if not result["active"]:
            result = as_access()
    else:
        result = as_access()
        if not result["active"]:
            result = await as_refresh()

    return Ok(result)


# ---------------------------------------------------------------------------
# Revocation (RFC 7009)
# ---------------------------------------------------------------------------

_NOT_OWNER = Err(ErrorKind.INVALID_GRANT, "Token was not issued to this client")


async def _revoke_refresh(
    db: AsyncSession,
    client: Client,
    token: str,
) -> Optional[Result[Dict[str, Any]]]:
    revoked = await refresh_tokens.revoke_token(db, token, client.client_id)
    if isinstance(revoked, Err):
        return revoked

    # Unknown or already revoked: let the access token check have a go
    return Ok({}) if revoked.value else None


def _revoke_access(
    jwt_service: JWTService,
    client: Client,
    token: str,
) -> Optional[Result[Dict[str, Any]]]:
    verified = jwt_service.verify_access_token(token)
    if isinstance(verified, Err):
        return None

    if verified.value.get("client_id") != client.client_id:
        return _NOT_OWNER

    # Stateless; it simply runs out at exp
    return Ok({})


async def revoke_token(
    db: AsyncSession,
    jwt_service: JWTService,
    credentials: ClientCredentials,
    token: Optional[str],
    token_type_hint: Optional[str] = None,
) -> Result[Dict[str, Any]]:
    """
    Revoke a refresh token (and its family) or accept an access token.

    Unknown, expired and already revoked tokens succeed with {}. A token
    that belongs to another client fails with invalid_grant.
    """
    client = await authenticate(db, credentials)
    if isinstance(client, Err):
        return client
    client = client.value

    if not token:
        return Err(ErrorKind.INVALID_REQUEST, "Missing required parameter: token")

    if token_type_hint == HINT_ACCESS_TOKEN:
        outcome = _revoke_access(jwt_service, client, token) or await _revoke_refresh(db, client, token)
    else:
        outcome = await _revoke_refresh(db, client, token) or _revoke_access(jwt_service, client, token)

    return outcome or Ok({})


# ---------------------------------------------------------------------------
# UserInfo (OIDC Core 5.3)
# ---------------------------------------------------------------------------

async def userinfo(
    db: AsyncSession,
    jwt_service: JWTService,
    bearer_token: Optional[str],
) -> Result[Dict[str, Any]]:
    if not bearer_token:
        return Err(ErrorKind.INVALID_TOKEN, "Missing bearer token")

    verified = jwt_service.verify_access_token(bearer_token)
    if isinstance(verified, Err):
        return verified
    claims = verified.value

    if "openid" not in scope_set(claims.get("scope")):
        return Err(ErrorKind.INSUFFICIENT_SCOPE, "The openid scope is required")

    user = await _load_active_user(db, claims["sub"])
    if user is None:
        return Err(ErrorKind.INVALID_TOKEN, "Unknown subject")

    return Ok(user_claims(user, claims["scope"]))
