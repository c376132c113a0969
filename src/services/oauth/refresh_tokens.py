"""
Refresh token store and rotation engine.

Every refresh token belongs to a family: the lineage of tokens produced by
successive rotations from one authorization grant. Only the family head is
usable. Presenting a superseded member is treated as theft and revokes the
whole family.

States per record: active -> rotated (superseded by a child) or revoked.
Expired is checked at read time. Only SHA-256 hashes of the secrets are
stored; the plaintext is returned to the caller once.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.common.result import Err, ErrorKind, Ok, Result
from src.common.security import generate_token, hash_token
from src.common.token import scope_set
from src.core.config import settings
from src.models.persistance.auth import RefreshToken
from src.repositories import refresh_token_repo, code_repo

logger = logging.getLogger(__name__)

INACTIVE: Dict[str, Any] = {"active": False}

# Revocation reasons
REASON_REUSE = "token_reuse"
REASON_CLIENT_REVOKED = "client_revoked"
REASON_USER_LOGOUT = "user_logout"
REASON_USER_REVOKED = "user_revoked"
REASON_CLIENT_DELETED = "client_deleted"
REASON_CODE_REPLAY = "code_replay"
REASON_USER_INACTIVE = "user_inactive"


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class IssuedRefreshToken:
    plain_token: str
    record: RefreshToken


@dataclass(frozen=True)
class UserAuthorization:
    """A client the user has an active grant with."""

    client_id: str
    client_name: str
    scope: str
    authorized_at: int
    last_used_at: int


def _now() -> int:
    return int(time.time())


async def _create(
    db: AsyncSession,
    *,
    client_id: str,
    user_id: str,
    scope: str,
    auth_time: int,
    family_id: str,
    generation: int,
    parent_id: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> IssuedRefreshToken:
    plain_token = generate_token()
    now = _now()
    context = context or RequestContext()
    record = RefreshToken(
        id=str(uuid.uuid4()),
        token_hash=hash_token(plain_token),
        client_id=client_id,
        user_id=user_id,
        scope=scope,
        family_id=family_id,
        generation=generation,
        parent_id=parent_id,
        auth_time=auth_time,
        is_revoked=False,
        created_at=now,
        expires_at=now + settings.REFRESH_TOKEN_TTL,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
    )
    await refresh_token_repo.create_refresh_token(db, record)
    return IssuedRefreshToken(plain_token=plain_token, record=record)


async def issue(
    db: AsyncSession,
    client_id: str,
    user_id: str,
    scope: str,
    auth_time: Optional[int] = None,
    context: Optional[RequestContext] = None,
) -> IssuedRefreshToken:
    """Start a new family (generation 1) for a fresh grant."""
    issued = await _create(
        db,
        client_id=client_id,
        user_id=user_id,
        scope=scope,
        auth_time=auth_time or _now(),
        family_id=str(uuid.uuid4()),
        generation=1,
        context=context,
    )
    logger.info(
        "Issued refresh token family=%s client=%s user=%s",
        issued.record.family_id,
        client_id,
        user_id,
    )
    return issued


async def rotate(
    db: AsyncSession,
    plain_token: str,
    client_id: str,
    requested_scope: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> Result[IssuedRefreshToken]:
    """
    Exchange the family head for its successor.

    The new token keeps family, client, user and auth_time; its scope is
    the requested scope when that is a subset of the current one, so scope
    never grows across rotations.
    """
    record = await refresh_token_repo.get_by_hash(db, hash_token(plain_token))
    if record is None:
        return Err(ErrorKind.INVALID_GRANT, "Invalid refresh token")

    if record.client_id != client_id:
        logger.warning(
            "Refresh token of client %s presented by client %s",
            record.client_id,
            client_id,
        )
        return Err(ErrorKind.INVALID_GRANT, "Invalid refresh token")

    now = _now()
    if record.is_revoked or record.expires_at <= now:
        return Err(ErrorKind.INVALID_GRANT, "Invalid refresh token")

    if record.rotated_at is not None:
        # Security event: a superseded token came back. Kill the lineage.
        revoked = await revoke_family(db, record.family_id, REASON_REUSE)
        logger.warning(
            "SECURITY: refresh token reuse detected family=%s generation=%d client=%s, "
            "revoked %d tokens",
            record.family_id,
            record.generation,
            client_id,
            revoked,
        )
        return Err(ErrorKind.INVALID_GRANT, "Invalid refresh token")

    scope = record.scope
    # A blank scope counts as omitted and keeps the current grant (RFC 6749 section 6)
    if scope_set(requested_scope):
        excess = scope_set(requested_scope) - scope_set(record.scope)
        if excess:
            return Err(
                ErrorKind.INVALID_SCOPE,
                f"Cannot request scopes not in original grant: {' '.join(sorted(excess))}",
            )
        scope = " ".join(dict.fromkeys(requested_scope.split()))

    if not await refresh_token_repo.claim_for_rotation(db, record.id, now):
        # Lost a concurrent rotation (or the family was revoked meanwhile)
        return Err(ErrorKind.INVALID_GRANT, "Invalid refresh token")

    issued = await _create(
        db,
        client_id=record.client_id,
        user_id=record.user_id,
        scope=scope,
        auth_time=record.auth_time,
        family_id=record.family_id,
        generation=record.generation + 1,
        parent_id=record.id,
        context=context,
    )
    logger.info(
        "Rotated refresh token family=%s generation=%d client=%s",
        record.family_id,
        issued.record.generation,
        client_id,
    )
    return Ok(issued)


async def find(
    db: AsyncSession,
    plain_token: str,
) -> Optional[RefreshToken]:
    return await refresh_token_repo.get_by_hash(db, hash_token(plain_token))


async def revoke_token(
    db: AsyncSession,
    plain_token: str,
    client_id: str,
    reason: str = REASON_CLIENT_REVOKED,
) -> Result[int]:
    """
    Revoke the token and, by cascade, its family, on behalf of its client.

    Returns the number of records revoked: 0 for unknown tokens and for
    families already revoked. A token issued to another client is refused.
    """
    record = await find(db, plain_token)
    if record is None:
        return Ok(0)

    if record.client_id != client_id:
        logger.warning(
            "Client %s tried to revoke a refresh token of client %s",
            client_id,
            record.client_id,
        )
        return Err(ErrorKind.INVALID_GRANT, "Token was not issued to this client")

    revoked = await revoke_family(db, record.family_id, reason)
    if revoked:
        logger.info(
            "Revoked refresh token family=%s client=%s (%d tokens)",
            record.family_id,
            client_id,
            revoked,
        )
    return Ok(revoked)


async def revoke_family(
    db: AsyncSession,
    family_id: str,
    reason: str = REASON_CLIENT_REVOKED,
) -> int:
    return await refresh_token_repo.revoke_family(db, family_id, reason, _now())


async def revoke_user_tokens(
    db: AsyncSession,
    user_id: str,
    client_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> int:
    """Revoke the user's grants with one client, or with every client (sign out everywhere)."""
    if reason is None:
        reason = REASON_USER_REVOKED if client_id else REASON_USER_LOGOUT
    revoked = await refresh_token_repo.revoke_matching(
        db, reason=reason, now=_now(), user_id=user_id, client_id=client_id
    )
    logger.info(
        "Revoked %d refresh tokens user=%s client=%s reason=%s",
        revoked,
        user_id,
        client_id or "*",
        reason,
    )
    return revoked


async def revoke_client_tokens(
    db: AsyncSession,
    client_id: str,
    reason: str = REASON_CLIENT_DELETED,
) -> int:
    return await refresh_token_repo.revoke_matching(
        db, reason=reason, now=_now(), client_id=client_id
    )


async def list_user_authorizations(
    db: AsyncSession,
    user_id: str,
) -> List[UserAuthorization]:
    """One entry per client holding a usable refresh token for the user."""
    grants: Dict[str, UserAuthorization] = {}
    for record, client_name in await refresh_token_repo.list_active_for_user(db, user_id, _now()):
        seen = grants.get(record.client_id)
        if seen is None:
            grants[record.client_id] = UserAuthorization(
                client_id=record.client_id,
                client_name=client_name,
                scope=record.scope,
                authorized_at=record.auth_time,
                last_used_at=record.created_at,
            )
            continue
        grants[record.client_id] = UserAuthorization(
            client_id=seen.client_id,
            client_name=seen.client_name,
            scope=" ".join(dict.fromkeys(seen.scope.split() + record.scope.split())),
            authorized_at=min(seen.authorized_at, record.auth_time),
            last_used_at=max(seen.last_used_at, record.created_at),
        )
    return list(grants.values())


def describe(record: Optional[RefreshToken], client_id: str) -> Dict[str, Any]:
    """
    Introspection view of a record.

    Not found, expired, revoked, superseded and foreign tokens all look the
    same: {"active": False}.
    """
    if record is None or record.client_id != client_id or not record.is_active(_now()):
        return dict(INACTIVE)

    return {
        "active": True,
        "scope": record.scope,
        "client_id": record.client_id,
        "sub": record.user_id,
        "exp": record.expires_at,
        "iat": record.created_at,
        "token_type": "refresh_token",
    }


async def introspect(
    db: AsyncSession,
    plain_token: str,
    client_id: str,
) -> Dict[str, Any]:
    return describe(await find(db, plain_token), client_id)


async def purge_expired(db: AsyncSession) -> tuple[int, int]:
    """Delete expired codes and refresh tokens past the audit grace period."""
    now = _now()
    codes = await code_repo.delete_expired_codes(db, now)
    tokens = await refresh_token_repo.delete_expired(db, now - settings.REFRESH_TOKEN_PURGE_GRACE)
    if codes or tokens:
        logger.info("Purged %d expired codes and %d expired refresh tokens", codes, tokens)
    return codes, tokens
