import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.common.result import Err, ErrorKind, Ok, Result
from src.common.security import (
    PKCE_METHOD_S256,
    generate_token,
    hash_token,
    verify_pkce,
)
from src.core.config import settings
from src.models.persistance.auth import AuthorizationCode, Client
from src.repositories import code_repo
from src.services.oauth import refresh_tokens

logger = logging.getLogger(__name__)

_INVALID_CODE = Err(ErrorKind.INVALID_GRANT, "Invalid, expired, or already used authorization code")


@dataclass(frozen=True)
class ConsumedCode:
    code_hash: str
    user_id: str
    scope: str
    nonce: Optional[str]
    auth_time: int


async def issue_code(
    db: AsyncSession,
    client: Client,
    user_id: str,
    redirect_uri: str,
    scope: str,
    code_challenge: str,
    code_challenge_method: str = PKCE_METHOD_S256,
    nonce: Optional[str] = None,
    state: Optional[str] = None,
    auth_time: Optional[int] = None,
) -> tuple[str, AuthorizationCode]:
    """
    Mint a short-lived authorization code bound to a PKCE challenge.

    Returns:
        The plain code (handed to the user agent once) and its stored record.
    """
    plain_code = generate_token()
    now = int(time.time())

    record = AuthorizationCode(
        code_hash=hash_token(plain_code),
        client_id=client.client_id,
        user_id=user_id,
        redirect_uri=redirect_uri,
        scope=scope,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        nonce=nonce,
        state=state,
        auth_time=auth_time or now,
        issued_at=now,
        expires_at=now + settings.AUTH_CODE_TTL,
        used=False,
    )
    await code_repo.create_code(db, record)
    return plain_code, record


async def _handle_replay(db: AsyncSession, record: AuthorizationCode) -> None:
    # RFC 6749 section 4.1.2: revoke what was issued from a replayed code
    logger.warning(
        "Authorization code replay for client=%s user=%s",
        record.client_id,
        record.user_id,
    )
    if record.refresh_family_id:
        await refresh_tokens.revoke_family(
            db, record.refresh_family_id, refresh_tokens.REASON_CODE_REPLAY
        )


async def consume_code(
    db: AsyncSession,
    code: str,
    client_id: str,
    redirect_uri: str,
    code_verifier: str,
) -> Result[ConsumedCode]:
    """
    Validate and burn an authorization code.

    Checks existence, expiry, prior use, client and redirect_uri binding and
    PKCE, then claims the code with a conditional update so that at most
    one concurrent caller succeeds. A failed PKCE check burns the code too.
    """
    code_hash = hash_token(code)
    record = await code_repo.get_code_by_hash(db, code_hash)
    if record is None:
        return _INVALID_CODE

    now = int(time.time())

    if record.used:
        await _handle_replay(db, record)
        return _INVALID_CODE

    if record.expires_at <= now:
        return _INVALID_CODE

    if record.client_id != client_id or record.redirect_uri != redirect_uri:
        return _INVALID_CODE

    pkce = verify_pkce(code_verifier, record.code_challenge, record.code_challenge_method)
    if isinstance(pkce, Err):
        return pkce

    if not pkce.value:
        await code_repo.claim_code(db, code_hash, now)
        logger.warning("PKCE verification failed for client=%s", client_id)
        return Err(ErrorKind.INVALID_GRANT, "PKCE verification failed")

    if not await code_repo.claim_code(db, code_hash, now):
        # Lost the race to a concurrent exchange of the same code
        await _handle_replay(db, record)
        return _INVALID_CODE

    return Ok(
        ConsumedCode(
            code_hash=code_hash,
            user_id=record.user_id,
            scope=record.scope,
            nonce=record.nonce,
            auth_time=record.auth_time,
        )
    )


async def attach_family(
    db: AsyncSession,
    consumed: ConsumedCode,
    family_id: str,
) -> None:
    await code_repo.set_code_family(db, consumed.code_hash, family_id)
