from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.db import bounded
from src.models.persistance.auth import Client, RefreshToken


async def create_refresh_token(
    db: AsyncSession,
    token: RefreshToken,
) -> RefreshToken:
    db.add(token)
    await bounded(db.commit())
    return token


async def get_by_hash(
    db: AsyncSession,
    token_hash: str,
) -> RefreshToken | None:
    stmt = (
        select(RefreshToken)
        .where(RefreshToken.token_hash == token_hash)
        .execution_options(populate_existing=True)
    )
    result = await bounded(db.execute(stmt))
    return result.scalar_one_or_none()


async def claim_for_rotation(
    db: AsyncSession,
    token_id: str,
    now: int,
) -> bool:
    """Compare-and-set on the head of a family; only one caller can supersede it."""
    stmt = (
        update(RefreshToken)
        .where(
            RefreshToken.id == token_id,
            RefreshToken.rotated_at.is_(None),
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .values(rotated_at=now, last_used_at=now)
    )
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount == 1


async def revoke_family(
    db: AsyncSession,
    family_id: str,
    reason: str,
    now: int,
) -> int:
    stmt = (
        update(RefreshToken)
        .where(
            RefreshToken.family_id == family_id,
            RefreshToken.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=now, revocation_reason=reason)
    )
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount


async def revoke_matching(
    db: AsyncSession,
    *,
    reason: str,
    now: int,
    user_id: str | None = None,
    client_id: str | None = None,
) -> int:
    criteria = [RefreshToken.is_revoked.is_(False)]
    if user_id is not None:
        criteria.append(RefreshToken.user_id == user_id)
    if client_id is not None:
        criteria.append(RefreshToken.client_id == client_id)

    stmt = (
        update(RefreshToken)
        .where(*criteria)
        .values(is_revoked=True, revoked_at=now, revocation_reason=reason)
    )
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount


async def list_active_for_user(
    db: AsyncSession,
    user_id: str,
    now: int,
) -> list[tuple[RefreshToken, str]]:
    """Usable family heads of a user, with the owning client's name."""
    stmt = (
        select(RefreshToken, Client.client_name)
        .join(Client, Client.client_id == RefreshToken.client_id)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.rotated_at.is_(None),
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .order_by(RefreshToken.created_at)
        .execution_options(populate_existing=True)
    )
    result = await bounded(db.execute(stmt))
    return [(record, client_name) for record, client_name in result.all()]


async def delete_expired(
    db: AsyncSession,
    before: int,
) -> int:
    stmt = delete(RefreshToken).where(RefreshToken.expires_at <= before)
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount
