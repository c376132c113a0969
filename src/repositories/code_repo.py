from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.db import bounded
from src.models.persistance.auth import AuthorizationCode


async def create_code(
    db: AsyncSession,
    code: AuthorizationCode,
) -> AuthorizationCode:
    db.add(code)
    await bounded(db.commit())
    return code


async def get_code_by_hash(
    db: AsyncSession,
    code_hash: str,
) -> AuthorizationCode | None:
    stmt = (
        select(AuthorizationCode)
        .where(AuthorizationCode.code_hash == code_hash)
        .execution_options(populate_existing=True)
    )
    result = await bounded(db.execute(stmt))
    return result.scalar_one_or_none()


async def claim_code(
    db: AsyncSession,
    code_hash: str,
    now: int,
) -> bool:
    """Fetch-and-mark-used in one conditional UPDATE; True for the single winner."""
    stmt = (
        update(AuthorizationCode)
        .where(
            AuthorizationCode.code_hash == code_hash,
            AuthorizationCode.used.is_(False),
            AuthorizationCode.expires_at > now,
        )
        .values(used=True, used_at=now)
    )
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount == 1


async def set_code_family(
    db: AsyncSession,
    code_hash: str,
    family_id: str,
) -> None:
    stmt = (
        update(AuthorizationCode)
        .where(AuthorizationCode.code_hash == code_hash)
        .values(refresh_family_id=family_id)
    )
    await bounded(db.execute(stmt))
    await bounded(db.commit())


async def delete_expired_codes(
    db: AsyncSession,
    now: int,
) -> int:
    stmt = delete(AuthorizationCode).where(AuthorizationCode.expires_at <= now)
    result = await bounded(db.execute(stmt))
    await bounded(db.commit())
    return result.rowcount
