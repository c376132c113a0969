from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.db import bounded
from src.models.persistance.auth import User


async def get_user_by_id(
    db: AsyncSession,
    user_id: str,
) -> User | None:
    stmt = select(User).where(User.id == user_id)
    result = await bounded(db.execute(stmt))
    return result.scalar_one_or_none()
