from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.db import bounded
from src.models.persistance.auth import Client


async def create_client(
    db: AsyncSession,
    *,
    client_id: str,
    client_secret_hash: str | None,
    issued_at: int,
    client_name: str,
    redirect_uris: list[str],
    scopes: list[str],
    grant_types: list[str],
    response_types: list[str],
    token_endpoint_auth_method: str,
    application_type: str = "web",
    is_first_party: bool = False,
) -> Client:
    client = Client(
        client_id=client_id,
        client_secret_hash=client_secret_hash,
        client_id_issued_at=issued_at,
        client_name=client_name,
        redirect_uris=redirect_uris,
        scopes=scopes,
        grant_types=grant_types,
        response_types=response_types,
        token_endpoint_auth_method=token_endpoint_auth_method,
        application_type=application_type,
        is_first_party=is_first_party,
        is_active=True,
    )

    db.add(client)
    await bounded(db.commit())
    await bounded(db.refresh(client))
    return client


async def get_client_by_id(
    db: AsyncSession,
    client_id: str,
) -> Client | None:
    stmt = select(Client).where(Client.client_id == client_id)
    result = await bounded(db.execute(stmt))
    return result.scalar_one_or_none()


async def update_client(
    db: AsyncSession,
    client: Client,
    **fields,
) -> Client:
    for name, value in fields.items():
        setattr(client, name, value)

    await bounded(db.commit())
    await bounded(db.refresh(client))
    return client


async def list_clients(db: AsyncSession) -> list[Client]:
    stmt = select(Client).order_by(Client.client_id_issued_at.desc(), Client.client_id)
    result = await bounded(db.execute(stmt))
    return list(result.scalars().all())
