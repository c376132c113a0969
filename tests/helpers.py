import base64
import time
from functools import lru_cache

from sqlalchemy import select

from src.common.security import hash_client_secret
from src.models.persistance.auth import Client, RefreshToken

USER_ID = "user-1"
CONFIDENTIAL_ID = "ec_confidential"
CONFIDENTIAL_SECRET = "s3cret-value"
OTHER_ID = "ec_other"
OTHER_SECRET = "other-secret"
PUBLIC_ID = "ec_public"
REDIRECT_URI = "https://app.example.com/callback"


def basic_auth(client_id: str, secret: str) -> dict:
    raw = f"{client_id}:{secret}".encode()
    return {"Authorization": "Basic " + base64.b64encode(raw).decode()}


@lru_cache(maxsize=None)
def _secret_hash(secret: str) -> str:
    return hash_client_secret(secret)


def make_client(client_id, secret=None, **overrides) -> Client:
    fields = dict(
        client_id=client_id,
        client_secret_hash=_secret_hash(secret) if secret else None,
        client_id_issued_at=int(time.time()),
        client_name=client_id,
        redirect_uris=[REDIRECT_URI],
        scopes=["openid", "profile", "email", "offline_access"],
        grant_types=["authorization_code", "refresh_token"],
        response_types=["code"],
        token_endpoint_auth_method="client_secret_basic" if secret else "none",
        application_type="web",
        is_first_party=False,
        is_active=True,
    )
    fields.update(overrides)
    return Client(**fields)


async def family_records(db, family_id: str) -> list[RefreshToken]:
    stmt = (
        select(RefreshToken)
        .where(RefreshToken.family_id == family_id)
        .order_by(RefreshToken.generation)
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(stmt)).scalars().all())
