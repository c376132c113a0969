from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.exceptions import AppException
from src.core.db import get_session
from src.models.dto.auth_models import (
    AuthorizationRevocationResponse,
    UserAuthorizationList,
    UserAuthorizationResponse,
)
from src.models.persistance.auth import User
from src.routes.dependencies import require_session_user
from src.services.oauth import refresh_tokens

router = APIRouter(prefix="/oauth/user", tags=["user"])

# ---------------------------------------------------------------------------
# Authorized applications of the signed-in user
# ---------------------------------------------------------------------------

@router.get("/authorizations", response_model=UserAuthorizationList)
async def list_authorizations(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
):
    authorizations = [
        UserAuthorizationResponse.model_validate(grant)
        for grant in await refresh_tokens.list_user_authorizations(db, user.id)
    ]
    return UserAuthorizationList(authorizations=authorizations, total=len(authorizations))


@router.delete("/authorizations/{client_id}", response_model=AuthorizationRevocationResponse)
async def revoke_authorization(
    client_id: str,
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
):
    revoked = await refresh_tokens.revoke_user_tokens(db, user.id, client_id=client_id)
    if not revoked:
        raise AppException(message="Authorization not found", status_code=404)

    return {"revoked_refresh_tokens": revoked}


@router.delete("/authorizations", response_model=AuthorizationRevocationResponse)
async def revoke_all_authorizations(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
):
    # Sign out of every client
    revoked = await refresh_tokens.revoke_user_tokens(db, user.id)
    return {"revoked_refresh_tokens": revoked}
