from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.common import rate_limiter
from src.common.exceptions import AppException
from src.common.result import Err
from src.core.db import get_session
from src.models.dto.auth_models import (
    ClientDeactivationResponse,
    ClientPublicInfo,
    ClientRegistrationRequest,
    ClientResponse,
    ClientSecretResponse,
    ClientUpdateRequest,
)
from src.routes.dependencies import rate_limited, raise_for_err, require_admin
from src.services.oauth import client_registry
from src.services.oauth.client_registry import RegisteredClient

router = APIRouter(
    prefix="/oauth/clients",
    tags=["clients"],
    dependencies=[Depends(require_admin)],
)

# Readable without the admin key
public_router = APIRouter(prefix="/oauth/clients", tags=["clients"])


def _with_secret(registered: RegisteredClient) -> ClientSecretResponse:
    return ClientSecretResponse(
        **ClientResponse.model_validate(registered.client).model_dump(),
        client_secret=registered.client_secret,
    )

# ---------------------------------------------------------------------------
# Client management
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ClientSecretResponse,
    status_code=201,
    dependencies=[Depends(rate_limited(rate_limiter.REGISTRATION))],
)
async def register_client(
    payload: ClientRegistrationRequest,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.register_client(
        db,
        client_name=payload.client_name,
        redirect_uris=payload.redirect_uris,
        scopes=payload.scopes,
        grant_types=payload.grant_types,
        token_endpoint_auth_method=payload.token_endpoint_auth_method,
        application_type=payload.application_type,
        is_first_party=payload.is_first_party,
    )
    if isinstance(result, Err):
        raise_for_err(result)

    return _with_secret(result.value)


@router.post("/{client_id}/secret", response_model=ClientSecretResponse)
async def rotate_secret(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.rotate_client_secret(db, client_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return _with_secret(result.value)


@router.patch("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: str,
    payload: ClientUpdateRequest,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.update_client_metadata(
        db,
        client_id,
        client_name=payload.client_name,
        redirect_uris=payload.redirect_uris,
        scopes=payload.scopes,
    )
    if isinstance(result, Err):
        raise_for_err(result)

    return result.value


@router.delete("/{client_id}", response_model=ClientDeactivationResponse)
async def deactivate_client(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.deactivate_client(db, client_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return {
        "client_id": client_id,
        "is_active": False,
        "revoked_refresh_tokens": result.value,
    }


@router.get("", response_model=List[ClientResponse])
async def list_clients(db: AsyncSession = Depends(get_session)):
    return await client_registry.list_registered_clients(db)


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.get_client(db, client_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return result.value


@router.post("/{client_id}/suspend", response_model=ClientResponse)
async def suspend_client(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.suspend_client(db, client_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return result.value


@router.post("/{client_id}/reactivate", response_model=ClientResponse)
async def reactivate_client(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    result = await client_registry.reactivate_client(db, client_id)
    if isinstance(result, Err):
        raise_for_err(result)

    return result.value

# ---------------------------------------------------------------------------
# Public client info
# ---------------------------------------------------------------------------

@public_router.get("/{client_id}/info", response_model=ClientPublicInfo)
async def client_info(
    client_id: str,
    db: AsyncSession = Depends(get_session),
):
    client = await client_registry.get_public_info(db, client_id)
    if client is None:
        raise AppException(message="Client not found", status_code=404)

    return client
