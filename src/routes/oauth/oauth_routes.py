from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.common import rate_limiter
from src.common.exceptions import NO_STORE_HEADERS
from src.common.result import Err, ErrorKind
from src.common.token import JWTService
from src.core.db import get_session
from src.models.dto.auth_models import IntrospectionResponse, TokenResponse
from src.models.persistance.auth import User
from src.routes.dependencies import (
    get_client_credentials,
    get_jwt_service,
    get_request_context,
    get_request_params,
    get_session_user,
    rate_limited,
    raise_for_err,
)
from src.services.oauth import authorization, token_service
from src.services.oauth.client_registry import ClientCredentials
from src.services.oauth.refresh_tokens import RequestContext

router = APIRouter(prefix="/oauth", tags=["oauth"])

# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

@router.get("/authorize")
async def authorize(
    request: Request,
    db: AsyncSession = Depends(get_session),
    user: Optional[User] = Depends(get_session_user),
):
    result = await authorization.authorize(db, user, request.query_params)
    if isinstance(result, Err):
        raise_for_err(result)

    return RedirectResponse(result.value, status_code=302)

# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------

@router.post(
    "/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited(rate_limiter.TOKEN))],
)
async def token(
    response: Response,
    params: Dict[str, str] = Depends(get_request_params),
    credentials: ClientCredentials = Depends(get_client_credentials),
    db: AsyncSession = Depends(get_session),
    jwt_service: JWTService = Depends(get_jwt_service),
    context: RequestContext = Depends(get_request_context),
):
    result = await token_service.exchange_token(db, jwt_service, credentials, params, context)
    if isinstance(result, Err):
        raise_for_err(result, NO_STORE_HEADERS)

    response.headers.update(NO_STORE_HEADERS)
    return result.value

# ---------------------------------------------------------------------------
# Introspection / revocation
# ---------------------------------------------------------------------------

@router.post(
    "/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited(rate_limiter.TOKEN))],
)
async def introspect(
    response: Response,
    params: Dict[str, str] = Depends(get_request_params),
    credentials: ClientCredentials = Depends(get_client_credentials),
    db: AsyncSession = Depends(get_session),
    jwt_service: JWTService = Depends(get_jwt_service),
):
    result = await token_service.introspect_token(
        db,
        jwt_service,
        credentials,
        token=params.get("token"),
        token_type_hint=params.get("token_type_hint"),
    )
    if isinstance(result, Err):
        raise_for_err(result, NO_STORE_HEADERS)

    response.headers.update(NO_STORE_HEADERS)
    return result.value


@router.post("/revoke", dependencies=[Depends(rate_limited(rate_limiter.TOKEN))])
async def revoke(
    params: Dict[str, str] = Depends(get_request_params),
    credentials: ClientCredentials = Depends(get_client_credentials),
    db: AsyncSession = Depends(get_session),
    jwt_service: JWTService = Depends(get_jwt_service),
):
    result = await token_service.revoke_token(
        db,
        jwt_service,
        credentials,
        token=params.get("token"),
        token_type_hint=params.get("token_type_hint"),
    )
    if isinstance(result, Err):
        raise_for_err(result)

    return result.value

# ---------------------------------------------------------------------------
# UserInfo
# ---------------------------------------------------------------------------

def _bearer_challenge(err: Err) -> dict:
    challenge = f'Bearer error="{err.kind.value}"'
    if err.description:
        challenge += f', error_description="{err.description}"'
    if err.kind == ErrorKind.INSUFFICIENT_SCOPE:
        challenge += ', scope="openid"'
    return {**NO_STORE_HEADERS, "WWW-Authenticate": challenge}


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def _userinfo(
    bearer_token: Optional[str],
    response: Response,
    db: AsyncSession,
    jwt_service: JWTService,
):
    result = await token_service.userinfo(db, jwt_service, bearer_token)
    if isinstance(result, Err):
        raise_for_err(result, _bearer_challenge(result))

    response.headers.update(NO_STORE_HEADERS)
    return result.value


@router.get("/userinfo")
async def userinfo(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    jwt_service: JWTService = Depends(get_jwt_service),
):
    return await _userinfo(_bearer_token(request), response, db, jwt_service)


@router.post("/userinfo")
async def userinfo_post(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    jwt_service: JWTService = Depends(get_jwt_service),
):
    # RFC 6750 section 2.2 also allows a form-encoded access_token
    token = _bearer_token(request)
    if token is None and request.headers.get("content-type", "").startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form()
        value = form.get("access_token")
        token = value if isinstance(value, str) else None

    return await _userinfo(token, response, db, jwt_service)
