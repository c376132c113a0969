import json
from typing import Dict, Optional

from fastapi import Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.exceptions import NO_STORE_HEADERS, AppException, OAuthException
from src.common import rate_limiter
from src.common.keys import KeyManager
from src.common.result import Err, ErrorKind
from src.common.security import constant_time_equals
from src.common.token import JWTService
from src.core.config import settings
from src.core.db import get_session
from src.models.persistance.auth import User
from src.repositories.user_repo import get_user_by_id
from src.services.oauth.client_registry import ClientCredentials, extract_client_credentials
from src.services.oauth.refresh_tokens import RequestContext

BASIC_CHALLENGE = {"WWW-Authenticate": 'Basic realm="oauth"'}


def raise_for_err(err: Err, headers: Optional[dict] = None):
    """Convert a domain error into the RFC shaped HTTP error."""
    headers = dict(headers or {})
    if err.kind == ErrorKind.INVALID_CLIENT:
        headers.update(BASIC_CHALLENGE)
    raise OAuthException.from_err(err, headers=headers)


# ---------------------------------------------------------------------------
# Keys / tokens
# ---------------------------------------------------------------------------

def get_key_manager(request: Request) -> KeyManager:
    return request.app.state.key_manager


def get_jwt_service(key_manager: KeyManager = Depends(get_key_manager)) -> JWTService:
    return JWTService(key_manager)


# ---------------------------------------------------------------------------
# Request parameters
# ---------------------------------------------------------------------------

async def get_request_params(request: Request) -> Dict[str, str]:
    """Body parameters from a form (conventional) or JSON encoded request."""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise OAuthException(
                error="invalid_request",
                description="Malformed JSON body",
                headers=NO_STORE_HEADERS,
            )
        if not isinstance(body, dict):
            raise OAuthException(
                error="invalid_request",
                description="JSON body must be an object",
                headers=NO_STORE_HEADERS,
            )
        params = {k: v for k, v in body.items() if v is not None}
        for name, value in params.items():
            if not isinstance(value, str):
                raise OAuthException(
                    error="invalid_request",
                    description=f"Parameter {name} must be a string",
                    headers=NO_STORE_HEADERS,
                )
        return params

    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


async def get_client_credentials(
    request: Request,
    params: Dict[str, str] = Depends(get_request_params),
) -> ClientCredentials:
    result = extract_client_credentials(request.headers.get("authorization"), params)
    if isinstance(result, Err):
        raise_for_err(result, NO_STORE_HEADERS)
    return result.value


# ---------------------------------------------------------------------------
# End user
# ---------------------------------------------------------------------------

async def get_session_user(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """
    The end user authenticated by the upstream login flow.

    The login middleware of the host application sets request.state.user_id;
    without it the authorization endpoint answers login_required.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        return None
    return await get_user_by_id(db, user_id)


async def require_session_user(
    user: Optional[User] = Depends(get_session_user),
) -> User:
    if user is None or not user.is_active:
        raise OAuthException(
            error="login_required",
            description="User authentication required",
            status_code=401,
        )
    return user


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

def require_admin(x_admin_key: Optional[str] = Header(None)):
    if not settings.ADMIN_API_KEY:
        raise AppException(message="Not Found", status_code=404)

    if not x_admin_key or not constant_time_equals(x_admin_key, settings.ADMIN_API_KEY):
        raise AppException(message="Invalid admin key", status_code=401)


# ---------------------------------------------------------------------------
# Request context / rate limiting
# ---------------------------------------------------------------------------

def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def rate_limited(tier: str):
    """Dependency charging one request against the named limiter tier."""

    def check_rate_limit(request: Request, response: Response):
        if not settings.RATE_LIMIT_ENABLED:
            return

        info = rate_limiter.limiters[tier].check(client_ip(request))
        if not info.allowed:
            raise OAuthException(
                error="too_many_requests",
                description="Rate limit exceeded",
                status_code=429,
                headers={**NO_STORE_HEADERS, **info.headers()},
            )
        response.headers.update(info.headers())

    return check_rate_limit
