from fastapi import APIRouter, Depends, Response

from src.common.keys import KeyManager
from src.core.config import settings
from src.models.dto.auth_models import HealthResponse, JWKSResponse, OpenIDConfiguration
from src.routes.dependencies import get_key_manager
from src.services.oauth import discovery

router = APIRouter()

# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health():
    return discovery.health()


@router.get(
    "/.well-known/openid-configuration",
    response_model=OpenIDConfiguration,
)
def openid_configuration(response: Response):
    response.headers["Cache-Control"] = f"public, max-age={settings.DISCOVERY_CACHE_MAX_AGE}"
    return discovery.openid_configuration()


@router.get(
    "/.well-known/jwks.json",
    response_model=JWKSResponse,
)
def jwks(
    response: Response,
    key_manager: KeyManager = Depends(get_key_manager),
):
    response.headers["Cache-Control"] = f"public, max-age={settings.JWKS_CACHE_MAX_AGE}"
    return discovery.jwks(key_manager)
