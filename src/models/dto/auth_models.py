from pydantic import BaseModel, ConfigDict, field_validator
from typing import Dict, List, Optional
from urllib.parse import urlsplit


def _check_redirect_uris(uris: Optional[List[str]]) -> Optional[List[str]]:
    # Stored verbatim; matching at /authorize is exact
    for uri in uris or []:
        parts = urlsplit(uri)
        if not parts.scheme:
            raise ValueError(f"redirect_uri must be absolute: {uri}")
        # Native apps may use a private-use scheme (RFC 8252 section 7.1)
        if parts.scheme in ("http", "https") and not parts.netloc:
            raise ValueError(f"redirect_uri must have a host: {uri}")
        if parts.scheme not in ("http", "https") and not parts.path:
            raise ValueError(f"redirect_uri must have a path: {uri}")
        if parts.fragment:
            raise ValueError(f"redirect_uri must not contain a fragment: {uri}")
    return uris


# ----- Health -----
class HealthResponse(BaseModel):
    status: str
    app: str
    env: str


# ----- Well-known -----
class OpenIDConfiguration(BaseModel):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    revocation_endpoint: str
    introspection_endpoint: str
    scopes_supported: List[str]
    response_types_supported: List[str]
    response_modes_supported: List[str]
    grant_types_supported: List[str]
    subject_types_supported: List[str]
    id_token_signing_alg_values_supported: List[str]
    code_challenge_methods_supported: List[str]
    token_endpoint_auth_methods_supported: List[str]
    revocation_endpoint_auth_methods_supported: List[str]
    introspection_endpoint_auth_methods_supported: List[str]
    claims_supported: List[str]
    require_pkce: bool = True


class JWKSResponse(BaseModel):
    keys: List[Dict[str, str]]


# ----- Token -----
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None


class IntrospectionResponse(BaseModel):
    active: bool
    scope: Optional[str] = None
    client_id: Optional[str] = None
    sub: Optional[str] = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    iss: Optional[str] = None
    jti: Optional[str] = None
    token_type: Optional[str] = None


# ----- Client management -----
class ClientRegistrationRequest(BaseModel):
    client_name: str
    redirect_uris: List[str]
    scopes: Optional[List[str]] = None
    grant_types: Optional[List[str]] = None
    token_endpoint_auth_method: str = "client_secret_basic"
    application_type: str = "web"
    is_first_party: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v):
        return _check_redirect_uris(v)


class ClientUpdateRequest(BaseModel):
    client_name: Optional[str] = None
    redirect_uris: Optional[List[str]] = None
    scopes: Optional[List[str]] = None

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v):
        return _check_redirect_uris(v)


class ClientResponse(BaseModel):
    client_id: str
    client_id_issued_at: int
    client_name: str
    redirect_uris: List[str]
    scopes: List[str]
    grant_types: List[str]
    response_types: List[str]
    token_endpoint_auth_method: str
    application_type: str
    is_first_party: bool
    is_active: bool
    suspended_at: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ClientSecretResponse(ClientResponse):
    # Only returned at registration and secret rotation
    client_secret: Optional[str] = None


class ClientDeactivationResponse(BaseModel):
    client_id: str
    is_active: bool
    revoked_refresh_tokens: int


class ClientPublicInfo(BaseModel):
    client_id: str
    client_name: str
    scopes: List[str]
    application_type: str
    is_first_party: bool

    model_config = ConfigDict(from_attributes=True)


# ----- User authorizations -----
class UserAuthorizationResponse(BaseModel):
    client_id: str
    client_name: str
    scope: str
    authorized_at: int
    last_used_at: int

    model_config = ConfigDict(from_attributes=True)


class UserAuthorizationList(BaseModel):
    authorizations: List[UserAuthorizationResponse]
    total: int


class AuthorizationRevocationResponse(BaseModel):
    revoked_refresh_tokens: int
