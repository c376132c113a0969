from pydantic import model_validator
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    APP_NAME: str = "Campus Identity Provider"
    DEBUG: bool = False
    ENV: str = "development"
    PROTOCOL: str = "http"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def BASE_URL(self) -> str:
        return f"{self.PROTOCOL}://{self.HOST}:{self.PORT}"

    # ------------------------------------------------------------------
    # Issuer
    # ------------------------------------------------------------------
    OAUTH_ISSUER: Optional[str] = None

    @property
    def ISSUER(self) -> str:
        return (self.OAUTH_ISSUER or self.BASE_URL).rstrip("/")

    # ------------------------------------------------------------------
    # Signing keys
    # ------------------------------------------------------------------
    # Inline PEM takes precedence over the file path (container deployments)
    OAUTH_PRIVATE_KEY: Optional[str] = None
    OAUTH_PRIVATE_KEY_PATH: Optional[str] = None
    # Public keys of recently rotated signing keys, still valid for verification
    OAUTH_PREVIOUS_PUBLIC_KEYS: List[str] = []

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------
    ACCESS_TOKEN_TTL: int = 900  # 15 minutes
    ID_TOKEN_TTL: int = 900  # 15 minutes
    REFRESH_TOKEN_TTL: int = 2592000  # 30 days
    AUTH_CODE_TTL: int = 600  # 10 minutes
    REFRESH_TOKEN_PURGE_GRACE: int = 604800  # 7 days

    # ------------------------------------------------------------------
    # Supported features
    # ------------------------------------------------------------------
    SUPPORTED_SCOPES: List[str] = ["openid", "profile", "email", "offline_access"]
    DEFAULT_CLIENT_SCOPES: List[str] = ["openid", "profile", "email"]

    RESPONSE_TYPES_SUPPORTED: List[str] = ["code"]
    RESPONSE_MODES_SUPPORTED: List[str] = ["query"]
    GRANT_TYPES_SUPPORTED: List[str] = ["authorization_code", "refresh_token"]
    CODE_CHALLENGE_METHODS_SUPPORTED: List[str] = ["S256"]
    TOKEN_ENDPOINT_AUTH_METHODS_SUPPORTED: List[str] = [
        "client_secret_basic",
        "client_secret_post",
        "none",
    ]
    CLAIMS_SUPPORTED: List[str] = [
        "sub",
        "iss",
        "aud",
        "exp",
        "iat",
        "auth_time",
        "nonce",
        "at_hash",
        "name",
        "preferred_username",
        "picture",
        "updated_at",
        "email",
        "email_verified",
    ]

    TOKEN_BYTES: int = 32

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///./idp.db"
    DB_TIMEOUT_SECONDS: float = 5.0

    # ------------------------------------------------------------------
    # Caching of public metadata
    # ------------------------------------------------------------------
    DISCOVERY_CACHE_MAX_AGE: int = 3600
    JWKS_CACHE_MAX_AGE: int = 900

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    ADMIN_API_KEY: Optional[str] = None

    # ------------------------------------------------------------------
    # Rate limiting (per client IP, in process memory)
    # ------------------------------------------------------------------
    RATE_LIMIT_ENABLED: bool = True
    TOKEN_RATE_LIMIT_PER_MINUTE: int = 60
    REGISTRATION_RATE_LIMIT_PER_HOUR: int = 10

    # ------------------------------------------------------------------
    # CORS / hosts
    # ------------------------------------------------------------------
    CORS_ALLOW_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]
    ALLOWED_HOSTS: str = "*"

    @model_validator(mode="after")
    def check_lifetimes(self) -> "Settings":
        if self.ACCESS_TOKEN_TTL < 60:
            raise ValueError("ACCESS_TOKEN_TTL must be at least 60 seconds")
        if self.REFRESH_TOKEN_TTL <= self.ACCESS_TOKEN_TTL:
            raise ValueError("REFRESH_TOKEN_TTL must be greater than ACCESS_TOKEN_TTL")
        return self

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton settings object (import this everywhere)
settings = Settings()
