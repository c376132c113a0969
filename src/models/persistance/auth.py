from sqlalchemy import (
    Boolean,
    Index,
    String,
    Integer,
    Text,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.db import Base

# All timestamps are UNIX seconds (SQLite drops tzinfo on DateTime columns).


class Client(Base):
    __tablename__ = "clients"

    # OAuth identifiers
    client_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        index=True,
    )

    # passlib (argon2) hash of the secret; null for public clients
    client_secret_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    client_id_issued_at: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    updated_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # Metadata
    client_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )

    redirect_uris: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    scopes: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    grant_types: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    response_types: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
    )

    token_endpoint_auth_method: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="client_secret_basic",
    )

    application_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="web",
    )

    is_first_party: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Set while an admin has the client suspended
    suspended_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None

    @property
    def is_public(self) -> bool:
        return self.token_endpoint_auth_method == "none"


class User(Base):
    """Read model of the account store; only what the IdP needs for claims."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    username: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )

    email: Mapped[str | None] = mapped_column(
        String(320),
        nullable=True,
    )

    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    picture: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    updated_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )


class AuthorizationCode(Base):
    __tablename__ = "authorization_codes"

    # SHA-256 hex of the opaque code; the code itself is never stored
    code_hash: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    redirect_uri: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    scope: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    code_challenge: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )

    code_challenge_method: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        default="S256",
    )

    nonce: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    state: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    auth_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    issued_at: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    expires_at: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )

    used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    used_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # Refresh family minted from this code, revoked if the code is replayed
    refresh_family_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_family_revoked", "family_id", "is_revoked"),
        Index("ix_refresh_tokens_user_client", "user_id", "client_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )

    # SHA-256 hex of the opaque secret; the secret is shown to the client once
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    scope: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Rotation lineage
    family_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
    )

    generation: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    parent_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )

    auth_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Set when a child token supersedes this one
    rotated_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    is_revoked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    revoked_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    revocation_reason: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    created_at: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    expires_at: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )

    last_used_at: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # Request context of the grant or rotation that minted the token
    ip_address: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    user_agent: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def is_active(self, now: int) -> bool:
        return not self.is_revoked and self.rotated_at is None and self.expires_at > now
