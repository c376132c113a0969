# Shared fixtures: throwaway SQLite database, signing key, seeded clients
# and the FastAPI app wired to both.

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from src.common import rate_limiter
from src.common.keys import KeyManager, SigningKey, generate_private_key_pem
from src.common.security import generate_pkce_pair
from src.common.token import JWTService
from src.core.db import Base, get_session
from src.main import app
from src.models.persistance.auth import User
from src.routes.dependencies import get_key_manager, get_session_user

from helpers import (
    CONFIDENTIAL_ID,
    CONFIDENTIAL_SECRET,
    OTHER_ID,
    OTHER_SECRET,
    PUBLIC_ID,
    REDIRECT_URI,
    USER_ID,
    basic_auth,
    make_client,
)


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    for limiter in rate_limiter.limiters.values():
        limiter.reset()


@pytest.fixture(scope="session")
def private_key_pem():
    return generate_private_key_pem()


@pytest.fixture
def key_manager(private_key_pem):
    return KeyManager(SigningKey.from_pem(private_key_pem))


@pytest.fixture
def jwt_service(key_manager):
    return JWTService(key_manager)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "idp-test.db"


@pytest.fixture
def sync_session(db_path):
    """Plain sqlite3 session for schema setup, seeding and tampering with rows."""
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add(
            User(
                id=USER_ID,
                username="ada",
                name="Ada Lovelace",
                email="ada@example.com",
                email_verified=True,
                is_active=True,
                updated_at=1700000000,
            )
        )
        session.add(make_client(CONFIDENTIAL_ID, CONFIDENTIAL_SECRET))
        session.add(make_client(OTHER_ID, OTHER_SECRET))
        session.add(make_client(PUBLIC_ID))
        session.commit()
        yield session

    engine.dispose()


@pytest.fixture
def session_factory(sync_session, db_path):
    # NullPool: one aiosqlite connection per session, usable from any event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_user():
    """Mutable holder for the end user the login collaborator reports."""
    return {"user_id": USER_ID}


@pytest.fixture
def client(session_factory, key_manager, session_user):
    async def override_session():
        async with session_factory() as session:
            yield session

    async def override_user():
        if not session_user["user_id"]:
            return None
        async with session_factory() as session:
            return await session.get(User, session_user["user_id"])

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_key_manager] = lambda: key_manager
    app.dependency_overrides[get_session_user] = override_user

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def pkce():
    return generate_pkce_pair()


@pytest.fixture
def authorize(client, pkce):
    """Run /oauth/authorize and return the code from the redirect."""
    from urllib.parse import parse_qs, urlsplit

    def _authorize(client_id=CONFIDENTIAL_ID, scope="openid profile email", **extra):
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "scope": scope,
            "state": "xyz",
            "code_challenge": pkce[1],
            "code_challenge_method": "S256",
            **extra,
        }
        response = client.get("/oauth/authorize", params=params, follow_redirects=False)
        assert response.status_code == 302, response.text
        query = parse_qs(urlsplit(response.headers["location"]).query)
        assert query["state"] == ["xyz"]
        return query["code"][0]

    return _authorize


@pytest.fixture
def exchange(client, pkce):
    """Exchange a code at /oauth/token with the confidential client."""

    def _exchange(code, verifier=None, client_id=CONFIDENTIAL_ID, secret=CONFIDENTIAL_SECRET):
        return client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": REDIRECT_URI,
                "code_verifier": verifier or pkce[0],
            },
            headers=basic_auth(client_id, secret),
        )

    return _exchange


@pytest.fixture
def refresh(client):
    def _refresh(token, scope=None, client_id=CONFIDENTIAL_ID, secret=CONFIDENTIAL_SECRET):
        data = {"grant_type": "refresh_token", "refresh_token": token}
        if scope:
            data["scope"] = scope
        return client.post("/oauth/token", data=data, headers=basic_auth(client_id, secret))

    return _refresh
