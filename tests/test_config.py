# Tests for settings validation and the bounded store call helper.

import asyncio

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from src.common.exceptions import StoreUnavailable
from src.core.config import Settings, settings
from src.core.db import bounded


def test_defaults():
    config = Settings()
    assert config.ACCESS_TOKEN_TTL == 900
    assert config.REFRESH_TOKEN_TTL == 30 * 24 * 3600
    assert config.AUTH_CODE_TTL == 600
    assert config.ISSUER == config.BASE_URL


def test_issuer_override_drops_trailing_slash():
    assert Settings(OAUTH_ISSUER="https://id.example.edu/").ISSUER == "https://id.example.edu"


def test_access_ttl_floor():
    with pytest.raises(ValidationError):
        Settings(ACCESS_TOKEN_TTL=30)


def test_refresh_must_outlive_access():
    with pytest.raises(ValidationError):
        Settings(ACCESS_TOKEN_TTL=3600, REFRESH_TOKEN_TTL=3600)


@pytest.mark.asyncio
async def test_bounded_timeout(monkeypatch):
    monkeypatch.setattr(settings, "DB_TIMEOUT_SECONDS", 0.01)
    with pytest.raises(StoreUnavailable):
        await bounded(asyncio.sleep(1))


@pytest.mark.asyncio
async def test_bounded_driver_error():
    async def failing():
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    with pytest.raises(StoreUnavailable):
        await bounded(failing())


@pytest.mark.asyncio
async def test_bounded_passes_results_through():
    async def value():
        return 42

    assert await bounded(value()) == 42
