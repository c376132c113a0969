import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from src.common.exceptions import attach_exception_handlers
from src.common.keys import KeyManager
from src.core.config import settings
from src.core.db import AsyncSessionLocal, init_db, close_db
from src.routes.oauth.client_routes import public_router as client_info_router
from src.routes.oauth.client_routes import router as client_router
from src.routes.oauth.discovery_routes import router as discovery_router
from src.routes.oauth.oauth_routes import router as oauth_router
from src.routes.oauth.user_routes import router as user_router
from src.services.oauth.refresh_tokens import purge_expired

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---- Startup ----
    # Fail fast: no key material, no server
    app.state.key_manager = KeyManager.from_settings(settings)
    await init_db()
    async with AsyncSessionLocal() as db:
        await purge_expired(db)
    logger.info("%s ready, issuer=%s", settings.APP_NAME, settings.ISSUER)
    yield
    # ---- Shutdown ----
    await close_db()

# app
app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Allowed hosts
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=[host for host in settings.ALLOWED_HOSTS.split(",") if host],
)

# Mount routers
app.include_router(discovery_router)
app.include_router(oauth_router)
app.include_router(user_router)
app.include_router(client_info_router)
app.include_router(client_router)

# Attach exception handlers
attach_exception_handlers(app)
