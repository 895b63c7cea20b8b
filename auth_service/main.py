"""FastAPI application wiring for the authentication service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.errors import register_exception_handlers
from .api.routes import router as v1_router
from .config import get_settings
from .domain.service import AuthService
from .notifications.mailer import build_mailer
from .repository import AccountRepository
from .security.hashing import SecretHasher
from .security.otp import OtpPolicy
from .security.tokens import TokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build collaborators and the Postgres pool; a missing signing key aborts startup."""
    tokens = TokenIssuer.from_settings(settings)
    mailer = build_mailer(settings)
    pool = ConnectionPool(
        settings.database_url,
        open=False,
        timeout=settings.db_pool_timeout_seconds,
        kwargs={"connect_timeout": settings.db_connect_timeout_seconds},
    )
    pool.open()
    app.state.pool = pool
    app.state.auth_service = AuthService(
        AccountRepository(pool),
        SecretHasher(),
        tokens,
        mailer,
        otp_policy=OtpPolicy.from_settings(settings),
    )
    logger.info("%s %s started", settings.app_name, settings.version)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=600,
)
register_exception_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


if __name__ == "__main__":
    uvicorn.run(
        "auth_service.main:app",
        host=settings.http_host,
        port=settings.http_port,
    )
