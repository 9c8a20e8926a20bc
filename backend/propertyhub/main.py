import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from propertyhub.auth.deps import AuthComponents, build_auth_components
from propertyhub.config import settings
from propertyhub.database import async_session
from propertyhub.middleware.exceptions import register_exception_handlers
from propertyhub.routers import auth, health, permissions, roles
from propertyhub.utils.cache import close_redis

logger = logging.getLogger("propertyhub.main")


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    auth_components: AuthComponents | None = None,
) -> FastAPI:
    """Build the application.

    Tests pass their own session factory (SQLite) and pre-built components;
    production uses the settings-driven defaults.
    """
    factory = session_factory or async_session

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session_factory = factory
        app.state.auth = auth_components or build_auth_components(settings, factory)
        logger.info(
            f"Authorization core ready "
            f"(cache backend: {type(app.state.auth.cache).__name__})"
        )
        try:
            yield
        finally:
            await app.state.auth.cache.close()
            await close_redis()
            logger.info("Authorization core stopped")

    app = FastAPI(
        title="PropertyHub",
        description="Property listing backend: roles, permissions and access control",
        version="0.1.0",
        lifespan=lifespan,
    )
    # Available before startup for transports that skip the lifespan
    app.state.session_factory = factory
    if auth_components is not None:
        app.state.auth = auth_components

    # ── Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Middleware ───────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
    app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])

    return app


app = create_app()
