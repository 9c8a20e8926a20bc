"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_auth                  → the AuthComponents built at startup
  get_current_claims        → verify the bearer token, return its claims
  require_permission(m, a)  → run the guard for `m:a`; 401 / 403 on deny
  require_admin             → restrict to admin-tier credentials
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from propertyhub.auth.cache import PermissionCache, build_permission_cache
from propertyhub.auth.errors import CredentialError
from propertyhub.auth.guard import (
    AuthorizationGuard,
    AuthorizationResult,
    AuthRequest,
    Decision,
)
from propertyhub.auth.issuance import CredentialIssuer
from propertyhub.auth.jwt import CredentialClaims, TokenCodec, build_token_codec
from propertyhub.auth.resolver import PermissionResolver
from propertyhub.auth.store import PermissionStore, SqlPermissionStore

bearer_scheme = HTTPBearer(auto_error=False)

UNAUTHENTICATED_DETAIL = "Authentication required"
FORBIDDEN_DETAIL = "Access denied. You do not have permission to perform this action."


# ── Component wiring ────────────────────────────────────────

@dataclass
class AuthComponents:
    """Everything the authorization core needs, built once per process."""
    store: PermissionStore
    cache: PermissionCache
    resolver: PermissionResolver
    codec: TokenCodec
    guard: AuthorizationGuard
    issuer: CredentialIssuer


def build_auth_components(
    settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: PermissionCache | None = None,
    store: PermissionStore | None = None,
) -> AuthComponents:
    store = store or SqlPermissionStore(session_factory)
    cache = cache or build_permission_cache(settings)
    resolver = PermissionResolver(store, cache, admin_user_types=settings.admin_user_types)
    codec = build_token_codec(settings)
    return AuthComponents(
        store=store,
        cache=cache,
        resolver=resolver,
        codec=codec,
        guard=AuthorizationGuard(codec, resolver),
        issuer=CredentialIssuer(codec, resolver),
    )


def get_auth(request: Request) -> AuthComponents:
    return request.app.state.auth


# ── Authentication ──────────────────────────────────────────

async def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: AuthComponents = Depends(get_auth),
) -> CredentialClaims:
    """Verify the bearer token and return its claims (no permission check)."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UNAUTHENTICATED_DETAIL,
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return auth.codec.verify(credentials.credentials)
    except CredentialError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ── Authorization ───────────────────────────────────────────

def require_permission(module: str, action: str):
    """Dependency factory: allow only callers holding `module:action`.

    The token snapshot is checked first (zero I/O); live resolution is the
    fallback.

    Usage:
        @router.post("/properties")
        async def create_property(
            authz: AuthorizationResult = Depends(
                require_permission("property_management", "create")
            ),
        ):
            ...
    """
    async def _check(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        auth: AuthComponents = Depends(get_auth),
    ) -> AuthorizationResult:
        request = AuthRequest(credential=credentials.credentials if credentials else None)
        result = await auth.guard.evaluate(request, module, action)
        if result.decision is Decision.DENY_UNAUTHENTICATED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=UNAUTHENTICATED_DETAIL,
                headers={"WWW-Authenticate": "Bearer"},
            )
        if result.decision is Decision.DENY_FORBIDDEN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)
        return result

    return _check


async def require_admin(
    claims: CredentialClaims = Depends(get_current_claims),
) -> CredentialClaims:
    """Restrict endpoint to admin-tier users (flag taken from the token)."""
    if not claims.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return claims
