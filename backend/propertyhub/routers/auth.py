"""Auth routes: credential issuance, refresh, current caller.

Route overview:
  POST /issue    internal: mint tokens for a user the authentication
                 layer has already verified (admin-only)
  POST /refresh  exchange a refresh token for a new pair with a fresh
                 permission snapshot
  GET  /me       the caller's token snapshot next to their live permissions
"""

from fastapi import APIRouter, Depends, HTTPException, status

from propertyhub.auth.deps import AuthComponents, get_auth, get_current_claims, require_admin
from propertyhub.auth.errors import CredentialError, InactiveSubject, UnknownSubject
from propertyhub.auth.issuance import IssuedCredentials
from propertyhub.auth.jwt import CredentialClaims
from propertyhub.schemas.auth import IssueRequest, MeResponse, RefreshRequest, TokenResponse

router = APIRouter()


def _build_token_response(issued: IssuedCredentials) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        user_id=issued.subject_id,
        user_type=issued.user_type,
        is_admin=issued.is_admin,
        permissions=sorted(issued.capabilities),
    )


# ── POST /issue ──────────────────────────────────────────────

@router.post("/issue", response_model=TokenResponse)
async def issue(
    body: IssueRequest,
    auth: AuthComponents = Depends(get_auth),
    _admin: CredentialClaims = Depends(require_admin),
):
    """Mint access + refresh tokens for an already-authenticated user."""
    try:
        issued = await auth.issuer.issue_for(body.user_id)
    except UnknownSubject:
        raise HTTPException(status_code=404, detail="User not found")
    except InactiveSubject as e:
        raise HTTPException(status_code=403, detail=f"Account is {e.status}")
    return _build_token_response(issued)


# ── POST /refresh ────────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, auth: AuthComponents = Depends(get_auth)):
    """Exchange a valid refresh token for new access + refresh tokens.

    The new access token carries the user's current permissions.
    """
    try:
        issued = await auth.issuer.refresh(body.refresh_token)
    except (CredentialError, UnknownSubject):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InactiveSubject:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return _build_token_response(issued)


# ── GET /me ──────────────────────────────────────────────────

@router.get("/me", response_model=MeResponse)
async def me(
    claims: CredentialClaims = Depends(get_current_claims),
    auth: AuthComponents = Depends(get_auth),
):
    live = await auth.resolver.resolve(claims.subject_id)
    return MeResponse(
        user_id=claims.subject_id,
        user_type=claims.user_type,
        is_admin=claims.is_admin,
        token_permissions=sorted(claims.capabilities),
        live_permissions=sorted(live),
        token_expires_at=claims.expires_at,
    )
