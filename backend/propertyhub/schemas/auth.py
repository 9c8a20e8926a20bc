from datetime import datetime

from pydantic import BaseModel


# ── Credential issuance ─────────────────────────────────────

class IssueRequest(BaseModel):
    """Internal: the authentication layer asks for tokens for a verified user."""
    user_id: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user_id: str
    user_type: str | None
    is_admin: bool
    permissions: list[str]


# ── Token refresh ────────────────────────────────────────────

class RefreshRequest(BaseModel):
    refresh_token: str


# ── Current caller ───────────────────────────────────────────

class MeResponse(BaseModel):
    user_id: str
    user_type: str | None
    is_admin: bool
    token_permissions: list[str]   # snapshot embedded at issuance
    live_permissions: list[str]    # resolved now
    token_expires_at: datetime | None
