"""JWT credential issuance and verification.

Access token claims:
  - sub:          user ID
  - user_type:    user type at issuance
  - is_admin:     true iff user_type was in the admin tier at issuance
  - permissions:  sorted list of capability keys (`module:action`)
  - type:         "access"
  - iat / exp:    issued-at / expiry timestamps

Refresh tokens carry only `sub`, `type="refresh"`, `iat` and `exp`.

Known limitation: the permission snapshot is frozen at issuance. A
capability revoked afterwards keeps working through an existing token until
that token expires or is refreshed. The guard falls back to live resolution
only when the snapshot *lacks* a capability, never to double-check one it
contains. Keep `access_token_expire_minutes` short enough for that window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from jose import ExpiredSignatureError, JWTError, jwt

from propertyhub.auth.capabilities import CapabilitySet, capability_key, is_admin_tier
from propertyhub.auth.errors import ExpiredCredential, MalformedCredential

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class CredentialClaims:
    """Decoded, validated token claims."""
    subject_id: str
    token_type: str
    user_type: str | None = None
    is_admin: bool = False
    capabilities: CapabilitySet = frozenset()
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    def grants(self, module: str, action: str) -> bool:
        return capability_key(module, action) in self.capabilities


class TokenCodec:

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        admin_user_types: Iterable[str] = ("admin", "super_admin"),
    ):
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.admin_user_types = frozenset(admin_user_types)

    def issue(
        self,
        subject_id: str,
        user_type: str | None,
        capabilities: Iterable[str],
        expires_delta: timedelta | None = None,
    ) -> str:
        """Issue an access token embedding the capability snapshot."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject_id,
            "user_type": user_type,
            "is_admin": is_admin_tier(user_type, self.admin_user_types),
            "permissions": sorted(set(capabilities)),
            "type": ACCESS,
            "iat": now,
            "exp": now + (expires_delta or self.access_ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def issue_refresh(self, subject_id: str, expires_delta: timedelta | None = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject_id,
            "type": REFRESH,
            "iat": now,
            "exp": now + (expires_delta or self.refresh_ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str, expected_type: str = ACCESS) -> CredentialClaims:
        """Verify signature, expiry and shape.

        Raises ExpiredCredential past `exp`, MalformedCredential for anything
        else that is wrong with the token.
        """
        if not token:
            raise MalformedCredential("Empty credential")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise ExpiredCredential("Credential has expired") from e
        except JWTError as e:
            raise MalformedCredential(f"Invalid credential: {e}") from e

        return self._claims_from_payload(payload, expected_type)

    @staticmethod
    def _claims_from_payload(payload: dict, expected_type: str) -> CredentialClaims:
        subject_id = payload.get("sub")
        if not isinstance(subject_id, str) or not subject_id:
            raise MalformedCredential("Credential has no subject")
        if payload.get("type") != expected_type:
            raise MalformedCredential(f"Expected a {expected_type} credential")
        if "exp" not in payload:
            raise MalformedCredential("Credential has no expiry")

        permissions = payload.get("permissions", [])
        if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
            raise MalformedCredential("Credential permissions are not a list of keys")

        is_admin = payload.get("is_admin", False)
        if not isinstance(is_admin, bool):
            raise MalformedCredential("Credential admin flag is not a boolean")

        user_type = payload.get("user_type")
        if user_type is not None and not isinstance(user_type, str):
            raise MalformedCredential("Credential user type is not a string")

        return CredentialClaims(
            subject_id=subject_id,
            token_type=expected_type,
            user_type=user_type,
            is_admin=is_admin,
            capabilities=frozenset(permissions),
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )


def _from_timestamp(value) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def build_token_codec(settings) -> TokenCodec:
    return TokenCodec(
        secret_key=settings.secret_key,
        algorithm=settings.jwt_algorithm,
        access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        admin_user_types=settings.admin_user_types,
    )
