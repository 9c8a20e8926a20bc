"""Authorization guard: one decision per (request, module, action).

Order of checks:
  1. no credential and no identity      → DENY_UNAUTHENTICATED
     credential expired / malformed     → DENY_UNAUTHENTICATED
  2. credential carries is_admin        → ALLOW
  3. credential snapshot has the key    → ALLOW  (no cache / store access)
  4. live resolution has the key        → ALLOW, otherwise DENY_FORBIDDEN

Any error during live resolution denies (fail-closed). The guard holds no
per-request state; the only shared state it touches is the resolver's cache.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from propertyhub.auth.capabilities import capability_key, has_capability
from propertyhub.auth.errors import AuthorizationError, CredentialError
from propertyhub.auth.jwt import CredentialClaims, TokenCodec
from propertyhub.auth.resolver import PermissionResolver

logger = logging.getLogger("propertyhub.authz")


class Decision(str, enum.Enum):
    ALLOW = "allow"
    DENY_UNAUTHENTICATED = "deny_unauthenticated"
    DENY_FORBIDDEN = "deny_forbidden"


@dataclass(frozen=True)
class AuthRequest:
    """What the caller presented: a bearer credential, a raw identity, or neither.

    A raw `user_id` is for trusted in-process callers only; it skips the
    snapshot and always resolves live.
    """
    credential: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class AuthorizationResult:
    decision: Decision
    reason: str
    subject_id: str | None = None
    claims: CredentialClaims | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


class AuthorizationGuard:

    def __init__(self, codec: TokenCodec, resolver: PermissionResolver):
        self.codec = codec
        self.resolver = resolver

    async def authorize(self, request: AuthRequest, module: str, action: str) -> Decision:
        return (await self.evaluate(request, module, action)).decision

    async def evaluate(self, request: AuthRequest, module: str, action: str) -> AuthorizationResult:
        key = capability_key(module, action)

        claims: CredentialClaims | None = None
        if request.credential:
            try:
                claims = self.codec.verify(request.credential)
            except CredentialError as e:
                return self._deny(Decision.DENY_UNAUTHENTICATED, e.kind, key)
            subject_id = claims.subject_id
        elif request.user_id:
            subject_id = request.user_id
        else:
            return self._deny(Decision.DENY_UNAUTHENTICATED, "no_credential", key)

        if claims is not None:
            if claims.is_admin:
                logger.debug(f"ALLOW {subject_id} {key} (admin flag)")
                return AuthorizationResult(Decision.ALLOW, "admin_flag", subject_id, claims)
            if claims.grants(module, action):
                logger.debug(f"ALLOW {subject_id} {key} (token snapshot)")
                return AuthorizationResult(Decision.ALLOW, "snapshot", subject_id, claims)

        try:
            capabilities = await self.resolver.resolve(subject_id)
        except AuthorizationError as e:
            return self._deny(Decision.DENY_FORBIDDEN, e.kind, key, subject_id, claims)

        if has_capability(capabilities, module, action):
            logger.debug(f"ALLOW {subject_id} {key} (resolved)")
            return AuthorizationResult(Decision.ALLOW, "resolved", subject_id, claims)
        return self._deny(Decision.DENY_FORBIDDEN, "forbidden", key, subject_id, claims)

    @staticmethod
    def _deny(
        decision: Decision,
        reason: str,
        key: str,
        subject_id: str | None = None,
        claims: CredentialClaims | None = None,
    ) -> AuthorizationResult:
        logger.warning(
            f"{decision.value.upper()} {subject_id or '-'} {key} ({reason})",
            extra={"subject_id": subject_id, "capability": key, "reason": reason},
        )
        return AuthorizationResult(decision, reason, subject_id, claims)
