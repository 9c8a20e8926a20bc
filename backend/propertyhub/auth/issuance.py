"""Credential issuance for the authentication layer.

Call `issue_for(user_id)` right after the user's primary credentials
(password, SSO, ...) have been verified. The access token embeds the
permission set resolved at that moment; `refresh()` is the supported way
to pick up later permission changes without logging in again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from propertyhub.auth.capabilities import CapabilitySet
from propertyhub.auth.errors import InactiveSubject
from propertyhub.auth.jwt import REFRESH, TokenCodec
from propertyhub.auth.resolver import PermissionResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedCredentials:
    access_token: str
    refresh_token: str
    subject_id: str
    user_type: str | None
    is_admin: bool
    capabilities: CapabilitySet


class CredentialIssuer:

    def __init__(self, codec: TokenCodec, resolver: PermissionResolver):
        self.codec = codec
        self.resolver = resolver

    async def issue_for(self, user_id: str) -> IssuedCredentials:
        """Resolve live permissions and mint access + refresh tokens.

        Raises UnknownSubject, InactiveSubject or StoreUnavailable.
        """
        subject, capabilities = await self.resolver.resolve_subject(user_id)
        if not subject.is_active:
            raise InactiveSubject(user_id, subject.status)

        access = self.codec.issue(subject.user_id, subject.user_type, capabilities)
        refresh = self.codec.issue_refresh(subject.user_id)
        logger.info(
            f"Issued credentials for user {subject.user_id} "
            f"({len(capabilities)} capabilities)"
        )
        return IssuedCredentials(
            access_token=access,
            refresh_token=refresh,
            subject_id=subject.user_id,
            user_type=subject.user_type,
            is_admin=self.resolver.is_admin(subject.user_type),
            capabilities=capabilities,
        )

    async def refresh(self, refresh_token: str) -> IssuedCredentials:
        """Exchange a refresh token for a fresh pair with a new snapshot."""
        claims = self.codec.verify(refresh_token, expected_type=REFRESH)
        return await self.issue_for(claims.subject_id)
