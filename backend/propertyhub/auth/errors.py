"""Error taxonomy of the authorization core.

None of these reach an HTTP client as-is. The guard turns them into a
deny decision (fail-closed); only the log line keeps the `kind`.
"""


class AuthorizationError(Exception):
    """Base class. `kind` is the stable identifier written to logs."""

    kind = "authorization_error"

    def __init__(self, message: str = ""):
        self.message = message or self.kind
        super().__init__(self.message)


class UnknownSubject(AuthorizationError):
    """The user id does not exist. Resolves to zero capabilities."""

    kind = "unknown_subject"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Unknown subject: {user_id}")


class StoreUnavailable(AuthorizationError):
    """The permission store could not be reached or failed mid-query."""

    kind = "store_unavailable"


class CredentialError(AuthorizationError):
    kind = "credential_error"


class ExpiredCredential(CredentialError):
    kind = "expired_credential"


class MalformedCredential(CredentialError):
    kind = "malformed_credential"


class CacheCorruption(AuthorizationError):
    """A cache read produced something other than a capability set."""

    kind = "cache_corruption"


class InactiveSubject(AuthorizationError):
    """The user exists but is not active (inactive or suspended)."""

    kind = "inactive_subject"

    def __init__(self, user_id: str, status: str):
        self.user_id = user_id
        self.status = status
        super().__init__(f"Subject {user_id} is {status}")
