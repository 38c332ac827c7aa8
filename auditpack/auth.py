"""
Audit Pack
Authenticated caller context.

The auth middleware resolves one ``AuthContext`` per request and stores it
on ``flask.g``; blueprints fetch it with ``current_auth()`` and pass the
profile explicitly into services. Services never read ``g`` themselves.
"""

from dataclasses import dataclass, field

from flask import g

from auditpack.core.exceptions import AuthenticationError
from auditpack.models.auth import Profile


@dataclass(frozen=True)
class AuthContext:
    profile: Profile
    claims: dict = field(default_factory=dict)

    @property
    def profile_id(self) -> str:
        return self.profile.id

    @property
    def is_admin(self) -> bool:
        return self.profile.is_admin


def current_auth() -> AuthContext:
    """Return the caller's context or raise AuthenticationError (401)."""
    auth = getattr(g, "auth", None)
    if auth is None:
        raise AuthenticationError("Authentication required")
    return auth
