"""
Auth-context middleware — bearer token → ``g.auth`` + workflow gates.

Order of checks for every ``/api/v1/`` path outside ``PUBLIC_PATHS``:
  1. ``Authorization: Bearer <jwt>`` present, valid, not revoked   → else 401
  2. profile exists                                              → else 401
  3. suspended profiles may only sign out                         → else 403 ACCOUNT_SUSPENDED
  4. non-admins without a department may only reach DEPARTMENT_SETUP_PATHS
                                                                 → else 403 DEPARTMENT_REQUIRED
"""

import logging

import jwt as pyjwt
from flask import g, request

from auditpack.auth import AuthContext
from auditpack.models import db
from auditpack.models.auth import Profile
from auditpack.services.jwt_service import decode_access_token, is_token_revoked
from auditpack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"

# Reachable without a token
PUBLIC_PATHS = frozenset({
    "/api/v1/health",
    "/api/v1/auth/sign-up",
    "/api/v1/auth/sign-in",
    "/api/v1/auth/password-reset",
    "/api/v1/auth/password-reset/confirm",
})

SIGN_OUT_PATH = "/api/v1/auth/sign-out"

# Reachable by a non-admin that has not picked a department yet
DEPARTMENT_SETUP_PATHS = frozenset({
    SIGN_OUT_PATH,
    "/api/v1/auth/me",
    "/api/v1/departments",
    "/api/v1/profile/department",
})


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    # EventSource cannot set headers; the SSE stream accepts ?access_token=
    if request.path == "/api/v1/events/stream":
        return request.args.get("access_token") or None
    return None


def init_auth_context(app):
    """Register the auth-context resolver as a before_request hook."""

    @app.before_request
    def _resolve_auth_context():
        g.auth = None
        path = request.path.rstrip("/") or "/"
        if not path.startswith(API_PREFIX.rstrip("/")) or path in PUBLIC_PATHS:
            return None
        if request.method == "OPTIONS":
            return None

        token = _bearer_token()
        if not token:
            return api_error(E.UNAUTHENTICATED, "Authentication required")

        try:
            claims = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHENTICATED, "Token expired")
        except pyjwt.InvalidTokenError:
            logger.warning("Rejected invalid bearer token", extra={"path": path})
            return api_error(E.UNAUTHENTICATED, "Invalid token")

        if is_token_revoked(claims.get("jti")):
            return api_error(E.UNAUTHENTICATED, "Token revoked")

        profile = db.session.get(Profile, claims.get("sub"))
        if profile is None:
            return api_error(E.UNAUTHENTICATED, "Profile no longer exists")

        g.auth = AuthContext(profile=profile, claims=claims)

        if profile.is_suspended and path != SIGN_OUT_PATH:
            return api_error(E.ACCOUNT_SUSPENDED, "Account suspended")
        if profile.needs_department and path not in DEPARTMENT_SETUP_PATHS:
            return api_error(
                E.DEPARTMENT_REQUIRED,
                "Select a department before using the workflow",
                details={"redirect": "/select-department"},
            )
        return None
