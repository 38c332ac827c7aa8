"""
JWT Service — access and password-reset token generation and verification.

Access token:          1 hour   (JWT_ACCESS_EXPIRES)
Password-reset token:  15 min   (PASSWORD_RESET_EXPIRES)
Algorithm:             HS256

Token payload (access):
{
    "sub": <profile_id>,
    "role": "manager",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from auditpack.models import db
from auditpack.models.auth import RevokedToken

DEFAULT_ACCESS_EXPIRES = 3600
DEFAULT_RESET_EXPIRES = 900
ALGORITHM = "HS256"

TYPE_ACCESS = "access"
TYPE_PASSWORD_RESET = "password_reset"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _encode(profile_id: str, token_type: str, expires_in: int, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": profile_id,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "jti": str(uuid.uuid4()),
        **claims,
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(profile_id: str, role: str) -> dict:
    """Issue an access token; returns the token envelope sent to clients."""
    expires_in = current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    return {
        "access_token": _encode(profile_id, TYPE_ACCESS, expires_in, role=role),
        "token_type": "Bearer",
        "expires_in": expires_in,
    }


def generate_password_reset_token(profile_id: str, password_hash: str | None) -> str:
    """Short-lived reset token bound to the current password hash.

    The ``pwd`` claim makes the token single-use: once the password changes
    the fingerprint no longer matches.
    """
    expires_in = current_app.config.get("PASSWORD_RESET_EXPIRES", DEFAULT_RESET_EXPIRES)
    return _encode(profile_id, TYPE_PASSWORD_RESET, expires_in, pwd=_hash_fingerprint(password_hash))


def _hash_fingerprint(password_hash: str | None) -> str:
    return (password_hash or "")[-12:]


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = TYPE_ACCESS) -> dict:
    """
    Decode and verify a JWT.

    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, ...).
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type=TYPE_ACCESS)


def decode_password_reset_token(token: str, password_hash: str | None = None) -> dict:
    payload = decode_token(token, expected_type=TYPE_PASSWORD_RESET)
    if password_hash is not None and payload.get("pwd") != _hash_fingerprint(password_hash):
        raise jwt.InvalidTokenError("Reset token already used")
    return payload


# ═══════════════════════════════════════════════════════════════
# Revocation (sign-out denylist)
# ═══════════════════════════════════════════════════════════════
def revoke_token(claims: dict) -> None:
    """Add the token's jti to the denylist. Caller commits."""
    jti = claims.get("jti")
    if not jti or db.session.get(RevokedToken, jti):
        return
    exp = claims.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None
    db.session.add(RevokedToken(jti=jti, profile_id=claims.get("sub"), expires_at=expires_at))


def is_token_revoked(jti: str | None) -> bool:
    if not jti:
        return True
    return db.session.get(RevokedToken, jti) is not None


def purge_expired_revocations() -> int:
    """Delete denylist rows whose token has expired anyway. Returns rows removed."""
    now = datetime.now(timezone.utc)
    count = RevokedToken.query.filter(RevokedToken.expires_at < now).delete(synchronize_session=False)
    db.session.commit()
    return count
