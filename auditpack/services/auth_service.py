"""
Auth Service — sign-up, sign-in, sign-out and password reset.
"""

import logging
from datetime import datetime, timezone

import jwt as pyjwt
from email_validator import EmailNotValidError, validate_email
from flask import current_app

from auditpack.core.exceptions import AuthenticationError, ConflictError, ValidationError
from auditpack.models import db
from auditpack.models.auth import ADMIN_DEFAULT_DEPARTMENT, ROLE_EMPLOYEE, ROLES, Profile
from auditpack.services import jwt_service, profile_service
from auditpack.services.email_service import EmailService
from auditpack.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

# Landing routes returned by sign-in
ROUTE_SUSPENDED = "/suspended"
ROUTE_PROFILE = "/profile"
ROUTE_SELECT_DEPARTMENT = "/select-department"
ROUTE_DASHBOARD = "/dashboard"


def normalize_email(email: str | None) -> str:
    try:
        return validate_email((email or "").strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError("Invalid email", details={"email": str(exc)}) from exc


def landing_route(profile: Profile) -> str:
    """Where the UI should send a freshly signed-in profile."""
    if profile.is_suspended:
        return ROUTE_SUSPENDED
    if not profile.department:
        return ROUTE_PROFILE if profile.is_admin else ROUTE_SELECT_DEPARTMENT
    return ROUTE_DASHBOARD


def _session_payload(profile: Profile) -> dict:
    return {
        **jwt_service.generate_access_token(profile.id, profile.role),
        "profile": profile.to_dict(),
        "redirect": landing_route(profile),
    }


# ═══════════════════════════════════════════════════════════════
# Sign-up / sign-in / sign-out
# ═══════════════════════════════════════════════════════════════
def sign_up(data: dict) -> dict:
    """
    Create a profile (and its organization on first use of a company name).

    Admins without a department get ``General``; other roles may leave it
    empty and pick one after signing in.
    """
    errors = {}
    try:
        email = normalize_email(data.get("email"))
    except ValidationError as exc:
        errors.update(exc.details)
        email = None

    password = data.get("password") or ""
    if len(password) < profile_service.MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {profile_service.MIN_PASSWORD_LENGTH} characters"

    full_name = (data.get("full_name") or "").strip()
    if not full_name:
        errors["full_name"] = "Full name is required"
    elif len(full_name) > profile_service.MAX_NAME_LENGTH:
        errors["full_name"] = "Full name is too long"

    company = (data.get("company") or "").strip()
    if not company:
        errors["company"] = "Company name is required"

    role = (data.get("role") or ROLE_EMPLOYEE).strip().lower()
    if role not in ROLES:
        errors["role"] = f"Role must be one of: {', '.join(ROLES)}"

    if errors:
        raise ValidationError("Invalid sign-up", details=errors)

    if Profile.query.filter_by(email=email).first():
        raise ConflictError("Profile", "email", email)

    org = profile_service.find_or_create_organization(company)
    profile = Profile(
        organization_id=org.id,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        role=role,
    )
    department = (data.get("department") or "").strip()
    if department:
        profile.department = profile_service.validate_department(profile, department)
    elif role == "admin":
        profile.department = ADMIN_DEFAULT_DEPARTMENT

    db.session.add(profile)
    db.session.commit()
    logger.info("Profile signed up: role=%s org=%s", role, org.slug,
                extra={"profile_id": profile.id, "event_type": "auth.sign_up"})
    return _session_payload(profile)


def sign_in(email: str, password: str) -> dict:
    """Verify credentials; suspended profiles still get a token so they can sign out."""
    try:
        email = normalize_email(email)
    except ValidationError:
        raise AuthenticationError("Invalid email or password")

    profile = Profile.query.filter_by(email=email).first()
    if not profile or not verify_password(password or "", profile.password_hash or ""):
        logger.warning("Failed sign-in for %s", email, extra={"event_type": "auth.sign_in_failed"})
        raise AuthenticationError("Invalid email or password")

    profile.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Profile signed in", extra={"profile_id": profile.id, "event_type": "auth.sign_in"})
    return _session_payload(profile)


def sign_out(claims: dict) -> None:
    jwt_service.revoke_token(claims)
    db.session.commit()
    logger.info("Profile signed out", extra={"profile_id": claims.get("sub"), "event_type": "auth.sign_out"})


# ═══════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════
def request_password_reset(email: str) -> None:
    """Email a reset link when the address is known. Silent otherwise."""
    try:
        email = normalize_email(email)
    except ValidationError:
        return
    profile = Profile.query.filter_by(email=email).first()
    if profile is None:
        logger.info("Password reset requested for unknown email", extra={"event_type": "auth.reset_unknown"})
        return

    token = jwt_service.generate_password_reset_token(profile.id, profile.password_hash)
    frontend = current_app.config.get("FRONTEND_URL", "").rstrip("/")
    expires = current_app.config.get("PASSWORD_RESET_EXPIRES", jwt_service.DEFAULT_RESET_EXPIRES)
    EmailService.send_from_template(
        to_email=profile.email,
        to_name=profile.full_name,
        template_name="password_reset",
        context={
            "full_name": profile.full_name,
            "reset_link": f"{frontend}/reset-password?token={token}",
            "expires_minutes": expires // 60,
        },
    )
    logger.info("Password reset link issued", extra={"profile_id": profile.id, "event_type": "auth.reset_requested"})


def confirm_password_reset(token: str, new_password: str) -> Profile:
    if not token:
        raise ValidationError("Invalid reset", details={"token": "Reset token is required"})
    try:
        unverified = jwt_service.decode_token(token, expected_type=jwt_service.TYPE_PASSWORD_RESET)
    except pyjwt.InvalidTokenError as exc:
        raise ValidationError("Invalid reset", details={"token": "Reset link is invalid or expired"}) from exc

    profile = db.session.get(Profile, unverified.get("sub"))
    if profile is None:
        raise ValidationError("Invalid reset", details={"token": "Reset link is invalid or expired"})
    try:
        jwt_service.decode_password_reset_token(token, profile.password_hash)
    except pyjwt.InvalidTokenError as exc:
        raise ValidationError("Invalid reset", details={"token": "Reset link was already used"}) from exc

    profile.password_hash = hash_password(profile_service.validate_password(new_password))
    db.session.commit()
    logger.info("Password reset completed", extra={"profile_id": profile.id, "event_type": "auth.reset_done"})
    return profile
