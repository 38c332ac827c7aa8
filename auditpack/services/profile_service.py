"""
Profile Service — organizations, departments, self-service and user administration.

Administration is scoped to the admin's own organization; request access
control is not (see access_control).
"""

import logging

from auditpack.core.exceptions import ConflictError, NotFoundError, Unauthorized, ValidationError
from auditpack.models import db
from auditpack.models.auth import (
    ADMIN_DEFAULT_DEPARTMENT,
    DEFAULT_DEPARTMENTS,
    ROLES,
    STATUS_ACTIVE,
    STATUS_SUSPENDED,
    Department,
    Organization,
    Profile,
    slugify,
)
from auditpack.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_NAME_LENGTH = 200


# ═══════════════════════════════════════════════════════════════
# Organizations & departments
# ═══════════════════════════════════════════════════════════════
def find_or_create_organization(name: str) -> Organization:
    """Return the organization named ``name``, creating and seeding it if new.

    Flushes but does not commit; callers own the transaction.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Invalid organization", details={"company": "Company name is required"})

    slug = slugify(name)
    org = Organization.query.filter_by(slug=slug).first()
    if org:
        return org

    org = Organization(name=name, slug=slug)
    db.session.add(org)
    db.session.flush()
    for dept in DEFAULT_DEPARTMENTS:
        db.session.add(Department(organization_id=org.id, name=dept))
    db.session.flush()
    logger.info("Organization created: %s", org.name, extra={"event_type": "org.created"})
    return org


def department_names_for(profile: Profile) -> list[str]:
    """Departments a profile may choose from (its organization's list)."""
    if not profile.organization_id:
        return list(DEFAULT_DEPARTMENTS)
    org = db.session.get(Organization, profile.organization_id)
    return org.department_names() if org else []


def list_departments(actor: Profile) -> list[Department]:
    if not actor.organization_id:
        return []
    return Department.query.filter_by(organization_id=actor.organization_id).order_by(Department.name).all()


def create_department(actor: Profile, name: str) -> Department:
    if not actor.is_admin:
        raise Unauthorized(actor.id, "create departments")
    name = (name or "").strip()
    if not name:
        raise ValidationError("Invalid department", details={"name": "Department name is required"})
    if len(name) > 120:
        raise ValidationError("Invalid department", details={"name": "Department name is too long"})
    if not actor.organization_id:
        raise ValidationError("Invalid department", details={"organization": "Admin has no organization"})

    exists = Department.query.filter_by(organization_id=actor.organization_id, name=name).first()
    if exists:
        raise ConflictError("Department", "name", name)

    dept = Department(organization_id=actor.organization_id, name=name)
    db.session.add(dept)
    db.session.commit()
    logger.info("Department created: %s", name, extra={"profile_id": actor.id, "event_type": "department.created"})
    return dept


def validate_department(profile: Profile, department: str | None, field: str = "department") -> str:
    """Trim ``department`` and check it is one of the profile's organization departments."""
    department = (department or "").strip()
    if not department:
        raise ValidationError("Invalid department", details={field: "Department is required"})
    allowed = department_names_for(profile)
    if allowed and department not in allowed and not (profile.is_admin and department == ADMIN_DEFAULT_DEPARTMENT):
        raise ValidationError("Invalid department", details={field: f"Unknown department '{department}'"})
    return department


# ═══════════════════════════════════════════════════════════════
# Self-service
# ═══════════════════════════════════════════════════════════════
def validate_password(password: str | None, field: str = "password") -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Invalid password",
            details={field: f"Password must be at least {MIN_PASSWORD_LENGTH} characters"},
        )
    return password


def update_own_profile(actor: Profile, data: dict) -> Profile:
    """Update the caller's own display name."""
    if "full_name" in data:
        full_name = (data.get("full_name") or "").strip()
        if not full_name:
            raise ValidationError("Invalid profile", details={"full_name": "Full name is required"})
        if len(full_name) > MAX_NAME_LENGTH:
            raise ValidationError("Invalid profile", details={"full_name": "Full name is too long"})
        actor.full_name = full_name
    db.session.commit()
    return actor


def select_department(actor: Profile, department: str) -> Profile:
    """Pick a department.

    Non-admins may only do this while none is set; afterwards only an
    admin can move them. Admins may change their own at any time.
    """
    if actor.department and not actor.is_admin:
        raise Unauthorized(actor.id, "change own department")
    actor.department = validate_department(actor, department)
    db.session.commit()
    logger.info("Department selected: %s", actor.department,
                extra={"profile_id": actor.id, "event_type": "profile.department"})
    return actor


def change_password(actor: Profile, current_password: str, new_password: str) -> Profile:
    if not verify_password(current_password or "", actor.password_hash or ""):
        raise ValidationError("Invalid password", details={"current_password": "Current password is incorrect"})
    actor.password_hash = hash_password(validate_password(new_password, "new_password"))
    db.session.commit()
    return actor


# ═══════════════════════════════════════════════════════════════
# Administration (admin only, own organization)
# ═══════════════════════════════════════════════════════════════
def _require_admin(actor: Profile, action: str):
    if not actor.is_admin:
        raise Unauthorized(actor.id, action)


def _get_managed_profile(actor: Profile, profile_id: str) -> Profile:
    profile = db.session.get(Profile, profile_id)
    if profile is None or profile.organization_id != actor.organization_id:
        raise NotFoundError(resource="Profile", resource_id=profile_id)
    return profile


def list_profiles(actor: Profile, *, role: str | None = None, status: str | None = None,
                  q: str | None = None) -> list[Profile]:
    _require_admin(actor, "list profiles")
    query = Profile.query.filter(Profile.organization_id == actor.organization_id)
    if role:
        query = query.filter(Profile.role == role)
    if status:
        query = query.filter(Profile.status == status)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(db.or_(Profile.full_name.ilike(like), Profile.email.ilike(like)))
    return query.order_by(Profile.full_name).all()


def admin_update_profile(actor: Profile, profile_id: str, data: dict) -> Profile:
    """Change another profile's role and/or department."""
    _require_admin(actor, "update profiles")
    profile = _get_managed_profile(actor, profile_id)

    errors = {}
    if "role" in data:
        role = (data.get("role") or "").strip().lower()
        if role not in ROLES:
            errors["role"] = f"Role must be one of: {', '.join(ROLES)}"
        elif profile.id == actor.id and role != profile.role:
            errors["role"] = "Admins cannot change their own role"
        else:
            profile.role = role
    if "department" in data:
        department = data.get("department")
        if department in (None, "") and profile.is_admin:
            profile.department = None
        else:
            try:
                profile.department = validate_department(actor, department)
            except ValidationError as exc:
                errors.update(exc.details)
    if errors:
        db.session.rollback()
        raise ValidationError("Invalid profile update", details=errors)

    db.session.commit()
    logger.info("Profile %s updated by admin: role=%s department=%s", profile.id, profile.role,
                profile.department, extra={"profile_id": actor.id, "event_type": "profile.admin_update"})
    return profile


def set_profile_status(actor: Profile, profile_id: str, status: str) -> Profile:
    """Suspend or reactivate a profile (never oneself)."""
    _require_admin(actor, f"set profile status to {status}")
    if status not in (STATUS_ACTIVE, STATUS_SUSPENDED):
        raise ValidationError("Invalid status", details={"status": f"Unknown status '{status}'"})
    profile = _get_managed_profile(actor, profile_id)
    if profile.id == actor.id:
        raise ValidationError("Invalid status", details={"status": "Admins cannot change their own status"})
    profile.status = status
    db.session.commit()
    logger.info("Profile %s status -> %s", profile.id, status,
                extra={"profile_id": actor.id, "event_type": "profile.status"})
    return profile
