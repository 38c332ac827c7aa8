"""
Identity Models — organizations, departments, profiles, revoked tokens.

A Profile is the identity and authorization record for a signed-up user:
role (employee / manager / admin), department and active/suspended status.
Organizations group profiles and departments.
"""

import re
import uuid
from datetime import datetime, timezone

from auditpack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_EMPLOYEE = "employee"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_EMPLOYEE, ROLE_MANAGER, ROLE_ADMIN)

STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
PROFILE_STATUSES = (STATUS_ACTIVE, STATUS_SUSPENDED)

# Seeded into every new organization
DEFAULT_DEPARTMENTS = (
    "Engineering",
    "Finance & Accounting",
    "Human Resources",
    "Operations",
    "Sales & Marketing",
    "IT Support",
)
# Department given to admins who sign up without naming one
ADMIN_DEFAULT_DEPARTMENT = "General"


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def slugify(name: str) -> str:
    """Lower-case, hyphen-separated slug for organization names."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").strip().lower()).strip("-")
    return slug or "org"


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False, unique=True)
    slug = db.Column(db.String(200), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    departments = db.relationship(
        "Department", back_populates="organization", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    profiles = db.relationship("Profile", back_populates="organization", lazy="dynamic")

    def department_names(self) -> list[str]:
        return [d.name for d in self.departments.order_by(Department.name)]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. DEPARTMENTS
# ═══════════════════════════════════════════════════════════════
class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_department_org_name"),
    )

    organization = db.relationship("Organization", back_populates="departments")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
        }


# ═══════════════════════════════════════════════════════════════
# 3. PROFILES
# ═══════════════════════════════════════════════════════════════
class Profile(db.Model):
    """
    Identity + authorization attributes of a user.

    ``department`` stays NULL until assigned; a non-admin without one may
    only use the department picker.
    """

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    email = db.Column(db.String(200), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_EMPLOYEE, index=True)
    department = db.Column(db.String(120), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    organization = db.relationship("Organization", back_populates="profiles")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    @property
    def is_suspended(self) -> bool:
        return self.status == STATUS_SUSPENDED

    @property
    def needs_department(self) -> bool:
        """True for non-admins that have not picked a department yet."""
        return not self.is_admin and not self.department

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "department": self.department,
            "status": self.status,
            "organization_id": self.organization_id,
            "organization_name": self.organization.name if self.organization else None,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Profile {self.id} {self.role}>"


# ═══════════════════════════════════════════════════════════════
# 4. REVOKED TOKENS (sign-out denylist)
# ═══════════════════════════════════════════════════════════════
class RevokedToken(db.Model):
    __tablename__ = "revoked_tokens"

    jti = db.Column(db.String(64), primary_key=True)
    profile_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"), index=True,
    )
    expires_at = db.Column(db.DateTime(timezone=True))
    revoked_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
