"""
Request access control — who may see, move, edit or delete a request.

Transition table (from, to) → who:

    pending            → approved           reviewer
    pending            → rejected           reviewer
    pending            → changes_requested  reviewer
    changes_requested  → pending            owner (any role)
    approved           → changes_requested  admin (re-open)
    rejected           → changes_requested  admin (re-open)

``reviewer`` is an admin, or a manager whose department equals the
request's department at the time of the check.

All functions are pure reads over the profile and request passed in; the
request's department is whatever the caller just loaded.
"""

from auditpack.models import db
from auditpack.models.auth import ROLE_EMPLOYEE, Profile
from auditpack.models.request import (
    ACTIVE_STATUSES,
    ARCHIVE_STATUSES,
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_PENDING,
    STATUS_REJECTED,
    AuditRequest,
)

WHO_REVIEWER = "reviewer"
WHO_OWNER = "owner"
WHO_ADMIN = "admin"

REQUEST_TRANSITIONS: dict[tuple[str, str], str] = {
    (STATUS_PENDING, STATUS_APPROVED): WHO_REVIEWER,
    (STATUS_PENDING, STATUS_REJECTED): WHO_REVIEWER,
    (STATUS_PENDING, STATUS_CHANGES_REQUESTED): WHO_REVIEWER,
    (STATUS_CHANGES_REQUESTED, STATUS_PENDING): WHO_OWNER,
    (STATUS_APPROVED, STATUS_CHANGES_REQUESTED): WHO_ADMIN,
    (STATUS_REJECTED, STATUS_CHANGES_REQUESTED): WHO_ADMIN,
}

SCOPE_ACTIVE = "active"
SCOPE_ARCHIVE = "archive"
SCOPE_ALL = "all"
SCOPES = (SCOPE_ACTIVE, SCOPE_ARCHIVE, SCOPE_ALL)


def is_owner(profile: Profile, request: AuditRequest) -> bool:
    return profile.id == request.employee_id


def is_reviewer(profile: Profile, request: AuditRequest) -> bool:
    """Admin, or manager of the request's department."""
    if profile.is_admin:
        return True
    return profile.is_manager and bool(profile.department) and profile.department == request.department


def can_view(profile: Profile, request: AuditRequest) -> bool:
    return is_reviewer(profile, request) or is_owner(profile, request)


def _edge_allowed(profile: Profile, request: AuditRequest, who: str) -> bool:
    if who == WHO_ADMIN:
        return profile.is_admin
    if who == WHO_REVIEWER:
        return is_reviewer(profile, request)
    if who == WHO_OWNER:
        return is_owner(profile, request)
    return False


def can_transition(profile: Profile, request: AuditRequest, target: str) -> bool:
    if not can_view(profile, request):
        return False
    who = REQUEST_TRANSITIONS.get((request.status, target))
    if who is None or not _edge_allowed(profile, request, who):
        return False
    if profile.role == ROLE_EMPLOYEE:
        # employees only ever resubmit their own request
        return (
            target == STATUS_PENDING
            and request.status == STATUS_CHANGES_REQUESTED
            and is_owner(profile, request)
        )
    return True


def transition_denial_reason(profile: Profile, request: AuditRequest, target: str) -> str:
    """Human-readable reason ``can_transition`` is False (for error bodies)."""
    who = REQUEST_TRANSITIONS.get((request.status, target))
    if who is None:
        return f"No transition from '{request.status}' to '{target}'"
    if who == WHO_OWNER:
        return "Only the request owner may resubmit"
    if who == WHO_ADMIN:
        return "Only an admin may re-open a closed request"
    return "Only an admin or a manager of the request's department may review"


def allowed_targets(profile: Profile, request: AuditRequest) -> list[str]:
    """Statuses ``profile`` may move ``request`` to right now, in table order."""
    return [
        target for (source, target) in REQUEST_TRANSITIONS
        if source == request.status and can_transition(profile, request, target)
    ]


def can_edit(profile: Profile, request: AuditRequest) -> bool:
    return is_owner(profile, request) and request.status == STATUS_CHANGES_REQUESTED


def can_delete(profile: Profile, request: AuditRequest) -> bool:
    return profile.is_admin


def permissions_for(profile: Profile, request: AuditRequest) -> dict:
    """Permission summary embedded in request detail responses."""
    return {
        "can_edit": can_edit(profile, request),
        "can_delete": can_delete(profile, request),
        "can_comment": can_view(profile, request),
        "allowed_transitions": allowed_targets(profile, request),
    }


def visible_requests_query(profile: Profile, scope: str = SCOPE_ALL):
    """Base query of the requests ``profile`` may see, newest first."""
    query = AuditRequest.query
    if profile.is_admin:
        pass
    elif profile.is_manager and profile.department:
        query = query.filter(db.or_(
            AuditRequest.department == profile.department,
            AuditRequest.employee_id == profile.id,
        ))
    else:
        query = query.filter(AuditRequest.employee_id == profile.id)

    if scope == SCOPE_ACTIVE:
        query = query.filter(AuditRequest.status.in_(ACTIVE_STATUSES))
    elif scope == SCOPE_ARCHIVE:
        query = query.filter(AuditRequest.status.in_(ARCHIVE_STATUSES))
    return query.order_by(AuditRequest.created_at.desc(), AuditRequest.id)
