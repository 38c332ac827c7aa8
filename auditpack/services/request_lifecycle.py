"""
Request Lifecycle Service

Owns every write to a request:
  - create        employee action, status=pending, fan-out "created"
  - edit          owner while changes_requested, status unchanged
  - resubmit      owner edit + changes_requested → pending, fan-out "resubmitted"
  - transition    table-driven status change (see access_control)
  - delete        admin only, comments cascade, notifications keep a NULL link

Order inside every operation:
  load (NotFoundError) → can_view (Unauthorized) → rule checks
  (InvalidTransition / ValidationError) → write + system comment → commit
  → side effects (notifications, realtime) via SideEffectQueue

Status changes are a conditional UPDATE on the loaded status; losing a race
against another reviewer raises ConflictError and changes nothing.

Usage:
    from auditpack.services.request_lifecycle import transition_request

    result = transition_request(request_id, "approved", actor, note="Receipts OK")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm.attributes import set_committed_value

from auditpack.ai.compliance_scorer import apply_review, verify_review
from auditpack.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from auditpack.models import db
from auditpack.models.auth import Profile
from auditpack.models.notification import Notification
from auditpack.models.request import (
    REQUEST_STATUSES,
    STATUS_CHANGES_REQUESTED,
    STATUS_PENDING,
    AuditRequest,
    Comment,
)
from auditpack.services import access_control
from auditpack.services.notification import ACTION_CREATED, ACTION_RESUBMITTED, NotificationService
from auditpack.services.realtime import EVENT_REQUEST_CHANGED, Event, event_bus, publish_request_changed
from auditpack.services.request_validation import REQUEST_FIELDS, validate_request_payload
from auditpack.services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 2000


# ═══════════════════════════════════════════════════════════════
# Loading
# ═══════════════════════════════════════════════════════════════
def load_request(request_id: str) -> AuditRequest:
    req = db.session.get(AuditRequest, request_id) if request_id else None
    if req is None:
        raise NotFoundError(resource="Request", resource_id=request_id)
    return req


def get_request_for_viewer(request_id: str, actor: Profile) -> AuditRequest:
    """Load a request the actor may see (NotFoundError / Unauthorized otherwise)."""
    req = load_request(request_id)
    if not access_control.can_view(actor, req):
        raise Unauthorized(actor.id, "view request", request_id)
    return req


def list_requests(actor: Profile, *, scope: str = access_control.SCOPE_ALL, status: str | None = None,
                  category: str | None = None, department: str | None = None,
                  q: str | None = None) -> list[AuditRequest]:
    """Requests visible to ``actor``, newest first, with optional filters."""
    if scope not in access_control.SCOPES:
        raise ValidationError("Invalid scope", details={"scope": f"Scope must be one of: {', '.join(access_control.SCOPES)}"})
    if status and status not in REQUEST_STATUSES:
        raise ValidationError("Invalid status", details={"status": f"Unknown status '{status}'"})

    query = access_control.visible_requests_query(actor, scope)
    if status:
        query = query.filter(AuditRequest.status == status)
    if category:
        query = query.filter(AuditRequest.category == category)
    if department:
        query = query.filter(AuditRequest.department == department)
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(db.or_(AuditRequest.title.ilike(like), AuditRequest.description.ilike(like)))
    return query.all()


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════
def _check_attachment_namespace(actor: Profile, attachments: list[str]) -> None:
    """New references must live under the actor's own storage prefix."""
    prefix = f"{actor.id}/"
    foreign = [ref for ref in attachments if not ref.startswith(prefix) or ".." in ref]
    if foreign:
        raise ValidationError(
            "Invalid attachments",
            details={"attachments": "Attachments must be uploaded by the submitter"},
        )


def _current_fields(req: AuditRequest) -> dict:
    return {
        "title": req.title,
        "category": req.category,
        "custom_category": req.custom_category,
        "department": req.department,
        "description": req.description,
        "total_amount": req.total_amount,
        "audit_date": req.audit_date,
        "attachments": list(req.attachments or []),
    }


def _merged_payload(req: AuditRequest, data: dict) -> dict:
    merged = _current_fields(req)
    for key in REQUEST_FIELDS:
        if key in data:
            merged[key] = data[key]
    return merged


def _apply_fields(req: AuditRequest, clean: dict) -> bool:
    """Copy validated fields onto the row; returns whether anything changed."""
    changed = False
    for key, value in clean.items():
        if getattr(req, key) != value:
            setattr(req, key, value)
            changed = True
    return changed


def _clear_review(req: AuditRequest) -> None:
    # a stored score describes the content it was computed for
    req.ai_completeness_score = None
    req.ai_summary = None
    req.ai_feedback = []


def _system_comment(req: AuditRequest, text: str) -> Comment:
    comment = Comment(request_id=req.id, user_id=None, content=text, is_system=True)
    db.session.add(comment)
    return comment


def _check_owner_edit(req: AuditRequest, actor: Profile) -> None:
    if not access_control.can_view(actor, req):
        raise Unauthorized(actor.id, "edit request", req.id)
    if not access_control.is_owner(actor, req):
        raise Unauthorized(actor.id, "edit request", req.id)
    if req.status != STATUS_CHANGES_REQUESTED:
        raise InvalidTransition(req.id, req.status, req.status,
                                "Only requests awaiting changes can be edited")


def _conditional_status_update(req: AuditRequest, current: str, target: str) -> None:
    """UPDATE ... WHERE status = :current; zero rows → ConflictError."""
    now = datetime.now(timezone.utc)
    result = db.session.execute(
        db.update(AuditRequest)
        .where(AuditRequest.id == req.id, AuditRequest.status == current)
        .values(status=target, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError("Request", "status", _fresh_status(req.id), stale=True)
    set_committed_value(req, "status", target)
    set_committed_value(req, "updated_at", now)


def _fresh_status(request_id: str) -> str | None:
    return db.session.execute(
        db.select(AuditRequest.status).where(AuditRequest.id == request_id)
    ).scalar_one_or_none()


# ═══════════════════════════════════════════════════════════════
# Create / edit / resubmit / delete
# ═══════════════════════════════════════════════════════════════
def create_request(actor: Profile, data: dict) -> AuditRequest:
    """
    Validate, check the compliance review, and insert a pending request.

    ``data["ai_review"]`` must be the /ai/score result for these exact fields.
    """
    clean = validate_request_payload(actor, data)
    _check_attachment_namespace(actor, clean["attachments"])
    review = verify_review(data.get("ai_review"), clean)

    req = AuditRequest(employee_id=actor.id, status=STATUS_PENDING, **clean)
    apply_review(req, review)
    db.session.add(req)
    db.session.flush()
    _system_comment(req, f"Request submitted by {actor.full_name}.")
    db.session.commit()

    logger.info("Request created in %s", req.department,
                extra={"profile_id": actor.id, "audit_request_id": req.id, "event_type": "request.created"})

    effects = SideEffectQueue(request_id=req.id)
    effects.add("fan_out", NotificationService.fan_out_request_event, req, actor, ACTION_CREATED)
    effects.add("realtime", publish_request_changed, req)
    effects.run()
    return req


def edit_request(request_id: str, actor: Profile, data: dict) -> AuditRequest:
    """Owner edit while changes_requested; status and owner untouched."""
    req = load_request(request_id)
    _check_owner_edit(req, actor)

    clean = validate_request_payload(actor, _merged_payload(req, data))
    added = [ref for ref in clean["attachments"] if ref not in (req.attachments or [])]
    _check_attachment_namespace(actor, added)

    if _apply_fields(req, clean):
        _clear_review(req)
    db.session.commit()
    logger.info("Request edited", extra={"profile_id": actor.id, "audit_request_id": req.id,
                                         "event_type": "request.edited"})

    effects = SideEffectQueue(request_id=req.id)
    effects.add("realtime", publish_request_changed, req)
    effects.run()
    return req


def resubmit_request(request_id: str, actor: Profile, data: dict) -> AuditRequest:
    """
    Apply the owner's edits and move changes_requested → pending.

    The compliance review must match the edited fields. Admins and matching
    managers get a "resubmitted" fan-out; the owner gets no self-notice.
    """
    req = load_request(request_id)
    _check_owner_edit(req, actor)
    if not access_control.can_transition(actor, req, STATUS_PENDING):
        raise InvalidTransition(req.id, req.status, STATUS_PENDING,
                                access_control.transition_denial_reason(actor, req, STATUS_PENDING))

    clean = validate_request_payload(actor, _merged_payload(req, data))
    added = [ref for ref in clean["attachments"] if ref not in (req.attachments or [])]
    _check_attachment_namespace(actor, added)
    review = verify_review(data.get("ai_review"), clean)

    previous = req.status
    if _apply_fields(req, clean) and review is None:
        _clear_review(req)
    apply_review(req, review)
    _conditional_status_update(req, previous, STATUS_PENDING)
    _system_comment(req, f"Status changed from {previous} to {STATUS_PENDING} by {actor.full_name}.")
    db.session.commit()

    logger.info("Request resubmitted", extra={"profile_id": actor.id, "audit_request_id": req.id,
                                              "event_type": "request.resubmitted"})

    effects = SideEffectQueue(request_id=req.id)
    effects.add("fan_out", NotificationService.fan_out_request_event, req, actor, ACTION_RESUBMITTED)
    effects.add("realtime", publish_request_changed, req)
    effects.run()
    return req


def delete_request(request_id: str, actor: Profile) -> None:
    """Admin only. Comments cascade; notifications keep existing unlinked."""
    req = load_request(request_id)
    if not access_control.can_delete(actor, req):
        raise Unauthorized(actor.id, "delete request", request_id)

    snapshot = req.to_dict(include_owner=False)
    Notification.query.filter_by(request_id=req.id).update({"request_id": None}, synchronize_session=False)
    db.session.delete(req)
    db.session.commit()
    logger.info("Request deleted", extra={"profile_id": actor.id, "audit_request_id": request_id,
                                          "event_type": "request.deleted"})

    effects = SideEffectQueue(request_id=request_id)
    effects.add("realtime", _publish_deleted, snapshot)
    effects.run()


def _publish_deleted(snapshot: dict) -> None:
    snapshot = {**snapshot, "deleted": True}
    event_bus.publish(Event(EVENT_REQUEST_CHANGED, {"request": snapshot}, request=snapshot))


# ═══════════════════════════════════════════════════════════════
# Transition
# ═══════════════════════════════════════════════════════════════
def transition_request(
    request_id: str,
    target: str,
    actor: Profile,
    *,
    expected_status: str | None = None,
    ai_review: dict | None = None,
    note: str | None = None,
) -> dict:
    """
    Move a request to ``target``.

    Args:
        request_id: Request UUID
        target: New status
        actor: Acting profile
        expected_status: Status the caller last saw; a mismatch is a ConflictError
        ai_review: Compliance review, required when the owner resubmits (target pending)
        note: Optional reviewer note appended to the transition log line

    Returns:
        {"request_id", "previous_status", "new_status", "request"}

    Raises:
        NotFoundError, Unauthorized, InvalidTransition, ValidationError, ConflictError
    """
    req = load_request(request_id)

    # 1. Visibility
    if not access_control.can_view(actor, req):
        raise Unauthorized(actor.id, f"transition request to {target}", request_id)

    # 2. Caller's view must still be current
    if expected_status is not None and expected_status != req.status:
        raise ConflictError("Request", "status", req.status, stale=True)

    # 3. Transition table
    if not isinstance(target, str) or target not in REQUEST_STATUSES:
        raise InvalidTransition(req.id, req.status, target, f"Unknown status '{target}'")
    if not access_control.can_transition(actor, req, target):
        raise InvalidTransition(req.id, req.status, target,
                                access_control.transition_denial_reason(actor, req, target))

    if note is not None and not isinstance(note, str):
        raise ValidationError("Invalid note", details={"note": "Note must be text"})
    note = (note or "").strip()
    if len(note) > MAX_NOTE_LENGTH:
        raise ValidationError("Invalid note", details={"note": f"Note must be at most {MAX_NOTE_LENGTH} characters"})

    # 4. Resubmission gate
    review = None
    if target == STATUS_PENDING:
        review = verify_review(ai_review, _current_fields(req))

    # 5. Conditional write + log line
    previous = req.status
    apply_review(req, review)
    _conditional_status_update(req, previous, target)
    log_line = f"Status changed from {previous} to {target} by {actor.full_name}."
    if note:
        log_line += f" Note: {note}"
    _system_comment(req, log_line)
    db.session.commit()

    logger.info("Request %s: %s -> %s", req.id, previous, target,
                extra={"profile_id": actor.id, "audit_request_id": req.id, "event_type": "request.transition"})

    # 6. Side effects
    effects = SideEffectQueue(request_id=req.id)
    if target == STATUS_PENDING:
        effects.add("fan_out", NotificationService.fan_out_request_event, req, actor, ACTION_RESUBMITTED)
    else:
        effects.add("notify_owner", NotificationService.notify_owner_status_change, req)
    effects.add("realtime", publish_request_changed, req)
    effects.run()

    return {
        "request_id": req.id,
        "previous_status": previous,
        "new_status": req.status,
        "request": req.to_dict(),
    }
