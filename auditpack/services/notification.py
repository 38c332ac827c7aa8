"""
Audit Pack
Notification Service.

Two producers:
    - fan-out on request creation / resubmission: every admin plus the
      managers of the request's department
    - owner notice on a reviewer status change

and the recipient-scoped read-state operations. Every query is filtered by
``user_id``; another user's notification id behaves as not found.
"""

import logging
from datetime import datetime, timezone

from auditpack.core.exceptions import NotFoundError
from auditpack.models import db
from auditpack.models.auth import ROLE_ADMIN, ROLE_MANAGER, Profile
from auditpack.models.notification import Notification
from auditpack.models.request import (
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from auditpack.services.realtime import publish_notification_created

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_RESUBMITTED = "resubmitted"

_FAN_OUT_TITLES = {
    ACTION_CREATED: "New request: {title}",
    ACTION_RESUBMITTED: "Request resubmitted: {title}",
}

# status → (owner notification title, wording used in the body)
_OWNER_STATUS_TEXT = {
    STATUS_APPROVED: ("Request Approved", "approved"),
    STATUS_REJECTED: ("Request Rejected", "rejected"),
    STATUS_CHANGES_REQUESTED: ("Request Update Required", "changes requested"),
    STATUS_PENDING: ("Request Resubmitted", "resubmitted"),
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Producers ─────────────────────────────────────────────────────────

    @staticmethod
    def reviewer_ids(department: str) -> list[str]:
        """All admins plus managers of ``department`` (read at call time)."""
        rows = (
            db.session.query(Profile.id)
            .filter(db.or_(
                Profile.role == ROLE_ADMIN,
                db.and_(Profile.role == ROLE_MANAGER, Profile.department == department),
            ))
            .order_by(Profile.created_at)
            .all()
        )
        return [r.id for r in rows]

    @staticmethod
    def fan_out_request_event(audit_request, actor: Profile, action: str) -> list[Notification]:
        """
        One notification per admin and per manager of the request's department.

        Commits, then publishes NotificationCreated for each. The actor is
        not excluded: an admin creating a request is notified too.
        """
        title = _FAN_OUT_TITLES[action].format(title=audit_request.title)
        content = f"{actor.full_name} has {action} a request in {audit_request.department}."
        notifications = []
        for user_id in NotificationService.reviewer_ids(audit_request.department):
            notif = Notification(user_id=user_id, request_id=audit_request.id, title=title, content=content)
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        for notif in notifications:
            publish_notification_created(notif)
        logger.info("Fan-out '%s': %d notification(s)", action, len(notifications),
                    extra={"audit_request_id": audit_request.id, "event_type": f"notify.{action}"})
        return notifications

    @staticmethod
    def notify_owner_status_change(audit_request) -> Notification:
        """Exactly one notification to the owner describing the new status."""
        title, words = _OWNER_STATUS_TEXT.get(
            audit_request.status,
            ("Request Updated", audit_request.status.replace("_", " ")),
        )
        notif = Notification(
            user_id=audit_request.employee_id,
            request_id=audit_request.id,
            title=title,
            content=f'Your request "{audit_request.title}" has been {words}.',
        )
        db.session.add(notif)
        db.session.commit()
        publish_notification_created(notif)
        logger.info("Owner notified: %s", title,
                    extra={"audit_request_id": audit_request.id, "event_type": "notify.owner"})
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id: str, *, unread_only=False, limit=50, offset=0):
        """Notifications of ``user_id``, newest first. Returns (items, total)."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id: str) -> int:
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def _get_own(user_id: str, notification_id: int) -> Notification:
        notif = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        return notif

    @staticmethod
    def mark_read(user_id: str, notification_id: int) -> Notification:
        """Idempotent."""
        notif = NotificationService._get_own(user_id, notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id: str) -> int:
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(user_id: str, notification_id: int) -> None:
        notif = NotificationService._get_own(user_id, notification_id)
        db.session.delete(notif)
        db.session.commit()

    @staticmethod
    def clear_all(user_id: str) -> int:
        count = Notification.query.filter_by(user_id=user_id).delete(synchronize_session="fetch")
        db.session.commit()
        return count
