"""
Notification Blueprint — the caller's own in-app notifications.

  GET    /api/v1/notifications                — ?unread=1&limit=&offset=
  GET    /api/v1/notifications/unread-count
  POST   /api/v1/notifications/<id>/read
  POST   /api/v1/notifications/read-all
  DELETE /api/v1/notifications/<id>
  DELETE /api/v1/notifications                — clear all

Every route is scoped to the authenticated profile; another user's
notification id answers 404.
"""

import logging

from flask import Blueprint, jsonify, request

from auditpack.auth import current_auth
from auditpack.services.notification import NotificationService
from auditpack.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")

MAX_PAGE_SIZE = 200


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List the caller's notifications, newest first."""
    user_id = current_auth().profile_id
    limit = min(request.args.get("limit", 50, type=int), MAX_PAGE_SIZE)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_user(
        user_id,
        unread_only=parse_bool(request.args.get("unread")),
        limit=max(limit, 1),
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_auth().profile_id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_read(nid):
    notif = NotificationService.mark_read(current_auth().profile_id, nid)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(current_auth().profile_id)
    return jsonify({"marked_read": count})


@notification_bp.route("/notifications/<int:nid>", methods=["DELETE"])
def delete_notification(nid):
    NotificationService.delete(current_auth().profile_id, nid)
    return jsonify({"deleted": True, "id": nid})


@notification_bp.route("/notifications", methods=["DELETE"])
def clear_notifications():
    count = NotificationService.clear_all(current_auth().profile_id)
    return jsonify({"deleted": count})
