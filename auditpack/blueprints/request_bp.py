"""
Request Blueprint — audit request workflow, comments and attachments.

Requests:
  GET    /api/v1/requests                       — ?scope=&status=&category=&department=&q=
  POST   /api/v1/requests                       — submit (needs a fresh ai_review)
  GET    /api/v1/requests/<id>                  — detail + permissions
  PUT    /api/v1/requests/<id>                  — owner edit while changes_requested
  POST   /api/v1/requests/<id>/resubmit         — owner edit + back to pending
  POST   /api/v1/requests/<id>/transition       — {status, expected_status?, note?, ai_review?}
  DELETE /api/v1/requests/<id>                  — admin

Comments:
  GET    /api/v1/requests/<id>/comments
  POST   /api/v1/requests/<id>/comments

Attachments:
  POST   /api/v1/attachments                    — multipart "file" → reference
  GET    /api/v1/requests/<id>/attachments/<path:ref>
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from auditpack.auth import current_auth
from auditpack.core.exceptions import NotFoundError
from auditpack.services import access_control, comment_service, request_lifecycle
from auditpack.services.storage import get_store
from auditpack.utils.errors import E, api_error
from auditpack.utils.helpers import json_body

logger = logging.getLogger(__name__)

request_bp = Blueprint("request_bp", __name__, url_prefix="/api/v1")


def _detail(req, profile):
    return {**req.to_dict(), "permissions": access_control.permissions_for(profile, req)}


# ═══════════════════════════════════════════════════════════════════════════
#  REQUESTS
# ═══════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests", methods=["GET"])
def list_requests():
    """Requests visible to the caller, newest first."""
    items = request_lifecycle.list_requests(
        current_auth().profile,
        scope=request.args.get("scope", access_control.SCOPE_ALL),
        status=request.args.get("status") or None,
        category=request.args.get("category") or None,
        department=request.args.get("department") or None,
        q=request.args.get("q"),
    )
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@request_bp.route("/requests", methods=["POST"])
def create_request():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = current_auth().profile
    req = request_lifecycle.create_request(profile, data)
    return jsonify(_detail(req, profile)), 201


@request_bp.route("/requests/<request_id>", methods=["GET"])
def get_request(request_id):
    profile = current_auth().profile
    req = request_lifecycle.get_request_for_viewer(request_id, profile)
    return jsonify(_detail(req, profile))


@request_bp.route("/requests/<request_id>", methods=["PUT"])
def edit_request(request_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = current_auth().profile
    req = request_lifecycle.edit_request(request_id, profile, data)
    return jsonify(_detail(req, profile))


@request_bp.route("/requests/<request_id>/resubmit", methods=["POST"])
def resubmit_request(request_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = current_auth().profile
    req = request_lifecycle.resubmit_request(request_id, profile, data)
    return jsonify(_detail(req, profile))


@request_bp.route("/requests/<request_id>/transition", methods=["POST"])
def transition_request(request_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    target = data.get("status")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    for field in ("status", "expected_status", "note"):
        if data.get(field) is not None and not isinstance(data[field], str):
            return api_error(E.VALIDATION_INVALID, f"{field} must be a string", status=400,
                             details={field: "Must be a string"})

    profile = current_auth().profile
    result = request_lifecycle.transition_request(
        request_id, target, profile,
        expected_status=data.get("expected_status"),
        ai_review=data.get("ai_review"),
        note=data.get("note"),
    )
    result["request"]["permissions"] = access_control.permissions_for(
        profile, request_lifecycle.load_request(request_id),
    )
    return jsonify(result)


@request_bp.route("/requests/<request_id>", methods=["DELETE"])
def delete_request(request_id):
    request_lifecycle.delete_request(request_id, current_auth().profile)
    return jsonify({"deleted": True, "id": request_id})


# ═══════════════════════════════════════════════════════════════════════════
#  COMMENTS
# ═══════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests/<request_id>/comments", methods=["GET"])
def list_comments(request_id):
    comments = comment_service.list_comments(request_id, current_auth().profile)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@request_bp.route("/requests/<request_id>/comments", methods=["POST"])
def add_comment(request_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    comment = comment_service.add_comment(request_id, current_auth().profile, data.get("content"))
    return jsonify(comment.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  ATTACHMENTS
# ═══════════════════════════════════════════════════════════════════════════

@request_bp.route("/attachments", methods=["POST"])
def upload_attachment():
    """Store one uploaded file under the caller's namespace."""
    store = get_store()
    ref = store.save(current_auth().profile_id, request.files.get("file"))
    return jsonify({"reference": ref, "name": store.display_name(ref)}), 201


@request_bp.route("/requests/<request_id>/attachments/<path:ref>", methods=["GET"])
def download_attachment(request_id, ref):
    req = request_lifecycle.get_request_for_viewer(request_id, current_auth().profile)
    if ref not in (req.attachments or []):
        raise NotFoundError(resource="Attachment", resource_id=ref)
    store = get_store()
    return send_file(store.resolve(ref), as_attachment=True, download_name=store.display_name(ref))
