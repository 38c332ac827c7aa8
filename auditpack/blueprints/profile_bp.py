"""
Profile, administration and department endpoints.

Self-service:
  PUT   /api/v1/profile                      — update own full name
  PUT   /api/v1/profile/department           — pick own department
  PUT   /api/v1/profile/password             — change own password

Administration (admin, own organization):
  GET   /api/v1/admin/profiles               — ?role=&status=&q=
  PATCH /api/v1/admin/profiles/<id>          — role / department
  POST  /api/v1/admin/profiles/<id>/suspend
  POST  /api/v1/admin/profiles/<id>/activate

Departments:
  GET   /api/v1/departments
  POST  /api/v1/departments                  — admin
"""

from flask import Blueprint, jsonify, request

from auditpack.auth import current_auth
from auditpack.models.auth import STATUS_ACTIVE, STATUS_SUSPENDED
from auditpack.services import auth_service, profile_service
from auditpack.utils.errors import E, api_error
from auditpack.utils.helpers import json_body

profile_bp = Blueprint("profile_bp", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  SELF-SERVICE
# ═══════════════════════════════════════════════════════════════════════════

@profile_bp.route("/profile", methods=["PUT"])
def update_profile():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = profile_service.update_own_profile(current_auth().profile, data)
    return jsonify(profile.to_dict())


@profile_bp.route("/profile/department", methods=["PUT"])
def select_department():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = profile_service.select_department(current_auth().profile, data.get("department"))
    return jsonify({"profile": profile.to_dict(), "redirect": auth_service.landing_route(profile)})


@profile_bp.route("/profile/password", methods=["PUT"])
def change_password():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile_service.change_password(
        current_auth().profile, data.get("current_password"), data.get("new_password"),
    )
    return jsonify({"message": "Password updated"})


# ═══════════════════════════════════════════════════════════════════════════
#  ADMINISTRATION
# ═══════════════════════════════════════════════════════════════════════════

@profile_bp.route("/admin/profiles", methods=["GET"])
def list_profiles():
    profiles = profile_service.list_profiles(
        current_auth().profile,
        role=request.args.get("role"),
        status=request.args.get("status"),
        q=request.args.get("q"),
    )
    return jsonify({"items": [p.to_dict() for p in profiles], "total": len(profiles)})


@profile_bp.route("/admin/profiles/<profile_id>", methods=["PATCH"])
def update_managed_profile(profile_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    profile = profile_service.admin_update_profile(current_auth().profile, profile_id, data)
    return jsonify(profile.to_dict())


@profile_bp.route("/admin/profiles/<profile_id>/suspend", methods=["POST"])
def suspend_profile(profile_id):
    profile = profile_service.set_profile_status(current_auth().profile, profile_id, STATUS_SUSPENDED)
    return jsonify(profile.to_dict())


@profile_bp.route("/admin/profiles/<profile_id>/activate", methods=["POST"])
def activate_profile(profile_id):
    profile = profile_service.set_profile_status(current_auth().profile, profile_id, STATUS_ACTIVE)
    return jsonify(profile.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  DEPARTMENTS
# ═══════════════════════════════════════════════════════════════════════════

@profile_bp.route("/departments", methods=["GET"])
def list_departments():
    departments = profile_service.list_departments(current_auth().profile)
    return jsonify({"items": [d.to_dict() for d in departments]})


@profile_bp.route("/departments", methods=["POST"])
def create_department():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    department = profile_service.create_department(current_auth().profile, data.get("name"))
    return jsonify(department.to_dict()), 201
