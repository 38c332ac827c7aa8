"""
Auth Blueprint — sign-up / sign-in / sign-out / password reset.

  POST /api/v1/auth/sign-up                 — create profile (and organization) → token
  POST /api/v1/auth/sign-in                 — email + password → token + landing route
  POST /api/v1/auth/sign-out                — revoke the current token
  GET  /api/v1/auth/me                      — current profile + landing route
  POST /api/v1/auth/password-reset          — email a reset link (always 200)
  POST /api/v1/auth/password-reset/confirm  — token + new password
"""

from flask import Blueprint, jsonify

from auditpack.auth import current_auth
from auditpack.services import auth_service, profile_service
from auditpack.utils.errors import E, api_error
from auditpack.utils.helpers import json_body

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/sign-up", methods=["POST"])
def sign_up():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    return jsonify(auth_service.sign_up(data)), 201


@auth_bp.route("/sign-in", methods=["POST"])
def sign_in():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    if not data.get("email") or not data.get("password"):
        return api_error(E.VALIDATION_REQUIRED, "email and password are required")
    return jsonify(auth_service.sign_in(data["email"], data["password"]))


@auth_bp.route("/sign-out", methods=["POST"])
def sign_out():
    auth_service.sign_out(current_auth().claims)
    return jsonify({"message": "Signed out"})


@auth_bp.route("/me", methods=["GET"])
def me():
    """Current profile with the department choices of its organization."""
    profile = current_auth().profile
    return jsonify({
        "profile": profile.to_dict(),
        "redirect": auth_service.landing_route(profile),
        "departments": profile_service.department_names_for(profile),
    })


@auth_bp.route("/password-reset", methods=["POST"])
def password_reset():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    auth_service.request_password_reset(data.get("email"))
    # Same answer whether or not the address exists
    return jsonify({"message": "If the address is registered, a reset link has been sent"})


@auth_bp.route("/password-reset/confirm", methods=["POST"])
def password_reset_confirm():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    auth_service.confirm_password_reset(data.get("token"), data.get("new_password"))
    return jsonify({"message": "Password updated, please sign in"})
