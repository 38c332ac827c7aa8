"""
Dashboard Blueprint.

  GET /api/v1/dashboard/stats  — aggregates over the requests the caller can see
"""

from flask import Blueprint, jsonify

from auditpack.auth import current_auth
from auditpack.services.dashboard_service import get_dashboard_stats

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1/dashboard")


@dashboard_bp.route("/stats", methods=["GET"])
def stats():
    return jsonify(get_dashboard_stats(current_auth().profile))
