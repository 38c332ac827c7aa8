"""
AI Blueprint — compliance scoring.

  POST /api/v1/ai/score  — request form fields → {completeness_score, summary,
                           feedback, signature, scored_at, provider}

The signed result is what POST /requests and resubmission expect as
``ai_review``. Drafts are scored as-is (an incomplete form simply scores
low). Scoring never fails: an unavailable or misbehaving provider yields the
fallback result (score 0).
"""

import logging

from flask import Blueprint, jsonify

from auditpack.ai.compliance_scorer import score_request
from auditpack.auth import current_auth
from auditpack.utils.errors import E, api_error
from auditpack.utils.helpers import json_body

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai_bp", __name__, url_prefix="/api/v1/ai")


@ai_bp.route("/score", methods=["POST"])
def score():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body required")
    result = score_request(data)
    logger.info("Compliance score %s", result["completeness_score"],
                extra={"profile_id": current_auth().profile_id, "provider": result["provider"]})
    return jsonify(result)
