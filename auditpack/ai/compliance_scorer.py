"""
Audit Pack
Compliance Scorer — LLM completeness review of a request before submission.

Flow:
    1. Client posts the form fields to /ai/score
    2. ``score_request`` asks the gateway for {completeness_score, summary, feedback}
    3. The normalised result is signed (HMAC-SHA256, app secret) over the
       canonical fields + score + summary + feedback
    4. Create / resubmit send the result back as ``ai_review``;
       ``verify_review`` recomputes the signature against the submitted
       fields, so a score computed for different content is refused.

``score_request`` never raises: any provider failure yields the fallback
result (score 0, explanatory summary), which is signed like any other.
"""

import hashlib
import hmac
import json
import logging
from datetime import date, datetime, timezone

from flask import current_app

from auditpack.ai.gateway import LLMError, LLMGateway, LLMUnavailableError
from auditpack.core.exceptions import ValidationError
from auditpack.models.request import SUMMARY_SEPARATOR
from auditpack.services.request_validation import parse_amount
from auditpack.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100
FALLBACK_SCORE = 0

SYSTEM_PROMPT = """You are a professional corporate auditor.
Analyse an internal expense / audit request for logical consistency and compliance.

Respond with a valid JSON object:
- "completeness_score": integer 0-100
- "summary": array of exactly 3 concise strings summarising the audit risk
- "feedback": array of strings with specific action items for the submitter

Criteria:
1. Date consistency: does the transaction date make sense for the title and category?
2. Document alignment: do the attachment names relate to the title and description?
3. Category logic: is the amount reasonable for the category?
4. Justification: is the business reason sufficient for an auditor to approve?"""


# ═══════════════════════════════════════════════════════════════
# Canonical input
# ═══════════════════════════════════════════════════════════════
def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ("" if value is None else str(value))


def build_scorer_input(fields: dict) -> dict:
    """
    Canonical scorer input from request-shaped fields.

    Accepts raw form values or cleaned ones (Decimal amount, date) and
    produces the same dict for both, so a score computed on the form
    verifies against the validated submission.
    """
    category = _text(fields.get("category")).lower() or "expense"
    custom = _text(fields.get("custom_category"))
    if category == "other" and custom:
        category = f"other: {custom}"

    amount_raw = fields.get("total_amount", fields.get("amount"))
    try:
        amount = f"{parse_amount(amount_raw)}"
    except ValueError:
        amount = _text(amount_raw)

    date_raw = fields.get("audit_date")
    try:
        audit_date = parse_date_input(date_raw).isoformat() if date_raw not in (None, "") else ""
    except (TypeError, ValueError):
        audit_date = date_raw.isoformat() if isinstance(date_raw, date) else _text(date_raw)

    attachments = fields.get("attachments") or []
    if not isinstance(attachments, list):
        attachments = [attachments]

    return {
        "title": _text(fields.get("title")),
        "category": category,
        "department": _text(fields.get("department")),
        "amount": amount,
        "description": _text(fields.get("description")),
        "audit_date": audit_date,
        "attachments": [_text(a) for a in attachments if _text(a)],
    }


# ═══════════════════════════════════════════════════════════════
# Normalisation & fallback
# ═══════════════════════════════════════════════════════════════
def _as_string_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def normalize_result(raw: dict) -> dict:
    """Clamp the score to 0..100 and coerce summary/feedback to string lists."""
    try:
        score = int(round(float(raw.get("completeness_score"))))
    except (TypeError, ValueError, OverflowError):
        score = FALLBACK_SCORE
    return {
        "completeness_score": max(SCORE_MIN, min(SCORE_MAX, score)),
        "summary": _as_string_list(raw.get("summary")),
        "feedback": _as_string_list(raw.get("feedback")),
    }


def fallback_result(reason: str) -> dict:
    return {
        "completeness_score": FALLBACK_SCORE,
        "summary": [f"AI analysis unavailable: {reason}"],
        "feedback": ["Submission can proceed; a reviewer will assess it manually."],
    }


# ═══════════════════════════════════════════════════════════════
# Signing
# ═══════════════════════════════════════════════════════════════
def _secret() -> bytes:
    return current_app.config["SECRET_KEY"].encode("utf-8")


def compute_signature(scorer_input: dict, result: dict) -> str:
    payload = json.dumps(
        {
            "input": scorer_input,
            "completeness_score": result["completeness_score"],
            "summary": result["summary"],
            "feedback": result["feedback"],
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hmac.new(_secret(), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _build_messages(scorer_input: dict) -> list:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": "Please evaluate this submission:\n"
                       + json.dumps(scorer_input, ensure_ascii=False, indent=2),
        },
    ]


# ═══════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════
def score_request(fields: dict, gateway: LLMGateway | None = None) -> dict:
    """
    Score request fields. Never raises.

    Returns:
        {completeness_score, summary, feedback, signature, scored_at, provider}
    """
    scorer_input = build_scorer_input(fields)
    provider = None
    try:
        gateway = gateway or LLMGateway.from_config(current_app.config)
        provider = gateway.provider_name
        response = gateway.chat(_build_messages(scorer_input), json_mode=True)
        raw = json.loads(response.get("content") or "")
        if not isinstance(raw, dict) or "completeness_score" not in raw:
            raise ValueError("response is not a score object")
        result = normalize_result(raw)
    except LLMUnavailableError as exc:
        logger.warning("Compliance scorer not configured: %s", exc, extra={"provider": provider})
        result = fallback_result("the AI service is not configured")
    except LLMError as exc:
        logger.error("Compliance scorer call failed: %s", exc, extra={"provider": provider})
        result = fallback_result("the AI service could not be reached")
    except (ValueError, TypeError, OverflowError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.error("Compliance scorer returned malformed output: %s", exc, extra={"provider": provider})
        result = fallback_result("the AI service returned an unreadable answer")

    result["signature"] = compute_signature(scorer_input, result)
    result["scored_at"] = datetime.now(timezone.utc).isoformat()
    result["provider"] = provider or "none"
    return result


def verify_review(ai_review, fields: dict) -> dict | None:
    """
    Check that ``ai_review`` was produced for exactly ``fields``.

    Returns the normalised review ({completeness_score, summary, feedback}),
    or None when no review was given and fresh scores are not required.

    Raises:
        ValidationError: on field ``ai_review`` when missing, malformed or
            signed for different content.
    """
    required = current_app.config.get("REQUIRE_FRESH_SCORE", True)
    if ai_review in (None, {}):
        if required:
            raise ValidationError(
                "Run the AI compliance review before submitting",
                details={"ai_review": "A compliance review of the current content is required"},
            )
        return None
    if not isinstance(ai_review, dict):
        raise ValidationError("Invalid AI review", details={"ai_review": "Must be the object returned by /ai/score"})

    review = normalize_result(ai_review)
    if required:
        expected = compute_signature(build_scorer_input(fields), review)
        signature = ai_review.get("signature")
        if not isinstance(signature, str) or not hmac.compare_digest(signature, expected):
            raise ValidationError(
                "AI review does not match the submitted content",
                details={"ai_review": "The request changed since it was scored; run the review again"},
            )
    return review


def apply_review(audit_request, review: dict | None) -> None:
    """Copy a verified review onto the request columns."""
    if review is None:
        return
    audit_request.ai_completeness_score = review["completeness_score"]
    audit_request.ai_summary = SUMMARY_SEPARATOR.join(review["summary"])
    audit_request.ai_feedback = list(review["feedback"])
