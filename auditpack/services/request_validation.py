"""
Request payload validation.

``validate_request_payload`` checks every field and reports all problems at
once as a ``ValidationError`` whose ``details`` maps field → message.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from auditpack.core.exceptions import ValidationError
from auditpack.models.auth import Profile
from auditpack.models.request import REQUEST_CATEGORIES
from auditpack.services.profile_service import department_names_for
from auditpack.utils.helpers import parse_date_input

MAX_TITLE_LENGTH = 200
MAX_CUSTOM_CATEGORY_LENGTH = 120
MAX_AMOUNT = Decimal("9999999999.99")
DEFAULT_CATEGORY = "expense"

# Fields a submission may carry; anything else in the payload is ignored
REQUEST_FIELDS = (
    "title", "category", "custom_category", "department",
    "description", "total_amount", "audit_date", "attachments",
)


def parse_amount(value) -> Decimal:
    """Parse a non-negative, finite amount rounded to 2 decimals.

    Raises ValueError with a user-facing message.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValueError("Amount is required")
    try:
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("Amount must be a finite number")
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    if amount < 0:
        raise ValueError("Amount must not be negative")
    if amount > MAX_AMOUNT:
        raise ValueError("Amount is too large")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_request_payload(actor: Profile, data: dict) -> dict:
    """
    Return the cleaned field values of a full create/edit payload.

    Edits merge the changed keys over the stored request first, so both
    paths validate a complete set of fields.
    """
    errors: dict[str, str] = {}
    clean: dict = {}

    for key in ("title", "description"):
        value = data.get(key)
        value = value.strip() if isinstance(value, str) else ""
        if not value:
            errors[key] = f"{key.capitalize()} is required"
        else:
            clean[key] = value
    if "title" in clean and len(clean["title"]) > MAX_TITLE_LENGTH:
        errors["title"] = f"Title must be at most {MAX_TITLE_LENGTH} characters"
        del clean["title"]

    department = data.get("department")
    department = department.strip() if isinstance(department, str) else ""
    allowed = department_names_for(actor)
    if not department:
        errors["department"] = "Department is required"
    elif allowed and department not in allowed:
        errors["department"] = f"Unknown department '{department}'"
    else:
        clean["department"] = department

    try:
        clean["total_amount"] = parse_amount(data.get("total_amount"))
    except ValueError as exc:
        errors["total_amount"] = str(exc)

    raw_date = data.get("audit_date")
    if raw_date in (None, ""):
        errors["audit_date"] = "Date is required"
    else:
        try:
            clean["audit_date"] = parse_date_input(raw_date)
        except (TypeError, ValueError) as exc:
            errors["audit_date"] = str(exc)

    category = data.get("category") or DEFAULT_CATEGORY
    category = category.strip().lower() if isinstance(category, str) else ""
    custom = data.get("custom_category")
    custom = custom.strip() if isinstance(custom, str) else ""
    if category not in REQUEST_CATEGORIES:
        errors["category"] = f"Category must be one of: {', '.join(REQUEST_CATEGORIES)}"
    elif category == "other" and not custom:
        errors["custom_category"] = "Please specify the category"
    elif category == "other" and len(custom) > MAX_CUSTOM_CATEGORY_LENGTH:
        errors["custom_category"] = "Category name is too long"
    else:
        clean["category"] = category
        clean["custom_category"] = custom if category == "other" else None

    attachments = data.get("attachments")
    if attachments is None:
        clean["attachments"] = []
    elif not isinstance(attachments, list) or not all(isinstance(a, str) and a.strip() for a in attachments):
        errors["attachments"] = "Attachments must be a list of storage references"
    else:
        clean["attachments"] = [a.strip() for a in attachments]

    if errors:
        raise ValidationError("Invalid request", details=errors)
    return clean
