"""
Request payload validation tests.
"""

from datetime import date
from decimal import Decimal

import pytest

from auditpack.core.exceptions import ValidationError
from auditpack.services.request_validation import MAX_TITLE_LENGTH, parse_amount, validate_request_payload
from auditpack.utils.helpers import parse_bool, parse_date_input


class TestParseAmount:
    @pytest.mark.parametrize("raw,expected", [
        ("184.5", Decimal("184.50")),
        (" 12 ", Decimal("12.00")),
        (0, Decimal("0.00")),
        (19.999, Decimal("20.00")),
        ("0.005", Decimal("0.01")),
    ])
    def test_valid(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "  ", "abc", "-1", "NaN", "Infinity",
                                     float("inf"), True, "10000000000"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_amount(raw)


class TestParseDate:
    def test_formats(self):
        assert parse_date_input("2026-09-30") == date(2026, 9, 30)
        assert parse_date_input("2026-09-30T10:15:00") == date(2026, 9, 30)
        assert parse_date_input("30.09.2026") == date(2026, 9, 30)
        assert parse_date_input(None) is None

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_date_input("30/09/2026")

    def test_parse_bool(self):
        assert parse_bool("Yes") is True
        assert parse_bool("0") is False
        assert parse_bool(None, default=True) is True


class TestValidateRequestPayload:
    def test_clean_values(self, employee, request_fields):
        clean = validate_request_payload(employee, {**request_fields, "title": "  Taxi  ", "category": "Travel"})
        assert clean["title"] == "Taxi"
        assert clean["category"] == "travel"
        assert clean["custom_category"] is None
        assert clean["total_amount"] == Decimal("184.50")
        assert clean["audit_date"] == date(2026, 9, 30)
        assert clean["attachments"] == []

    def test_category_defaults_to_expense(self, employee, request_fields):
        fields = {k: v for k, v in request_fields.items() if k != "category"}
        assert validate_request_payload(employee, fields)["category"] == "expense"

    def test_other_needs_custom_category(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {**request_fields, "category": "other"})
        assert "custom_category" in exc.value.details

        clean = validate_request_payload(
            employee, {**request_fields, "category": "other", "custom_category": " Training "})
        assert clean["custom_category"] == "Training"

    def test_unknown_category(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {**request_fields, "category": "gifts"})
        assert "category" in exc.value.details

    def test_unknown_department(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {**request_fields, "department": "Legal"})
        assert "department" in exc.value.details

    def test_title_too_long(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {**request_fields, "title": "x" * (MAX_TITLE_LENGTH + 1)})
        assert "title" in exc.value.details

    def test_attachments_must_be_string_list(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {**request_fields, "attachments": "receipt.pdf"})
        assert "attachments" in exc.value.details

    def test_all_errors_reported_together(self, employee):
        with pytest.raises(ValidationError) as exc:
            validate_request_payload(employee, {"total_amount": "-3", "audit_date": "someday"})
        assert set(exc.value.details) >= {"title", "description", "department", "total_amount", "audit_date"}
