"""Shared utility functions for blueprints and services.

json_body:         JSON object body of the current request, or None
parse_date_input:  raises ValueError on bad input (callers map to field errors)
parse_bool:        tolerant truthy parsing for query strings / env values
"""
from datetime import date, datetime

from flask import request


def json_body():
    """Return the request's JSON object, or None when the body is not one."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_bool(value, default=False):
    """Interpret "1/true/yes/on" (any case) as True; None falls back to default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
