from datetime import date, datetime

from flask import jsonify

from app.errors import LibraryError, ValidationError


def json_error(message, code=400):
    return jsonify({"success": False, "message": message}), code


def error_response(e: LibraryError):
    return json_error(e.message, e.status_code)


def parse_date(value, field: str) -> date:
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        raise ValidationError(f"Invalid date format for {field}")


def parse_positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}")
    if number <= 0:
        raise ValidationError(f"Invalid {field}")
    return number
