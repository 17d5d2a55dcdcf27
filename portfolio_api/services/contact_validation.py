"""
Sanitization and validation of raw contact-form payloads.

Both functions are pure and framework independent: ``sanitize`` normalizes
untrusted text, ``validate`` reports every problem it finds instead of
stopping at the first one.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping

from pydantic import EmailStr, TypeAdapter, ValidationError

from portfolio_api.core.errors import FieldError
from portfolio_api.core.sanitizer import strip_markup

CONTACT_FIELDS = ("name", "email", "subject", "message")
MARKUP_FIELDS = ("name", "subject", "message")
# Single-line fields; both end up in mail headers
SINGLE_LINE_FIELDS = ("name", "subject")

NAME_MIN, NAME_MAX = 2, 100
EMAIL_MAX = 254
SUBJECT_MIN, SUBJECT_MAX = 5, 200
MESSAGE_MIN, MESSAGE_MAX = 10, 2000

# Letters (any script), spaces, hyphens and apostrophes; at least one letter
_NAME_PATTERN = re.compile(r"^(?=.*[^\W\d_])(?:[^\W\d_]|[ '\-])+$")

_email_adapter = TypeAdapter(EmailStr)


def sanitize(raw_payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Trim, strip markup and normalize the four contact fields.

    Whitespace runs in ``name`` and ``subject`` (line breaks included) become
    a single space.

    Values that are not strings are passed through untouched so that
    :func:`validate` can report them. Keys other than the contact fields are
    dropped.
    """
    cleaned: Dict[str, Any] = {}
    for field in CONTACT_FIELDS:
        if field not in raw_payload:
            continue
        value = raw_payload[field]
        if isinstance(value, str):
            if field in MARKUP_FIELDS:
                value = strip_markup(value)
            if field in SINGLE_LINE_FIELDS:
                value = " ".join(value.split())
            value = value.strip()
            if field == "email":
                value = value.lower()
        cleaned[field] = value
    return cleaned


def _length_error(label: str, value: str, low: int, high: int) -> List[FieldError]:
    if low <= len(value) <= high:
        return []
    return [
        FieldError(
            label.lower(), f"{label} must be between {low} and {high} characters"
        )
    ]


def _is_valid_email(value: str) -> bool:
    try:
        address = _email_adapter.validate_python(value)
    except ValidationError:
        return False
    # Display-name forms such as "Jane <jane@example.com>" parse to a bare address
    return address.lower() == value.lower()


def validate(payload: Any) -> List[FieldError]:
    """Return every field error for ``payload``; an empty list means valid."""
    if not isinstance(payload, Mapping):
        return [FieldError("body", "Request body must be a JSON object")]

    errors: List[FieldError] = []
    present: Dict[str, str] = {}
    for field in CONTACT_FIELDS:
        label = field.capitalize()
        if field not in payload or payload[field] is None:
            errors.append(FieldError(field, f"{label} is required"))
        elif not isinstance(payload[field], str):
            errors.append(FieldError(field, f"{label} must be a string"))
        else:
            present[field] = payload[field]

    if "name" in present:
        name = present["name"]
        errors.extend(_length_error("Name", name, NAME_MIN, NAME_MAX))
        if name and not _NAME_PATTERN.match(name):
            errors.append(
                FieldError(
                    "name",
                    "Name can only contain letters, spaces, hyphens, and apostrophes",
                )
            )

    if "email" in present:
        email = present["email"]
        if len(email) > EMAIL_MAX:
            errors.append(
                FieldError("email", f"Email must be at most {EMAIL_MAX} characters")
            )
        elif not _is_valid_email(email):
            errors.append(FieldError("email", "Please provide a valid email address"))

    if "subject" in present:
        errors.extend(
            _length_error("Subject", present["subject"], SUBJECT_MIN, SUBJECT_MAX)
        )

    if "message" in present:
        errors.extend(
            _length_error("Message", present["message"], MESSAGE_MIN, MESSAGE_MAX)
        )

    return errors
