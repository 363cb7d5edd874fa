"""Input validation for registration, password reset and DNC queries."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .errors import ValidationError
from .models import LookupQuery, PhoneNumber

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 100
MIN_PASSWORD_LENGTH = 8
LOOKUP_DATE_FORMAT = "%m/%d/%Y"

PHONE_REQUIRED = "A valid 10-digit US phone number is required"
DATE_REQUIRED = "Lookup date is required"
DATE_INVALID = "Lookup date must be in MM/DD/YYYY format"
EMAIL_REQUIRED = "Email address is required"
EMAIL_INVALID = "Please enter a valid email address"
REGISTRATION_FIELDS_REQUIRED = "Username, email, and password are required"
NULL_CHARACTER = "Username and password must not contain null characters"

_NON_DIGITS = re.compile(r"[^0-9]")
_DATE_SHAPE = re.compile(r"^[0-9]{2}/[0-9]{2}/[0-9]{4}$")


def normalize_phone(value: Optional[str]) -> PhoneNumber:
    """Strip every non-digit character and require exactly ten digits.

    No other normalisation happens: area-code validity is not checked and
    the number is not converted to E.164.
    """

    digits = _NON_DIGITS.sub("", value or "")
    if len(digits) != 10:
        raise ValidationError(PHONE_REQUIRED)
    return PhoneNumber(digits)


def parse_lookup_date(value: Optional[str]) -> date:
    """Parse ``MM/DD/YYYY`` into a real calendar date."""

    if not value or not value.strip():
        raise ValidationError(DATE_REQUIRED)
    cleaned = value.strip()
    if not _DATE_SHAPE.match(cleaned):
        raise ValidationError(DATE_INVALID)
    try:
        return datetime.strptime(cleaned, LOOKUP_DATE_FORMAT).date()
    except ValueError as exc:
        raise ValidationError(DATE_INVALID) from exc


def validate_lookup_query(
    phone_number: Optional[str],
    lookup_date: Optional[str] = None,
    *,
    require_date: bool = True,
) -> LookupQuery:
    """Validate a lookup (``require_date``) or history query.

    The phone number is checked first, so a request with both fields wrong
    reports the phone number.
    """

    phone = normalize_phone(phone_number)
    parsed_date = parse_lookup_date(lookup_date) if require_date else None
    return LookupQuery(phone=phone, lookup_date=parsed_date)


def _looks_like_email(email: str) -> bool:
    return "@" in email and "." in email and "\x00" not in email


def normalize_email(value: Optional[str]) -> str:
    email = (value or "").strip().lower()
    if not email:
        raise ValidationError(EMAIL_REQUIRED)
    if not _looks_like_email(email):
        raise ValidationError(EMAIL_INVALID)
    return email


@dataclass(frozen=True)
class Registration:
    username: str
    email: str
    password: str


def validate_registration(
    username: Optional[str],
    email: Optional[str],
    password: Optional[str],
) -> Registration:
    """Check a registration request, reporting the first problem found."""

    if not username or not email or not password:
        raise ValidationError(REGISTRATION_FIELDS_REQUIRED)

    trimmed_username = username.strip()
    trimmed_email = email.strip().lower()

    if len(trimmed_username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    if len(trimmed_username) > MAX_USERNAME_LENGTH:
        raise ValidationError("Username is too long")
    if not _looks_like_email(trimmed_email):
        raise ValidationError(EMAIL_INVALID)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if "\x00" in trimmed_username or "\x00" in password:
        raise ValidationError(NULL_CHARACTER)

    return Registration(username=trimmed_username, email=trimmed_email, password=password)


__all__ = [
    "DATE_INVALID",
    "DATE_REQUIRED",
    "EMAIL_INVALID",
    "EMAIL_REQUIRED",
    "MAX_USERNAME_LENGTH",
    "MIN_PASSWORD_LENGTH",
    "MIN_USERNAME_LENGTH",
    "NULL_CHARACTER",
    "PHONE_REQUIRED",
    "REGISTRATION_FIELDS_REQUIRED",
    "Registration",
    "normalize_email",
    "normalize_phone",
    "parse_lookup_date",
    "validate_lookup_query",
    "validate_registration",
]
