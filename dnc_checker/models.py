"""Domain models for accounts and DNC lookups."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Sequence, Union

PHONE_MASK_PREFIX = "***-***-"

_NON_DIGITS = re.compile(r"[^0-9]")


def mask_phone(value: object) -> str:
    """Render any phone representation as ``***-***-`` plus its last four digits."""

    digits = _NON_DIGITS.sub("", str(value))
    return f"{PHONE_MASK_PREFIX}{digits[-4:]}"


@dataclass(frozen=True)
class User:
    """Represents a row of the ``users`` table, including the password hash."""

    id: int
    username: str
    email: str
    password_hash: str = field(repr=False)
    is_active: bool
    created_at: datetime

    def identity(self) -> "Identity":
        return Identity(id=self.id, username=self.username, email=self.email)


@dataclass(frozen=True)
class Identity:
    """The minimal view of an authenticated user handed back to callers."""

    id: int
    username: str
    email: str

    def as_dict(self) -> Dict[str, object]:
        return {"id": self.id, "username": self.username, "email": self.email}


@dataclass(frozen=True)
class PhoneNumber:
    """Exactly ten digits of a US phone number.

    ``str()`` and ``repr()`` both render the masked form so that a phone
    number passed to a logger can never be written out in full. Use
    :attr:`digits` to obtain the raw value for the decision service.
    """

    digits: str

    def __post_init__(self) -> None:
        if len(self.digits) != 10 or not self.digits.isascii() or not self.digits.isdigit():
            raise ValueError("PhoneNumber requires exactly ten digits")

    @property
    def masked(self) -> str:
        return mask_phone(self.digits)

    def __str__(self) -> str:
        return self.masked

    def __repr__(self) -> str:
        return f"PhoneNumber({self.masked!r})"


@dataclass(frozen=True)
class LookupQuery:
    phone: PhoneNumber
    lookup_date: Optional[date] = None


ResultValue = Union[str, int, float, bool, None, datetime, date]
ResultRow = Dict[str, ResultValue]


def to_result_value(value: Any) -> ResultValue:
    """Coerce a driver value into the closed set of scalar kinds rows may carry."""

    if value is None or isinstance(value, (str, bool, int, float, datetime, date)):
        return value
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeError(f"Unsupported result value of type {type(value).__name__}")


def to_result_row(columns: Sequence[str], values: Iterable[Any]) -> ResultRow:
    """Pair column names with values, preserving the column order."""

    row: ResultRow = {}
    for column, value in zip(columns, values):
        row[str(column)] = to_result_value(value)
    return row


__all__ = [
    "Identity",
    "LookupQuery",
    "PHONE_MASK_PREFIX",
    "PhoneNumber",
    "ResultRow",
    "ResultValue",
    "User",
    "mask_phone",
    "to_result_row",
    "to_result_value",
]
