"""
Domain models for the sign-up store.

`Record` is one customer submission as stored in the table. Stored values keep
the caller's formatting (trimmed); comparisons always go through the
normalizers below so duplicate checks ignore case, whitespace and phone
separators.
"""
from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

_WHITESPACE = re.compile(r"\s+")
_PHONE_SEPARATORS = re.compile(r"[-\s]")


def normalize_email(value: object) -> str:
    """Trim, lowercase and drop internal whitespace."""
    if value is None:
        return ""
    return _WHITESPACE.sub("", str(value).strip().lower())


def normalize_phone(value: object) -> str:
    """Trim and drop dashes and whitespace."""
    if value is None:
        return ""
    return _PHONE_SEPARATORS.sub("", str(value).strip())


class Record(BaseModel):
    """
    Representation of a single row in the customer table.
    """

    name: str = Field(..., min_length=1, description="Customer name.")
    email: str = Field(..., min_length=1, description="Contact email; natural key.")
    phone: str = Field(..., min_length=1, description="Contact phone; natural key.")
    date: str = Field("", description="ISO date of the submission.")
    prize: str = Field("", description="Prize attached after the spin.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "str_strip_whitespace": True,
    }

    @field_validator("name", "email", "phone", "date", "prize", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        # Spreadsheet tools hand back numbers for phone cells.
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @property
    def email_key(self) -> str:
        return normalize_email(self.email)

    @property
    def phone_key(self) -> str:
        return normalize_phone(self.phone)

    def to_row(self, fields: tuple[str, ...]) -> list[str]:
        return [getattr(self, name) for name in fields]


__all__ = ["Record", "normalize_email", "normalize_phone"]
