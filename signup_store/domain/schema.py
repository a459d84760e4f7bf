"""
Fixed column layout of the customer table.

The on-disk header must match this layout before any data row is trusted.
Validation is positional over the expected columns; extra trailing columns
are tolerated on read and dropped the next time the file is rewritten.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True)
class Column:
    label: str
    field: str
    required: bool = True


@dataclass(frozen=True)
class Schema:
    """Ordered columns plus the header validation rule."""

    columns: Tuple[Column, ...]

    def expected_columns(self) -> Tuple[str, ...]:
        return tuple(column.label for column in self.columns)

    def field_names(self) -> Tuple[str, ...]:
        return tuple(column.field for column in self.columns)

    def required_fields(self) -> Tuple[str, ...]:
        return tuple(column.field for column in self.columns if column.required)

    def header_row(self) -> list[str]:
        return list(self.expected_columns())

    def validate_header(self, actual: Sequence[object]) -> bool:
        """
        Return True iff `actual` starts with the expected column labels.

        Cells are compared after stripping surrounding whitespace. A header
        shorter than the expected set never validates.
        """
        expected = self.expected_columns()
        if len(actual) < len(expected):
            return False
        return all(
            str(cell if cell is not None else "").strip() == label
            for cell, label in zip(actual, expected)
        )


CUSTOMER_SCHEMA = Schema(
    columns=(
        Column("Name", "name"),
        Column("Email", "email"),
        Column("Phone", "phone"),
        Column("Date", "date", required=False),
        Column("Prize", "prize", required=False),
    )
)


__all__ = ["Column", "Schema", "CUSTOMER_SCHEMA"]
