"""
In-memory customer table.

A `RecordTable` is an immutable, contiguous sequence of records. Mutations
return a new table, so a failed persist never leaves a half-applied change in
memory, and a delete is a filtered rebuild rather than an in-place removal.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from signup_store.domain.models import Record, normalize_email, normalize_phone
from signup_store.domain.schema import CUSTOMER_SCHEMA, Schema
from signup_store.errors import CorruptionError, DuplicateError
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "date", "prize"})


class DuplicateField(str, enum.Enum):
    NONE = "none"
    EMAIL = "email"
    PHONE = "phone"
    BOTH = "both"


def row_to_record(row: Sequence[object], schema: Schema) -> Optional[Record]:
    """
    Map a raw row onto a Record, or return None when a required field is
    empty or the row cannot be parsed.
    """
    fields = schema.field_names()
    values = {name: (row[index] if index < len(row) else None) for index, name in enumerate(fields)}
    for name in schema.required_fields():
        if values[name] is None or not str(values[name]).strip():
            return None
    try:
        return Record(**values)
    except PydanticValidationError:
        return None


@dataclass(frozen=True)
class RecordTable:
    records: Tuple[Record, ...] = ()
    schema: Schema = field(default=CUSTOMER_SCHEMA, compare=False)

    @classmethod
    def load(
        cls,
        raw_rows: Iterable[Sequence[object]],
        schema: Schema = CUSTOMER_SCHEMA,
        strict: bool = False,
    ) -> "RecordTable":
        """
        Build a table from raw rows, skipping the header and empty rows.

        Parameters
        ----------
        raw_rows : Iterable[Sequence[object]]
            Rows as read from storage, header first.
        schema : Schema
            Column layout of the rows.
        strict : bool
            When False, a row missing a required field is logged and dropped.
            When True, such a row or one repeating an earlier email or phone
            raises `CorruptionError`.
        """
        records = []
        emails: set[str] = set()
        phones: set[str] = set()
        for index, row in enumerate(raw_rows):
            if index == 0 and schema.validate_header(row):
                continue
            if not row:
                continue
            record = row_to_record(row, schema)
            if record is None and strict:
                raise CorruptionError(f"Row {index + 1} is missing required fields")
            if record is None:
                log.warning(
                    "[TABLE] dropping malformed row",
                    extra={"row_index": index, "cells": len(row)},
                )
                continue
            if strict:
                email_key, phone_key = normalize_email(record.email), normalize_phone(record.phone)
                if email_key in emails or phone_key in phones:
                    field_name = "email" if email_key in emails else "phone"
                    raise CorruptionError(f"Row {index + 1} duplicates an earlier {field_name}")
                emails.add(email_key)
                phones.add(phone_key)
            records.append(record)
        return cls(records=tuple(records), schema=schema)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def numbered(self) -> Iterator[Tuple[int, Record]]:
        """Yield (row_number, record) with contiguous 1-based numbering."""
        return enumerate(self.records, start=1)

    def to_rows(self) -> list[list[str]]:
        fields = self.schema.field_names()
        return [self.schema.header_row()] + [record.to_row(fields) for record in self.records]

    def find_duplicate(self, email: object, phone: object) -> DuplicateField:
        """
        Classify a candidate against every stored record.

        The whole table is scanned so that an email match on one record and a
        phone match on another still report `BOTH`.
        """
        email_key = normalize_email(email)
        phone_key = normalize_phone(phone)
        email_hit = phone_hit = False
        for record in self.records:
            if email_key and record.email_key == email_key:
                email_hit = True
            if phone_key and record.phone_key == phone_key:
                phone_hit = True
        if email_hit and phone_hit:
            return DuplicateField.BOTH
        if email_hit:
            return DuplicateField.EMAIL
        if phone_hit:
            return DuplicateField.PHONE
        return DuplicateField.NONE

    def insert(self, record: Record) -> "RecordTable":
        duplicate = self.find_duplicate(record.email, record.phone)
        if duplicate is not DuplicateField.NONE:
            raise DuplicateError(duplicate.value)
        return RecordTable(records=self.records + (record,), schema=self.schema)

    def delete_by_key(
        self, email: Optional[str] = None, phone: Optional[str] = None
    ) -> Tuple["RecordTable", bool]:
        """
        Remove every record matching the email OR the phone.

        Returns the rebuilt table and whether anything was removed; when
        nothing matches the same table instance is returned.
        """
        email_key = normalize_email(email)
        phone_key = normalize_phone(phone)
        if not email_key and not phone_key:
            raise ValueError("delete_by_key requires an email or a phone")

        kept = tuple(
            record
            for record in self.records
            if not (
                (email_key and record.email_key == email_key)
                or (phone_key and record.phone_key == phone_key)
            )
        )
        if len(kept) == len(self.records):
            return self, False
        return RecordTable(records=kept, schema=self.schema), True

    def update_field(self, match_email: str, field_name: str, value: str) -> Tuple["RecordTable", bool]:
        if field_name not in UPDATABLE_FIELDS:
            raise ValueError(f"Field '{field_name}' cannot be updated")
        email_key = normalize_email(match_email)
        for index, record in enumerate(self.records):
            if email_key and record.email_key == email_key:
                updated = record.model_copy(update={field_name: value.strip()})
                records = self.records[:index] + (updated,) + self.records[index + 1 :]
                return RecordTable(records=records, schema=self.schema), True
        return self, False


__all__ = ["DuplicateField", "RecordTable", "UPDATABLE_FIELDS", "row_to_record"]
