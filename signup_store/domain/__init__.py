"""
Domain package for the sign-up store.

Exports the record model, the fixed table schema and the immutable record
table. Keep this package free of I/O: persistence and sync live under
`signup_store.infrastructure`.
"""

from signup_store.domain.models import Record, normalize_email, normalize_phone
from signup_store.domain.schema import CUSTOMER_SCHEMA, Column, Schema
from signup_store.domain.table import DuplicateField, RecordTable

__all__ = [
    "CUSTOMER_SCHEMA",
    "Column",
    "DuplicateField",
    "Record",
    "RecordTable",
    "Schema",
    "normalize_email",
    "normalize_phone",
]
