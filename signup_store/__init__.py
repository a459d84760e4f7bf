"""
Signup Store - durable promotional sign-up records with a remote mirror.

This package keeps a small customer table (name, email, phone, date, prize) in
a local CSV file and mirrors it to a remote object store:

- Duplicate-checked inserts, deletes by email or phone, prize updates
- Atomic local writes with corruption salvage and a free-space guard
- Upload/download with retry and a dirty flag for pending changes
- A FIFO-locked coordinator with a periodic sync timer

The package is designed to run behind a small threaded HTTP server or from the
command line, with structured logging and comprehensive testing.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from signup_store.config import Settings, get_settings
from signup_store.coordinator import Mutation, MutationOutcome, SyncCoordinator
from signup_store.domain import DuplicateField, Record, RecordTable
from signup_store.service import SignupService
from signup_store.utils.logging import configure_logging, get_logger
from signup_store.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "DuplicateField",
    "Record",
    "RecordTable",
    # Coordination
    "Mutation",
    "MutationOutcome",
    "SyncCoordinator",
    # Service
    "SignupService",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
