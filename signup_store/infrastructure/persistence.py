"""
Local persistence for the customer table.

The table lives in a single UTF-8 CSV file (header row + data rows). Writes go
through `atomic_write`: the payload is written to a temporary file in the same
directory, flushed and fsynced, then renamed over the target, so a reader
never sees a half-written file and a crash mid-write leaves the previous file
intact.

Reads are strict: any decode error, CSV error, header mismatch or unparseable
row raises `CorruptionError`. `load_or_repair` turns that into a best-effort
salvage and rewrites the file with whatever rows survived.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import psutil
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from signup_store.config import Settings
from signup_store.domain.models import Record
from signup_store.domain.schema import CUSTOMER_SCHEMA, Schema
from signup_store.domain.table import DuplicateField, RecordTable, row_to_record
from signup_store.errors import CorruptionError, ResourceError, WriteError
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

ENCODING = "utf-8"
LINE_TERMINATOR = "\n"
# Upper bound on physical lines one salvaged row may span.
MAX_ROW_LINES = 10


def _parse_row(text: str) -> Optional[List[str]]:
    try:
        return next(csv.reader([text], strict=True))
    except (csv.Error, StopIteration):
        return None


def atomic_write(path: Path, chunks: Iterable[bytes]) -> int:
    """
    Write `chunks` to `path` via temp-file-then-rename.

    Returns the number of bytes written. The temporary file is removed when
    anything fails before the rename completes.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    tmp = tempfile.NamedTemporaryFile(
        "wb", dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            for chunk in chunks:
                tmp.write(chunk)
                written += len(chunk)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return written


class CsvPersistence:
    """
    Reads and writes a `RecordTable` to a CSV file with atomic replace.

    Parameters
    ----------
    path : Path
        Location of the table file.
    schema : Schema
        Expected header layout.
    min_free_bytes : int
        Minimum free space required in the target directory before a write.
    write_max_attempts : int
        Attempts for a failing write before `WriteError` is raised.
    write_retry_delay_seconds : float
        Fixed delay between write attempts.
    """

    def __init__(
        self,
        path: Path | str,
        schema: Schema = CUSTOMER_SCHEMA,
        min_free_bytes: int = 1_048_576,
        write_max_attempts: int = 3,
        write_retry_delay_seconds: float = 0.2,
    ) -> None:
        self.path = Path(path)
        self.schema = schema
        self.min_free_bytes = min_free_bytes
        self.write_max_attempts = max(1, write_max_attempts)
        self.write_retry_delay_seconds = write_retry_delay_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "CsvPersistence":
        return cls(
            settings.data_path,
            min_free_bytes=settings.min_free_bytes,
            write_max_attempts=settings.write_max_attempts,
            write_retry_delay_seconds=settings.write_retry_delay_seconds,
        )

    # -- serialization -------------------------------------------------

    def serialize(self, table: RecordTable) -> bytes:
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer, lineterminator=LINE_TERMINATOR)
        writer.writerows(table.to_rows())
        return buffer.getvalue().encode(ENCODING)

    def header_size(self) -> int:
        """Size in bytes of a file holding only the header row."""
        return len(self.serialize(RecordTable(schema=self.schema)))

    def parse(self, data: bytes) -> RecordTable:
        """Strictly parse file contents; raise `CorruptionError` on any defect."""
        try:
            text = data.decode(ENCODING)
        except UnicodeDecodeError as exc:
            raise CorruptionError(f"Table file is not valid {ENCODING}: {exc}") from exc
        if "\x00" in text:
            raise CorruptionError("Table file contains NUL bytes")

        try:
            rows = list(csv.reader(io.StringIO(text, newline=""), strict=True))
        except csv.Error as exc:
            raise CorruptionError(f"Table file is not valid CSV: {exc}") from exc

        if not rows:
            raise CorruptionError("Table file is empty")
        if not self.schema.validate_header(rows[0]):
            raise CorruptionError(f"Unexpected header: {rows[0]!r}")

        return RecordTable.load(rows, self.schema, strict=True)

    # -- file operations -----------------------------------------------

    def exists(self) -> bool:
        return self.path.is_file()

    def ensure_resources(self, expected_bytes: int = 0) -> None:
        """
        Fail fast with `ResourceError` when the write could not complete.
        """
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceError(f"Cannot create data directory {directory}: {exc}") from exc
        if not os.access(directory, os.W_OK):
            raise ResourceError(f"Data directory {directory} is not writable")
        if self.path.exists() and not os.access(self.path, os.W_OK):
            raise ResourceError(f"Table file {self.path} is not writable")

        free = psutil.disk_usage(str(directory)).free
        required = max(self.min_free_bytes, expected_bytes)
        if free < required:
            raise ResourceError(
                f"Insufficient disk space in {directory}: {free} bytes free, {required} required"
            )

    def write(self, table: RecordTable) -> int:
        """
        Persist `table` atomically, retrying transient I/O failures.

        Raises
        ------
        ResourceError
            When the resource guard fails (not retried).
        WriteError
            When every attempt failed.
        """
        self.ensure_resources(len(self.serialize(table)))
        written = 0
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.write_max_attempts),
                wait=wait_fixed(self.write_retry_delay_seconds),
                retry=retry_if_exception_type(OSError),
                before_sleep=before_sleep_log(log, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    written = atomic_write(self.path, [self.serialize(table)])
        except OSError as exc:
            raise WriteError(
                f"Writing {self.path} failed after {self.write_max_attempts} attempts: {exc}"
            ) from exc

        log.info(
            "[PERSIST] table written",
            extra={"path": str(self.path), "rows": len(table), "bytes": written},
        )
        return written

    def read(self) -> RecordTable:
        with self.path.open("rb") as f:
            data = f.read()
        return self.parse(data)

    def snapshot(self) -> bytes:
        with self.path.open("rb") as f:
            return f.read()

    def recover_corrupt(self) -> List[Record]:
        """
        Salvage every row that still parses into a plausible record.

        Works line by line on a lossy decode so a single bad byte or broken
        quote only costs the row it sits in. A line that leaves a quote open
        is joined with the following lines (up to `MAX_ROW_LINES`) so quoted
        fields holding newlines survive; if the joined text is still not a
        row, only the first line is given up. Rows that would break email or
        phone uniqueness are dropped (the first occurrence wins).
        """
        if not self.exists():
            return []
        with self.path.open("rb") as f:
            text = f.read().decode(ENCODING, errors="replace").replace("\x00", "")

        lines = text.split(LINE_TERMINATOR)
        salvaged = RecordTable(schema=self.schema)
        dropped = 0
        index = 0
        while index < len(lines):
            if not lines[index].strip():
                index += 1
                continue
            span = 1
            while (
                "\n".join(lines[index : index + span]).count('"') % 2
                and span < MAX_ROW_LINES
                and index + span < len(lines)
            ):
                span += 1
            row = _parse_row("\n".join(lines[index : index + span]))
            if row is None and span > 1:
                span = 1
                row = _parse_row(lines[index])
            index += span
            if row is None:
                dropped += 1
                continue
            if self.schema.validate_header(row):
                continue
            record = row_to_record(row, self.schema)
            if record is None or "@" not in record.email or not record.phone_key.isdigit():
                dropped += 1
                continue
            if salvaged.find_duplicate(record.email, record.phone) is not DuplicateField.NONE:
                dropped += 1
                continue
            salvaged = RecordTable(records=salvaged.records + (record,), schema=self.schema)

        log.warning(
            "[PERSIST] salvage finished",
            extra={"path": str(self.path), "salvaged": len(salvaged), "dropped": dropped},
        )
        return list(salvaged.records)

    def _backup_corrupt(self) -> Optional[Path]:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            shutil.copy2(self.path, backup)
        except OSError as exc:
            log.warning(
                "[PERSIST] could not back up corrupt file",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return None
        return backup

    def load_or_repair(self) -> RecordTable:
        """
        Load the table, initializing or repairing the file as needed.

        A missing file becomes an empty table with a valid header. A corrupt
        file is backed up, salvaged and rewritten; a failure while rewriting
        it propagates as a fatal error.
        """
        if not self.exists():
            log.info("[PERSIST] no local table, initializing empty", extra={"path": str(self.path)})
            table = RecordTable(schema=self.schema)
            self.write(table)
            return table

        try:
            return self.read()
        except CorruptionError as exc:
            log.warning(
                "[PERSIST] corrupt table, reinitializing from salvage",
                extra={"path": str(self.path), "reason": str(exc)},
            )

        salvaged = self.recover_corrupt()
        backup = self._backup_corrupt()
        table = RecordTable(records=tuple(salvaged), schema=self.schema)
        self.write(table)
        log.info(
            "[PERSIST] table recreated",
            extra={"path": str(self.path), "rows": len(table), "backup": str(backup) if backup else None},
        )
        return table


__all__ = ["CsvPersistence", "atomic_write", "ENCODING"]
