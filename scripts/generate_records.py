"""
Synthetic sign-up generator for the sign-up store.

Implements deterministic pseudo-random record generation written as a canonical
table file, and optional loading through the service so every record goes
through validation, duplicate checks and the remote sync.
"""

from __future__ import annotations

import random
import sys
import time
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

import typer

from signup_store.config import get_settings
from signup_store.domain.models import Record
from signup_store.domain.table import RecordTable
from signup_store.infrastructure.persistence import CsvPersistence
from signup_store.service import SignupService
from signup_store.utils.logging import configure_logging

app = typer.Typer(help="Generate synthetic sign-ups as a CSV table (optionally load them).")

FIRST_NAMES = ["Ann", "Ben", "Chloe", "Dev", "Elif", "Farah", "Gus", "Hana", "Ivo", "Jun"]
LAST_NAMES = ["Ng", "Okafor", "Patel", "Quinn", "Rossi", "Silva", "Tan", "Usman", "Vos", "Wu"]
DOMAINS = ["example.com", "example.org", "mail.test"]
PRIZES = ["Free Dip", "Free Cookie", "Free Can", "Free Chipsbag"]
BASE_DATE = date(2024, 1, 1)


def generate_records(rows: int, seed: int, prize_ratio: float = 0.5) -> List[Record]:
    """
    Build `rows` distinct records; the same seed always yields the same list.

    Emails and phones embed the row index so no two records collide.
    """
    rng = random.Random(seed)
    records: List[Record] = []
    for index in range(rows):
        first = rng.choice(FIRST_NAMES)
        last = rng.choice(LAST_NAMES)
        day = BASE_DATE + timedelta(days=rng.randint(0, 364))
        prize = rng.choice(PRIZES) if rng.random() < prize_ratio else ""
        records.append(
            Record(
                name=f"{first} {last}",
                email=f"{first}.{last}.{index}@{rng.choice(DOMAINS)}".lower(),
                phone=f"{5_550_000_000 + index:010d}",
                date=day.isoformat(),
                prize=prize,
            )
        )
    return records


def write_table(path: Path, records: List[Record]) -> int:
    persistence = CsvPersistence(path)
    persistence.write(RecordTable(records=tuple(records)))
    return path.stat().st_size


@app.command()
def main(
    rows: int = typer.Option(
        100,
        "--rows",
        "-r",
        help="Number of records to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="CSV output path (defaults to <DATA_DIR>/generated.csv).",
    ),
    load: bool = typer.Option(
        False,
        "--load",
        help="Also submit every record through the service (local file + remote sync).",
    ),
) -> None:
    """
    Generate synthetic sign-ups and optionally load them through the service.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    csv_path = output or settings.data_dir / "generated.csv"

    start = time.perf_counter()
    typer.echo(f"Generating {rows:,} records -> {csv_path} (seed={seed})")
    records = generate_records(rows, seed=seed)
    size = write_table(csv_path, records)
    typer.echo(f"Wrote {size:,} bytes in {time.perf_counter() - start:.2f}s")

    if not load:
        return

    service = SignupService.from_settings(settings)
    service.start(background=False)
    accepted = duplicates = 0
    try:
        for record in records:
            result = service.submit(record.name, record.email, record.phone)
            if result["ok"]:
                accepted += 1
            else:
                duplicates += 1
    finally:
        service.stop()
    typer.echo(f"Loaded {accepted:,} records ({duplicates:,} duplicates skipped).")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
