from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import typer

from signup_store.config import get_settings
from signup_store.errors import SignupStoreError
from signup_store.reporter import print_records, print_sync_status
from signup_store.service import SignupService
from signup_store.utils.logging import configure_logging

app = typer.Typer(help="Promotional sign-up store CLI.")


def _service(start: bool = True) -> SignupService:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    service = SignupService.from_settings(settings)
    if start:
        service.start(background=False)
    return service


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"file={settings.data_path} | remote={settings.remote_backend}:"
        f"{settings.remote_folder}/{settings.remote_object_name} | "
        f"sync every {settings.sync_interval_seconds:g}s "
        f"(attempts={settings.sync_max_attempts}, lock timeout={settings.lock_timeout_seconds}s)"
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default from settings)."),
) -> None:
    """
    Run the HTTP server with the periodic sync timer.
    """
    from signup_store.web import create_app

    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    service = SignupService.from_settings(settings)
    service.start(background=True)
    try:
        create_app(service).run(
            host=host or settings.http_host,
            port=port or settings.http_port,
            threaded=True,
        )
    finally:
        service.stop()


@app.command()
def submit(
    name: str = typer.Argument(..., help="Customer name."),
    email: str = typer.Argument(..., help="Customer email."),
    phone: str = typer.Argument(..., help="10-digit phone number."),
) -> None:
    """
    Add one sign-up.
    """
    service = _service()
    try:
        result = service.submit(name, email, phone)
    finally:
        service.stop()
    if not result["ok"]:
        typer.echo(f"Duplicate {result['duplicate_field']}: one entry per customer.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Added {result['name']}.")
    if result["warning"]:
        typer.echo(result["warning"], err=True)


@app.command()
def delete(
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Email to remove."),
    phone: Optional[str] = typer.Option(None, "--phone", "-p", help="Phone to remove."),
) -> None:
    """
    Remove every record matching the email or the phone.
    """
    service = _service()
    try:
        result = service.delete(email=email, phone=phone)
    finally:
        service.stop()
    if not result["found"]:
        typer.echo("No matching record.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Removed {result['removed']} record(s).")
    if result["warning"]:
        typer.echo(result["warning"], err=True)


@app.command()
def prize(
    email: str = typer.Argument(..., help="Email of the winning customer."),
    value: str = typer.Argument(..., help="Prize to record."),
) -> None:
    """
    Record the prize won by a customer.
    """
    service = _service()
    try:
        result = service.update_prize(email, value)
    finally:
        service.stop()
    if not result["found"]:
        typer.echo("Email not found.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Prize saved for {email}.")
    if result["warning"]:
        typer.echo(result["warning"], err=True)


@app.command("list")
def list_records(
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
) -> None:
    """
    Show every stored sign-up.
    """
    service = _service()
    try:
        records = service.list_records()
    finally:
        service.stop()
    if as_json:
        typer.echo(json.dumps([record.model_dump() for record in records], indent=2))
        return
    print_records(records)


@app.command()
def export(
    output: Path = typer.Option(Path("customers.csv"), "--output", "-o", help="Destination file."),
) -> None:
    """
    Write a consistent snapshot of the data file.
    """
    service = _service()
    try:
        data = service.export_snapshot()
    finally:
        service.stop()
    output.write_bytes(data)
    typer.echo(f"Exported {len(data):,} bytes -> {output}")


@app.command()
def sync() -> None:
    """
    Upload the local table to the remote store.

    A fresh process has no record of pending changes, so the upload is
    always forced.
    """
    service = _service(start=False)
    report = service.sync(force=True)
    print_sync_status(service.status(), report)
    if report["error"]:
        raise typer.Exit(code=1)


@app.command()
def pull() -> None:
    """
    Replace the local table with the remote copy.
    """
    service = _service(start=False)
    outcome = service.pull()
    typer.echo(f"Download: {outcome}")


def main() -> None:
    try:
        app()
    except SignupStoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
