"""Command-line interface for allotsync."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

from allotsync import __version__


@click.group()
@click.version_option(version=__version__, prog_name="allotsync")
def main() -> None:
    """allotsync -- save allotment edits and mirror them into the spreadsheet of record."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _load(config_path: str | None) -> dict[str, Any]:
    from allotsync.config import load_config
    from allotsync.logging.events import set_log_dir

    try:
        config = load_config(Path(config_path) if config_path else None)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc))

    set_log_dir(
        config.get("log_dir"),
        fsync=bool(config.get("logging_fsync", False)),
        tail_bytes=config.get("logging_tail_bytes"),
    )
    return config


def _open_store(config: dict[str, Any]):
    from allotsync.errors import PersistenceError
    from allotsync.store import SqliteAllotmentStore

    url = config.get("database_url")
    if not url:
        raise click.ClickException(
            f"No database configured: set database_url or {config['database_url_env']}"
        )
    try:
        return SqliteAllotmentStore(url)
    except (PersistenceError, ValueError) as exc:
        raise click.ClickException(str(exc))


def _build_service(config: dict[str, Any]):
    from zoneinfo import ZoneInfoNotFoundError

    from allotsync.reconcile import AllotmentService
    from allotsync.sheets import build_sheets_writer

    store = _open_store(config)
    try:
        writer = build_sheets_writer(config)
    except ValueError as exc:
        raise click.ClickException(str(exc))
    sheet_timezone = config.get("sheet_timezone")
    link_date_min_length = int(config.get("link_date_min_length", 5))
    try:
        return AllotmentService(
            store,
            writer,
            config.get("spreadsheet_id"),
            sheet_timezone=sheet_timezone,
            link_date_min_length=link_date_min_length,
        )
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise click.ClickException(f"Invalid sheet_timezone {sheet_timezone!r}: {exc}")


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to allotsync.yaml.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--port", type=int, default=8000, help="Port to listen on.")
def serve(config_path: str | None, host: str, port: int) -> None:
    """Serve the update API."""
    import uvicorn

    from allotsync.server import create_app, header_identity

    config = _load(config_path)
    app = create_app(
        _build_service(config),
        identity_provider=header_identity(config["identity_header"]),
    )

    click.echo(f"Serving allotsync API at http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    except KeyboardInterrupt:
        click.echo("\nStopped.")


# ---------------------------------------------------------------------------
# Update / show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("allotment_id")
@click.option("--as", "caller", required=True, help="Email of the teacher making the change.")
@click.option("--video-link", default=None, help="New video link.")
@click.option("--error", "question_error", default=None, help="New 'question error identified' text.")
@click.option("--status", default=None, help="Explicit status (e.g. Pending, Completed).")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to allotsync.yaml.")
@click.pass_context
def update(
    ctx: click.Context,
    allotment_id: str,
    caller: str,
    video_link: str | None,
    question_error: str | None,
    status: str | None,
    config_path: str | None,
) -> None:
    """Update ALLOTMENT_ID and write the change back to the sheet.

    Exit code 0 on full success, 3 when saved but the sheet write-back
    did not happen, 1 on failure.
    """
    from allotsync.models import FieldChanges
    from allotsync.reconcile import UpdateFailure, UpdatePartialSuccess

    changes = FieldChanges(
        video_link=video_link,
        question_error_identified=question_error,
        status=status,
    )
    if changes.is_empty():
        raise click.UsageError("Nothing to update: pass --video-link, --error or --status.")

    config = _load(config_path)
    result = _build_service(config).apply_update(caller, allotment_id, changes)
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))

    if isinstance(result, UpdatePartialSuccess):
        click.echo(f"Warning: {result.warning}", err=True)
        ctx.exit(3)
    if isinstance(result, UpdateFailure):
        ctx.exit(1)


@main.command()
@click.argument("allotment_id")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to allotsync.yaml.")
def show(allotment_id: str, config_path: str | None) -> None:
    """Print the stored record for ALLOTMENT_ID."""
    from allotsync.errors import PersistenceError

    store = _open_store(_load(config_path))
    try:
        allotment = store.find_by_id(allotment_id)
    except PersistenceError as exc:
        raise click.ClickException(str(exc))
    if allotment is None:
        raise click.ClickException(f"Allotment not found: {allotment_id}")
    click.echo(json.dumps(allotment.to_wire(), indent=2))


# ---------------------------------------------------------------------------
# Column helper
# ---------------------------------------------------------------------------


@main.command("col")
@click.argument("value")
def col_cmd(value: str) -> None:
    """Convert a 0-based column index to letters, or letters to an index."""
    from allotsync.columns import col_letter_to_index, index_to_col_letter

    try:
        if value.isdigit():
            click.echo(index_to_col_letter(int(value)))
        else:
            click.echo(str(col_letter_to_index(value)))
    except ValueError as exc:
        raise click.ClickException(str(exc))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to allotsync.yaml.")
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--allotment", "allotment_id", default=None, help="Filter by allotment ID.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def events_cmd(
    config_path: str | None,
    level: str | None,
    event_type: str | None,
    allotment_id: str | None,
    limit: int,
    as_json: bool,
) -> None:
    """Show the structured event log."""
    from allotsync.logging.events import get_sink

    _load(config_path)
    sink = get_sink()
    events = sink.read_global(
        level=level,
        event_type=event_type,
        allotment_id=allotment_id,
        limit=limit,
    ) if sink is not None else []

    if as_json:
        click.echo(json.dumps(events, indent=2))
        return
    if not events:
        click.echo("No events found.")
        return
    for evt in events:
        code = f" [{evt['error_code']}]" if evt.get("error_code") else ""
        click.echo(f"{evt.get('ts', '')}  {evt.get('level', ''):7s}  {evt.get('event_type', '')}{code}  {evt.get('message', '')}")
