#!/usr/bin/env python3
"""
Command-line interface for the Audit Recovery Toolkit.

Operator tooling for the operation log, deleted items and stale record
cleanup. The CLI acts with admin privileges against the configured store.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .admin import Actor, AdminService
from .config import get_config
from .exceptions import RecoveryError, RetentionWindowError
from .store import DocumentStore, SQLDocumentStore, get_document_store
from .time_utils import utcnow

console = Console()

AdminCall = Callable[[AdminService, Actor], Awaitable[Dict[str, Any]]]


def setup_logging(level: str) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def run_admin(ctx: click.Context, call: AdminCall) -> Dict[str, Any]:
    """
    Run one admin call against the configured store.

    A store placed in ``ctx.obj["store"]`` is used as is; otherwise one is
    built from configuration, initialized and closed afterwards.
    """
    obj = ctx.ensure_object(dict)
    actor = Actor(id=obj.get("actor", "cli"), is_privileged=True)

    async def _run() -> Dict[str, Any]:
        store: Optional[DocumentStore] = obj.get("store")
        owned = store is None
        if store is None:
            store = get_document_store()
            await store.initialize()
        try:
            admin = AdminService.from_store(store, clock=obj.get("clock") or utcnow)
            return await call(admin, actor)
        finally:
            if owned and isinstance(store, SQLDocumentStore):
                await store.close()

    try:
        return asyncio.run(_run())
    except RetentionWindowError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)
    except (RecoveryError, PermissionError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _format_time(value: Any) -> str:
    if not value:
        return "-"
    return str(value).replace("T", " ")[:19]


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--actor",
    envvar="RECOVERY_ACTOR",
    default="cli",
    show_default=True,
    help="Actor id recorded in the operation log",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, actor: str, log_level: Optional[str]) -> None:
    """Audit Recovery Toolkit - operation log, soft delete and cleanup tools."""
    obj = ctx.ensure_object(dict)
    obj.setdefault("actor", actor)
    setup_logging((log_level or get_config().log_level).upper())

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Audit Recovery Toolkit[/bold blue] v{__version__}\n"
                "[dim]Operation log, soft delete and cleanup tools[/dim]\n\n"
                "Use [bold]recovery --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        import yaml  # type: ignore[import-untyped]

        console.print(yaml.safe_dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="Recovery Configuration", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        categories = {
            "General": ["application_name", "environment", "log_level"],
            "Store": [
                "storage_backend",
                "database_url",
                "store_batch_size",
                "store_timeout_seconds",
            ],
            "Operation Log": [
                "log_collection",
                "log_retention_days",
                "default_list_limit",
                "max_list_limit",
            ],
            "Soft Delete": [
                "soft_delete_collections",
                "permanent_delete_grace_days",
                "log_permanent_deletes",
            ],
            "Cleanup": ["cleanup_date_fields", "slot_collections"],
        }

        for category, settings in categories.items():
            table.add_row(f"[bold]{category}[/bold]", "")
            for setting in settings:
                value = config_dict.get(setting)
                if value is None:
                    value = "[dim]Not configured[/dim]"
                elif isinstance(value, bool):
                    value = "✓" if value else "✗"
                elif isinstance(value, (list, dict)):
                    value = json.dumps(value)
                table.add_row(f"  {setting}", str(value))

        console.print(table)


@cli.group()
def logs() -> None:
    """Operation log history, restore and purge."""
    pass


@logs.command("list")
@click.option("--collection", help="Filter by target collection")
@click.option(
    "--type",
    "operation_type",
    type=click.Choice(["create", "update", "delete"]),
    help="Filter by operation type",
)
@click.option("--doc-id", help="Filter by target document id")
@click.option("--operated-by", help="Filter by actor")
@click.option("--limit", type=int, default=50, help="Maximum results to return")
@click.option("--cursor", help="Cursor from a previous page")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
def logs_list(
    ctx: click.Context,
    collection: Optional[str],
    operation_type: Optional[str],
    doc_id: Optional[str],
    operated_by: Optional[str],
    limit: int,
    cursor: Optional[str],
    format: str,
) -> None:
    """List operation log entries, newest first."""
    payload = {
        "collection": collection,
        "operationType": operation_type,
        "docId": doc_id,
        "operatedBy": operated_by,
        "limit": limit,
        "cursor": cursor,
    }
    result = run_admin(ctx, lambda admin, actor: admin.list_logs(actor, payload))
    items = result["items"]

    if format == "json":
        _print_json(result)
        return

    if not items:
        console.print(
            "[yellow]No operation log entries found matching criteria[/yellow]"
        )
        return

    table = Table(title=f"Operation Log (showing {len(items)})")
    table.add_column("Id", style="dim")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Type", style="yellow")
    table.add_column("Target", style="blue")
    table.add_column("By", style="green")
    table.add_column("Description")

    colors = {"create": "green", "update": "yellow", "delete": "red"}
    for item in items:
        op = item["operationType"]
        table.add_row(
            item["id"],
            _format_time(item["timestamp"]),
            f"[{colors.get(op, 'white')}]{op}[/{colors.get(op, 'white')}]",
            f"{item['targetCollection']}/{item['targetDocId']}",
            item["operatedBy"],
            item.get("description") or "",
        )
    console.print(table)
    if result["nextCursor"]:
        console.print(f"[dim]Next page: --cursor {result['nextCursor']}[/dim]")


@logs.command("show")
@click.argument("entry_id")
@click.pass_context
def logs_show(ctx: click.Context, entry_id: str) -> None:
    """Show a single log entry with its snapshots."""

    async def _show(admin: AdminService, actor: Actor) -> Dict[str, Any]:
        entry = await admin.log_store.get(entry_id)
        return entry.model_dump(by_alias=True, mode="json") if entry else {}

    data = run_admin(ctx, _show)
    if not data:
        console.print(f"[red]Error: log entry {entry_id} not found[/red]")
        sys.exit(1)
    _print_json(data)


@logs.command("preview")
@click.argument("entry_id")
@click.pass_context
def logs_preview(ctx: click.Context, entry_id: str) -> None:
    """Show what restoring a log entry would change."""
    preview = run_admin(
        ctx,
        lambda admin, actor: admin.preview_restore(actor, {"logEntryId": entry_id}),
    )
    target = f"{preview['targetCollection']}/{preview['targetDocId']}"

    lines = [f"[bold]Restore preview[/bold] for {target}"]
    if not preview["restorable"]:
        lines.append(f"[red]Not restorable: {preview['reason']}[/red]")
    if not preview["targetExists"]:
        lines.append("[yellow]Document does not exist and will be recreated[/yellow]")
    if preview["modifiedSinceEntry"]:
        lines.append(
            "[yellow]⚠ Document was modified after this entry; "
            "restoring overwrites those changes[/yellow]"
        )
    for label, key, color in (
        ("Added", "added", "green"),
        ("Removed", "removed", "red"),
        ("Changed", "changed", "yellow"),
    ):
        if preview[key]:
            lines.append(f"{label}: [{color}]{', '.join(preview[key])}[/{color}]")

    console.print(Panel.fit("\n".join(lines), border_style="blue"))


@logs.command("restore")
@click.argument("entry_id")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def logs_restore(ctx: click.Context, entry_id: str, yes: bool) -> None:
    """Overwrite a document with the snapshot from a log entry."""
    if not yes:
        click.confirm(
            f"Restore the document recorded in log entry {entry_id}? "
            "Any later changes will be overwritten",
            abort=True,
        )
    result = run_admin(
        ctx,
        lambda admin, actor: admin.restore_from_log(actor, {"logEntryId": entry_id}),
    )
    console.print(f"[green]✓[/green] Restored document {result['restoredDocId']}")


@logs.command("purge")
@click.option(
    "--older-than-days",
    type=int,
    help="Delete entries older than this many days (e.g. 30, 90, 180) "
    "instead of expired entries",
)
@click.pass_context
def logs_purge(ctx: click.Context, older_than_days: Optional[int]) -> None:
    """Delete expired operation log entries."""
    if older_than_days is None:
        result = run_admin(ctx, lambda admin, actor: admin.purge_expired_logs(actor))
        console.print(
            f"[green]✓[/green] Purged {result['deletedCount']} expired log entries"
        )
    else:
        result = run_admin(
            ctx,
            lambda admin, actor: admin.purge_logs_by_retention(
                actor, {"retentionDays": older_than_days}
            ),
        )
        console.print(
            f"[green]✓[/green] Purged {result['deletedCount']} log entries older "
            f"than {older_than_days} days"
        )


@logs.command("export")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
@click.option("--collection", help="Filter by target collection")
@click.option("--max-entries", type=int, default=5000, help="Stop after this many")
@click.pass_context
def logs_export(
    ctx: click.Context,
    output: str,
    format: str,
    collection: Optional[str],
    max_entries: int,
) -> None:
    """Export operation log entries for offline review."""

    async def _collect(admin: AdminService, actor: Actor) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = []
        cursor = None
        while len(items) < max_entries:
            page = await admin.list_logs(
                actor,
                {
                    "collection": collection,
                    "limit": min(
                        admin.log_store.max_list_limit, max_entries - len(items)
                    ),
                    "cursor": cursor,
                },
            )
            items.extend(page["items"])
            cursor = page["nextCursor"]
            if not cursor:
                break
        return {"items": items}

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting operation log...", total=None)
        items = run_admin(ctx, _collect)["items"]
        progress.update(task, description=f"Found {len(items)} entries, exporting...")

        # Snapshots are nested; keep them as JSON text in tabular formats
        rows = [
            {
                **item,
                "beforeData": json.dumps(item.get("beforeData"), default=str),
                "afterData": json.dumps(item.get("afterData"), default=str),
            }
            for item in items
        ]
        df = pd.DataFrame(rows)

        output_path = Path(output)
        try:
            if format == "json":
                output_path.write_text(json.dumps(items, indent=2, default=str))
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:  # csv
                df.to_csv(output_path, index=False)
        except OSError as e:
            progress.stop()
            console.print(f"[red]Error exporting operation log: {e}[/red]")
            sys.exit(1)

        progress.stop()
    console.print(
        f"[green]✓ Exported {len(items)} log entries to {output_path}[/green]"
    )


@cli.group()
def deleted() -> None:
    """Soft-deleted items: list, restore and permanently delete."""
    pass


@deleted.command("list")
@click.option("--collection", help="Only this collection")
@click.option("--limit", type=int, default=50, help="Maximum results to return")
@click.option("--cursor", help="Cursor from a previous page")
@click.option("--oldest-first", is_flag=True, help="Show longest-deleted first")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
def deleted_list(
    ctx: click.Context,
    collection: Optional[str],
    limit: int,
    cursor: Optional[str],
    oldest_first: bool,
    format: str,
) -> None:
    """List soft-deleted documents."""
    payload = {
        "collection": collection,
        "limit": limit,
        "cursor": cursor,
        "newestFirst": not oldest_first,
    }
    result = run_admin(ctx, lambda admin, actor: admin.list_deleted(actor, payload))

    if format == "json":
        _print_json(result)
        return

    if not result["items"]:
        console.print("[yellow]No deleted items[/yellow]")
        return

    grace = get_config().permanent_delete_grace_days
    table = Table(title=f"Deleted Items ({result['total']})")
    table.add_column("Collection", style="blue")
    table.add_column("Id", style="dim")
    table.add_column("Label")
    table.add_column("Deleted At", style="cyan")
    table.add_column("By", style="green")
    table.add_column("Days", justify="right")

    for item in result["items"]:
        days = item["daysSinceDeleted"]
        color = "green" if days >= grace else "yellow"
        days_text = f"[{color}]{days}[/{color}]"
        table.add_row(
            item["collection"],
            item["id"],
            item.get("label") or "",
            _format_time(item.get("deletedAt")),
            item["deletedBy"],
            days_text,
        )
    console.print(table)
    if result["nextCursor"]:
        console.print(f"[dim]Next page: --cursor {result['nextCursor']}[/dim]")


@deleted.command("restore")
@click.argument("collection")
@click.argument("doc_id")
@click.pass_context
def deleted_restore(ctx: click.Context, collection: str, doc_id: str) -> None:
    """Restore a soft-deleted document."""
    run_admin(
        ctx,
        lambda admin, actor: admin.restore_deleted(
            actor, {"collection": collection, "id": doc_id}
        ),
    )
    console.print(f"[green]✓[/green] Restored {collection}/{doc_id}")


@deleted.command("purge")
@click.argument("collection")
@click.argument("doc_id")
@click.option("--force", is_flag=True, help="Ignore the grace period")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def deleted_purge(
    ctx: click.Context, collection: str, doc_id: str, force: bool, yes: bool
) -> None:
    """Permanently delete a soft-deleted document."""
    if not yes:
        click.confirm(
            f"Permanently delete {collection}/{doc_id}? This cannot be undone",
            abort=True,
        )
    run_admin(
        ctx,
        lambda admin, actor: admin.permanent_delete(
            actor, {"collection": collection, "id": doc_id, "force": force}
        ),
    )
    console.print(f"[green]✓[/green] Permanently deleted {collection}/{doc_id}")


@cli.group()
def cleanup() -> None:
    """Find stale records and soft delete them in bulk."""
    pass


@cleanup.command("search")
@click.argument("collection")
@click.option("--before", help="ISO-8601 cutoff (default: now)")
@click.option(
    "--type", "kind", type=click.Choice(["documents", "slots"]), help="Collection kind"
)
@click.option("--limit", type=int, help="Maximum documents to scan")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
def cleanup_search(
    ctx: click.Context,
    collection: str,
    before: Optional[str],
    kind: Optional[str],
    limit: Optional[int],
    format: str,
) -> None:
    """Search a collection for records older than a cutoff."""
    payload = {"collection": collection, "before": before, "type": kind, "limit": limit}
    result = run_admin(ctx, lambda admin, actor: admin.cleanup_search(actor, payload))

    if format == "json":
        _print_json(result)
        return

    if not result["items"]:
        console.print("[green]No stale records found[/green]")
        return

    slots = result["items"][0]["kind"] == "slots"
    table = Table(title=f"Stale {collection} ({result['count']})")
    table.add_column("Id", style="dim")
    table.add_column("Summary")
    table.add_column("Date", style="cyan")
    if slots:
        table.add_column("Past", justify="right", style="red")
        table.add_column("Future", justify="right", style="green")

    for item in result["items"]:
        summary = ", ".join(str(v) for v in item["summary"].values())
        row = [item["id"], summary, _format_time(item.get("dateValue"))]
        if slots:
            row += [str(item["pastSlotCount"]), str(item["futureSlotCount"])]
        table.add_row(*row)
    console.print(table)


@cleanup.command("apply")
@click.argument("collection")
@click.argument("ids", nargs=-1)
@click.option("--skip-deleted", is_flag=True, help="Skip ids that are already deleted")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def cleanup_apply(
    ctx: click.Context, collection: str, ids: tuple, skip_deleted: bool, yes: bool
) -> None:
    """Soft delete the given ids in bulk."""
    if ids and not yes:
        click.confirm(f"Soft delete {len(ids)} {collection} documents?", abort=True)
    result = run_admin(
        ctx,
        lambda admin, actor: admin.cleanup_apply(
            actor,
            {"collection": collection, "ids": list(ids), "skipDeleted": skip_deleted},
        ),
    )
    console.print(
        f"[green]✓[/green] Soft deleted {result['count']} documents "
        f"in {result['batches']} batches"
    )
    if result["skippedIds"]:
        console.print(
            "[yellow]Skipped (already deleted): "
            f"{', '.join(result['skippedIds'])}[/yellow]"
        )


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
