"""Command line interface.

Usage:
    docmigrate init
    docmigrate plan
    docmigrate apply --dry-run
    docmigrate apply --force
    docmigrate relationships
    docmigrate rollback
    docmigrate reset --yes
    docmigrate status
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from textwrap import dedent
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from .db.client import DatabaseClient
from .db.config import MigrateConfig, load_config
from .db.connection import open_connection
from .db.surreal_client import SurrealDatabaseClient
from .dsl.models import Schema
from .errors import DocMigrateError
from .migrations.runner import MigrationRunner, StatusReport, init_project, load_schema
from .reporter import ConsoleReporter

logger = logging.getLogger(__name__)

SCHEMA_COMMANDS = {"plan", "apply", "relationships"}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@asynccontextmanager
async def open_client(config: MigrateConfig, database_id: str) -> AsyncGenerator[DatabaseClient, None]:
    """Connected database client for the managed database."""
    async with open_connection(config, database_id) as conn:
        yield SurrealDatabaseClient(conn, record_references=config.record_references)


def print_status(console: Console, report: StatusReport) -> None:
    """Render a status report."""
    console.print(f"[bold cyan]Migration status[/bold cyan] for database [bold]{report.database_id}[/bold]\n")

    console.print("[bold]Database state:[/bold]")
    console.print(f"  Collections: {report.collections}")
    console.print(f"  Attributes:  {report.attributes}")
    console.print(f"  Indexes:     {report.indexes}")

    counts = report.history_counts
    console.print("\n[bold]History:[/bold]")
    console.print(f"  Applied:     [green]{counts.get('applied', 0)}[/green]")
    console.print(f"  Rolled back: [yellow]{counts.get('rolled_back', 0)}[/yellow]")
    console.print(
        f"  Runs:        {counts.get('type:apply', 0)} apply, "
        f"{counts.get('type:relationships', 0)} relationships"
    )

    if report.recent:
        table = Table(title="Recent runs")
        table.add_column("Record")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Checksum")
        table.add_column("Created")
        for record in report.recent:
            color = "green" if record.status.value == "applied" else "yellow"
            table.add_row(
                record.record_id,
                record.type,
                f"[{color}]{record.status.value}[/{color}]",
                record.checksum,
                str(record.created_at or ""),
            )
        console.print()
        console.print(table)

    if report.locks:
        table = Table(title="Held locks")
        table.add_column("Lock")
        table.add_column("Owner")
        table.add_column("Since")
        table.add_column("Expires")
        for lock in report.locks:
            table.add_row(
                lock.lock_id,
                lock.owner,
                str(lock.created_at or ""),
                str(lock.expires_at or "never"),
            )
        console.print()
        console.print(table)
    else:
        console.print("\nNo locks held")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="docmigrate",
        description="Declarative schema migrations for SurrealDB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Examples:
              # Create an example schema and config
              docmigrate init

              # Show what would change
              docmigrate plan

              # Apply collections, attributes and indexes, then relationships
              docmigrate apply
              docmigrate relationships

              # Undo the last apply
              docmigrate rollback
        """),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--schema",
        help="Schema file (default: DOCMIGRATE_SCHEMA or docmigrate.schema)",
    )
    parser.add_argument(
        "--database",
        help="Database id (default: SURREAL_DATABASE or the schema's database block)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create an example schema and config file")
    subparsers.add_parser("plan", help="Show pending changes without applying them")

    for name, help_text in (
        ("apply", "Create missing collections, attributes and indexes"),
        ("relationships", "Create missing relationship attributes"),
        ("rollback", "Revert the most recent apply"),
    ):
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview changes without applying",
        )
        cmd.add_argument(
            "--force",
            action="store_true",
            help="Continue past errors and take over held locks",
        )

    reset_parser = subparsers.add_parser("reset", help="Delete all migration history")
    reset_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    reset_parser.add_argument(
        "--force",
        action="store_true",
        help="Take over a held reset lock",
    )

    subparsers.add_parser("status", help="Show remote schema, history and locks")

    return parser


def _load_schema_for(args: argparse.Namespace, config: MigrateConfig) -> Optional[Schema]:
    path = Path(config.schema_path)
    if args.command in SCHEMA_COMMANDS or path.is_file():
        return load_schema(path)
    return None


async def run_command(args: argparse.Namespace, console: Console) -> int:
    """Execute a parsed command.

    Returns:
        Process exit code
    """
    reporter = ConsoleReporter(console)

    if args.command == "init":
        root = Path.cwd()
        schema_path = Path(args.schema) if args.schema else None
        console.print(f"[cyan]Initializing docmigrate in {root}[/cyan]\n")
        init_project(root, schema_path, reporter)
        reporter.success("docmigrate initialized")
        return 0

    config = load_config()
    if args.schema:
        config.schema_path = args.schema
    if args.database:
        config.database_id = args.database
    config.debug = config.debug or args.verbose

    schema = _load_schema_for(args, config)
    database_id = config.resolve_database_id(schema.database_id if schema else None)
    config.require_connection()

    if args.command == "reset" and not args.yes:
        console.print("[red]WARNING: this deletes all migration history[/red]\n")
        answer = Prompt.ask('Type "reset" to confirm', console=console)
        if answer != "reset":
            console.print("Reset cancelled.")
            return 0

    async with open_client(config, database_id) as client:
        runner = MigrationRunner(client, config, database_id, reporter)

        if args.command == "plan":
            assert schema is not None
            await runner.plan(schema)
            return 0

        if args.command == "apply":
            assert schema is not None
            result = await runner.apply(schema, force=args.force, dry_run=args.dry_run)
            if args.dry_run:
                console.print("[dim]Dry run - no changes made[/dim]")
            elif result.created or result.skipped or result.failed:
                reporter.info("Run 'docmigrate relationships' to create relationship attributes")
            return 0 if result.success else 1

        if args.command == "relationships":
            assert schema is not None
            result = await runner.relationships(schema, force=args.force, dry_run=args.dry_run)
            if args.dry_run:
                console.print("[dim]Dry run - no changes made[/dim]")
            return 0 if result.success else 1

        if args.command == "rollback":
            rollback = await runner.rollback(force=args.force, dry_run=args.dry_run)
            if rollback.revert is not None and not rollback.revert.success:
                return 1
            return 0

        if args.command == "reset":
            await runner.reset(force=args.force)
            return 0

        if args.command == "status":
            print_status(console, await runner.status())
            return 0

    reporter.error(f"Unknown command: {args.command}")
    return 1


async def async_main(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    """Async main entry point."""
    console = console or Console()
    try:
        return await run_command(args, console)
    except DocMigrateError as e:
        if args.verbose:
            logger.exception("Command failed")
        console.print(f"[red]✗ Error:[/red] {escape(str(e))}")
        return 1


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
