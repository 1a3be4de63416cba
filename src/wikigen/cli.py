"""Wiki generation CLI.

Registers repositories, generates their documentation wiki with an LLM, and
keeps it in sync with new commits, either on demand or on a schedule.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Optional, TypeVar
from uuid import uuid4

import structlog
import typer

from wikigen.config import WikiSettings
from wikigen.errors import WikiGenError
from wikigen.models.enums import SyncTrigger, WarehouseType
from wikigen.models.warehouse import Warehouse
from wikigen.services.catalog_tree import render_outline
from wikigen.services.documentation import CreateCatalogInput
from wikigen.services.factory import WikiServices, create_services
from wikigen.services.snapshot import parse_repository_address

T = TypeVar("T")


class TriggerOption(str, Enum):
    """Sync triggers a user can request from the command line."""

    MANUAL = "manual"
    WEBHOOK = "webhook"


structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="wikigen",
    help="""Generate and sync documentation wikis for source repositories.

Examples:

  # Register and ingest a repository
  uv run wikigen add https://github.com/acme/widgets.git
  uv run wikigen ingest <warehouse-id>

  # Pull new commits and regenerate affected pages
  uv run wikigen sync <warehouse-id>

  # Run the periodic sync loop
  uv run wikigen schedule""",
    rich_markup_mode="markdown",
)


def _run(operation: Callable[[WikiServices], Awaitable[T]]) -> T:
    """Run ``operation`` against a freshly wired service graph.

    Domain errors are logged and turned into exit code 1.
    """

    async def runner() -> T:
        async with create_services(WikiSettings()) as services:
            return await operation(services)

    try:
        return asyncio.run(runner())
    except WikiGenError as exc:
        logger.error("command_failed", error=str(exc), error_type=type(exc).__name__)
        raise typer.Exit(1) from exc


@app.command()
def init() -> None:
    """Create the database schema."""

    async def noop(services: WikiServices) -> None:
        return None

    _run(noop)
    typer.echo(f"Initialized {WikiSettings().database_path}")


@app.command()
def add(
    address: str = typer.Argument(
        ...,
        help="Git URL or path to a .zip/.tar.gz archive",
    ),
    branch: str = typer.Option(
        "main",
        "--branch",
        "-b",
        help="Branch to document",
    ),
    organization: Optional[str] = typer.Option(
        None,
        "--organization",
        help="Organization name (default: derived from the address)",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        help="Repository name (default: derived from the address)",
    ),
    git_user: Optional[str] = typer.Option(
        None,
        "--git-user",
        help="User for private repositories",
    ),
    git_password: Optional[str] = typer.Option(
        None,
        "--git-password",
        help="Password or token for private repositories",
        hide_input=True,
    ),
    archive: bool = typer.Option(
        False,
        "--archive",
        help="Treat the address as a local archive instead of a git URL",
    ),
    enable_sync: bool = typer.Option(
        True,
        "--sync/--no-sync",
        help="Include the warehouse in scheduled syncs",
    ),
) -> None:
    """Register a repository as a warehouse."""
    try:
        derived_org, derived_name = parse_repository_address(address)
    except ValueError as exc:
        logger.error("invalid_address", address=address, error=str(exc))
        raise typer.Exit(1) from exc

    warehouse = Warehouse(
        warehouse_id=str(uuid4()),
        organization_name=organization or derived_org,
        name=name or derived_name,
        address=address,
        branch=branch,
        git_user_name=git_user,
        git_password=git_password,
        type=WarehouseType.FILE if archive else WarehouseType.GIT,
        enable_sync=enable_sync,
    )

    async def register(services: WikiServices) -> Warehouse:
        return await services.warehouses.register_warehouse(warehouse)

    registered = _run(register)
    typer.echo(f"Registered {registered.organization_name}/{registered.name}@{registered.branch}")
    typer.echo(registered.warehouse_id)


@app.command()
def ingest(
    warehouse_id: str = typer.Argument(..., help="Warehouse to ingest"),
) -> None:
    """Clone the repository, plan the catalog and generate every page."""

    async def run_ingest(services: WikiServices):
        return await services.orchestrator.ingest_warehouse(warehouse_id)

    result = _run(run_ingest)
    typer.echo(f"Ingested {result.catalog_count} pages ({result.generated} generated) at {result.version or 'n/a'}")


@app.command()
def sync(
    warehouse_id: str = typer.Argument(..., help="Warehouse to sync"),
    trigger: TriggerOption = typer.Option(
        TriggerOption.MANUAL,
        "--trigger",
        "-t",
        help="Trigger recorded on the sync record",
    ),
) -> None:
    """Pull new commits and regenerate the affected pages."""

    async def run_sync(services: WikiServices):
        started = await services.orchestrator.sync_warehouse(warehouse_id, SyncTrigger(trigger.value))
        if not started:
            return None
        await services.orchestrator.wait_idle()
        records = await services.ledger.list_records(warehouse_id, limit=1)
        return records[0] if records else None

    record = _run(run_sync)
    if record is None:
        typer.echo("Warehouse not found or not ingested yet")
        raise typer.Exit(1)

    typer.echo(
        f"Sync {record.status.value}: {record.from_version or 'n/a'} -> {record.to_version or 'n/a'} "
        f"({record.added_file_count} added, {record.updated_file_count} modified, "
        f"{record.deleted_file_count} deleted)"
    )
    if record.error_message:
        typer.echo(record.error_message)


@app.command()
def schedule(
    once: bool = typer.Option(
        False,
        "--once",
        help="Run a single scheduler pass and exit",
    ),
) -> None:
    """Periodically sync warehouses whose wiki is out of date."""

    async def run_scheduler(services: WikiServices) -> None:
        if once:
            result = await services.scheduler.run_once()
            await services.orchestrator.wait_idle()
            typer.echo(f"Started {len(result.started)} syncs, skipped {len(result.skipped)}")
            return
        await services.scheduler.run_forever()

    try:
        _run(run_scheduler)
    except KeyboardInterrupt:
        logger.info("scheduler_stopped")


@app.command("catalog-add")
def catalog_add(
    warehouse_id: str = typer.Argument(..., help="Warehouse to extend"),
    name: str = typer.Argument(..., help="Page title"),
    url: str = typer.Argument(..., help="Page slug, unique within the warehouse"),
    prompt: str = typer.Argument(..., help="Instructions for the page"),
    parent_id: Optional[str] = typer.Option(
        None,
        "--parent",
        "-p",
        help="Parent catalog id (default: top level)",
    ),
    description: str = typer.Option("", "--description", "-d", help="Short page description"),
) -> None:
    """Add a catalog page and generate it."""
    request = CreateCatalogInput(
        warehouse_id=warehouse_id,
        name=name,
        url=url,
        prompt=prompt,
        parent_id=parent_id,
        description=description,
    )

    async def create(services: WikiServices):
        return await services.documentation.create_catalog_and_generate(request)

    catalog = _run(create)
    typer.echo(f"Generated {catalog.name} ({catalog.url})")
    typer.echo(catalog.catalog_id)


@app.command("catalog-delete")
def catalog_delete(
    catalog_id: str = typer.Argument(..., help="Catalog page to delete with its sub-pages"),
) -> None:
    """Soft-delete a catalog page and its descendants."""

    async def delete(services: WikiServices) -> list[str]:
        return await services.documentation.delete_catalog(catalog_id)

    deleted = _run(delete)
    typer.echo(f"Deleted {len(deleted)} pages")


@app.command()
def regenerate(
    catalog_id: str = typer.Argument(..., help="Catalog page to regenerate"),
    prompt: Optional[str] = typer.Option(
        None,
        "--prompt",
        help="Replace the page prompt before regenerating",
    ),
) -> None:
    """Regenerate a page using its current content as context."""

    async def run_regenerate(services: WikiServices):
        return await services.documentation.regenerate_file_content(catalog_id, prompt)

    catalog = _run(run_regenerate)
    typer.echo(f"Regenerated {catalog.name} ({catalog.url})")


@app.command()
def tree(
    warehouse_id: str = typer.Argument(..., help="Warehouse whose catalog to print"),
) -> None:
    """Print the catalog outline."""

    async def load(services: WikiServices) -> str:
        await services.warehouses.require_warehouse(warehouse_id)
        return render_outline(await services.catalogs.build_tree(warehouse_id))

    outline = _run(load)
    typer.echo(outline or "No catalog yet")


@app.command()
def overview(
    warehouse_id: str = typer.Argument(..., help="Warehouse whose overview to print"),
) -> None:
    """Print the project overview written during ingestion."""

    async def load(services: WikiServices):
        await services.warehouses.require_warehouse(warehouse_id)
        return await services.warehouses.get_overview(warehouse_id)

    stored = _run(load)
    typer.echo(stored.content if stored is not None else "No overview yet")


@app.command()
def history(
    warehouse_id: str = typer.Argument(..., help="Warehouse whose syncs to list"),
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        help="Maximum number of records to show",
    ),
) -> None:
    """List recent sync records, newest first."""

    async def load(services: WikiServices):
        await services.warehouses.require_warehouse(warehouse_id)
        return await services.ledger.list_records(warehouse_id, limit=limit)

    records = _run(load)
    if not records:
        typer.echo("No syncs recorded")
        return
    for record in records:
        typer.echo(
            f"{record.start_time.isoformat()}  {record.trigger.value:<9}  {record.status.value:<11}  "
            f"{record.from_version or '-'} -> {record.to_version or '-'}  files={record.file_count}"
            + (f"  {record.error_message}" if record.error_message else "")
        )


@app.command()
def version() -> None:
    """Show version information."""
    from wikigen import __version__

    typer.echo(f"wikigen {__version__}")
