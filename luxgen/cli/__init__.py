"""
LuxGen - Command Line Interface

Tenant administration and resolution diagnostics. Built with Typer, output
through Rich.

Usage:
    $ luxgen --help
    $ luxgen tenants list --all
    $ luxgen tenants load tenants.json
    $ luxgen tenants suspend acme
    $ luxgen resolve --host sub.acme.example.com

Every command works against the configured database (``DATABASE_URL``), or
against a JSON seed file with ``--file``. Changes made with ``--file`` are
written back to that file.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from luxgen import __version__
from luxgen.cli.output import (
    console,
    print_error,
    print_json,
    print_resolution,
    print_success,
    print_tenant,
    print_tenants,
    print_warning,
)
from luxgen.config.tenants_loader import (
    TenantSeed,
    TenantSeedFile,
    apply_tenant_seeds,
    load_tenant_seeds,
    save_tenant_seeds,
)
from luxgen.multitenancy.errors import TenancyError
from luxgen.multitenancy.registry import InMemoryTenantStore, TenantRegistry
from luxgen.multitenancy.tenant import TenantStatus

# Create main application
app = typer.Typer(
    name="luxgen",
    help="LuxGen - tenant resolution and isolation",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

tenants_app = typer.Typer(
    name="tenants",
    help="Tenant registry commands",
    no_args_is_help=True,
)

app.add_typer(tenants_app, name="tenants")

FileOption = typer.Option(
    None,
    "--file",
    "-f",
    help="Use a tenant seed file instead of the database.",
    envvar="LUXGEN_TENANT_FILE",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"LuxGen version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    LuxGen - tenant resolution and isolation

    Use --help on any subcommand for detailed information.
    """
    pass


@app.command()
def version() -> None:
    """Show the LuxGen version."""
    console.print(f"LuxGen version {__version__}")


# ---------------------------------------------------------------------------
# Registry access
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_registry(file: Optional[Path], write_back: bool = False) -> AsyncIterator[TenantRegistry]:
    """Yield a registry over a seed file or the configured database.

    With a seed file and ``write_back``, the registry contents are saved to
    the file when the block completes without error.
    """
    if file is not None:
        registry = TenantRegistry(InMemoryTenantStore(), ttl_seconds=0)
        if file.exists():
            await apply_tenant_seeds(registry, load_tenant_seeds(file))
        yield registry
        if write_back:
            records = await registry.list_all()
            save_tenant_seeds(
                TenantSeedFile(tenants=[TenantSeed.from_record(r) for r in records]),
                file,
            )
        return

    from luxgen.config.settings import settings
    from luxgen.db import build_engine
    from luxgen.multitenancy.isolation import IsolationEnforcer
    from luxgen.multitenancy.registry import SqlTenantStore

    engine = build_engine(settings.DATABASE_URL)
    try:
        enforcer = IsolationEnforcer.from_engine(engine)
        yield TenantRegistry(SqlTenantStore(enforcer.session_factory), ttl_seconds=0)
    finally:
        await engine.dispose()


def _run(coro) -> None:
    """Run a command coroutine, turning known failures into exit code 1."""
    try:
        asyncio.run(coro)
    except TenancyError as exc:
        print_error(str(exc))
        raise typer.Exit(1)
    except FileNotFoundError as exc:
        print_error(str(exc))
        raise typer.Exit(1)
    except ValidationError as exc:
        print_error("Invalid tenant seed file", hint=str(exc))
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# tenants
# ---------------------------------------------------------------------------


@tenants_app.command("list")
def tenants_list(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include non-active tenants."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    file: Optional[Path] = FileOption,
) -> None:
    """List tenants (active only unless --all)."""

    async def _list() -> None:
        async with open_registry(file) as registry:
            records = await (registry.list_all() if show_all else registry.list_active())
        if as_json:
            print_json([r.to_dict() for r in records])
        elif not records:
            print_warning("No tenants found")
        else:
            print_tenants(records)

    _run(_list())


@tenants_app.command("show")
def tenants_show(
    slug: str = typer.Argument(..., help="Tenant slug."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
    file: Optional[Path] = FileOption,
) -> None:
    """Show one tenant with its effective limits."""

    async def _show() -> None:
        async with open_registry(file) as registry:
            record = await registry.get_by_slug(slug)
        if as_json:
            print_json(record.to_dict())
        else:
            print_tenant(record)

    _run(_show())


@tenants_app.command("load")
def tenants_load(
    seed_file: Path = typer.Argument(..., help="Tenant seed JSON file."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate only."),
    file: Optional[Path] = FileOption,
) -> None:
    """Validate a seed file and upsert its tenants."""

    async def _load() -> None:
        seeds = load_tenant_seeds(seed_file)
        if dry_run:
            print_success(f"{seed_file} is valid ({len(seeds.tenants)} tenant(s))")
            return
        async with open_registry(file, write_back=True) as registry:
            applied = await apply_tenant_seeds(registry, seeds)
        print_success(f"Loaded {len(applied)} tenant(s) from {seed_file}")

    _run(_load())


def _set_status(slug: str, status: TenantStatus, file: Optional[Path]) -> None:
    async def _update() -> None:
        async with open_registry(file, write_back=True) as registry:
            record = await registry.get_by_slug(slug)
            record = await registry.set_status(record.id, status)
        print_success(f"Tenant {record.slug} is now {record.status.value}")

    _run(_update())


@tenants_app.command("suspend")
def tenants_suspend(
    slug: str = typer.Argument(..., help="Tenant slug."),
    file: Optional[Path] = FileOption,
) -> None:
    """Suspend a tenant. Its requests are refused until reactivated."""
    _set_status(slug, TenantStatus.SUSPENDED, file)


@tenants_app.command("activate")
def tenants_activate(
    slug: str = typer.Argument(..., help="Tenant slug."),
    file: Optional[Path] = FileOption,
) -> None:
    """Activate a tenant."""
    _set_status(slug, TenantStatus.ACTIVE, file)


@tenants_app.command("deactivate")
def tenants_deactivate(
    slug: str = typer.Argument(..., help="Tenant slug."),
    file: Optional[Path] = FileOption,
) -> None:
    """Deactivate a tenant. Tenants are never deleted."""
    _set_status(slug, TenantStatus.INACTIVE, file)


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


@app.command()
def resolve(
    host: str = typer.Option("", "--host", "-H", help="Host header value."),
    header: Optional[str] = typer.Option(None, "--header", help="Tenant header value."),
    path: str = typer.Option("/", "--path", "-p", help="Request path."),
    file: Optional[Path] = FileOption,
) -> None:
    """
    Show which tenant a request would resolve to.

    Applies the same precedence as the API: header, subdomain, path, default.
    """
    from luxgen.config.settings import settings
    from luxgen.services import build_resolver

    async def _resolve() -> None:
        async with open_registry(file) as registry:
            resolver = build_resolver(settings, registry)
            headers = {resolver.header_name: header} if header else {}
            context = await resolver.resolve(host=host or None, headers=headers, path=path)
        print_resolution(context)

    _run(_resolve())


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to."),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development."),
) -> None:
    """Start the LuxGen API server."""
    import uvicorn

    from luxgen.config.settings import settings
    from luxgen.main import configure_logging

    configure_logging(settings.LOG_LEVEL)
    console.print(f"Starting LuxGen on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run("luxgen.main:create_app", host=host, port=port, reload=reload, factory=True)


if __name__ == "__main__":
    app()
