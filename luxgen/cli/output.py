"""
LuxGen CLI - Rich Output Helpers

Consistent command-line output for tenant listings, tenant details and
resolution results.

Functions:
    print_tenants    - Table of tenant records
    print_tenant     - Key/value view of one tenant
    print_resolution - Outcome of a resolve dry-run
    print_json       - Print formatted JSON
    print_error      - Print error message
    print_success    - Print success message
    print_warning    - Print warning message
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.json import JSON
from rich.table import Table

from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.tenant import TenantRecord, TenantStatus

# Create console instances
console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    TenantStatus.ACTIVE: "green",
    TenantStatus.PENDING: "yellow",
    TenantStatus.SUSPENDED: "red",
    TenantStatus.INACTIVE: "dim",
}


def _format_limit(value: int | None) -> str:
    return "unlimited" if value is None else str(value)


def print_tenants(records: Sequence[TenantRecord], title: str = "Tenants") -> None:
    """
    Print tenant records as a table.

    Args:
        records: Records to list, in display order
        title: Table title
    """
    table = Table(title=title)
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Plan")
    table.add_column("Features")
    table.add_column("Domain", style="dim")

    for record in records:
        style = _STATUS_STYLES.get(record.status, "white")
        table.add_row(
            record.slug,
            record.display_name,
            f"[{style}]{record.status.value}[/{style}]",
            record.plan.value,
            ", ".join(sorted(record.features)) or "-",
            record.domain or "-",
        )

    console.print(table)


def print_tenant(record: TenantRecord) -> None:
    """Print one tenant with its effective limits."""
    print_key_value(
        [
            ("id", record.id),
            ("slug", record.slug),
            ("name", record.display_name),
            ("status", record.status.value),
            ("plan", record.plan.value),
            ("features", ", ".join(sorted(record.features)) or "-"),
            ("domain", record.domain or "-"),
        ],
        title=f"Tenant {record.slug}",
    )
    console.print()
    print_key_value(
        [(kind.value, _format_limit(limit)) for kind, limit in record.effective_limits().items()],
        title="Limits",
    )


def print_resolution(context: TenantContext) -> None:
    console.print(
        f"Resolved to [bold cyan]{context.slug}[/bold cyan] "
        f"via [green]{context.resolved_from.value}[/green] [dim]({context.tenant_id})[/dim]"
    )


def print_key_value(
    items: list[tuple[str, Any]],
    title: Optional[str] = None,
    key_style: str = "cyan",
) -> None:
    """
    Print key-value pairs in a formatted list.

    Args:
        items: List of (key, value) tuples
        title: Optional title
        key_style: Style for keys
    """
    if title:
        console.print(f"[bold]{title}[/bold]")

    max_key_len = max(len(str(k)) for k, _ in items) if items else 0

    for key, value in items:
        padded_key = str(key).ljust(max_key_len)
        console.print(f"  [{key_style}]{padded_key}[/{key_style}]: {value}")


def print_json(data: dict | list, indent: int = 2) -> None:
    console.print(JSON(json.dumps(data, indent=indent, default=str)))


def print_error(message: str, hint: Optional[str] = None) -> None:
    """
    Print error message.

    Args:
        message: Error message
        hint: Optional hint for resolving the error
    """
    err_console.print(f"[bold red]Error:[/bold red] {message}")

    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_success(message: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
