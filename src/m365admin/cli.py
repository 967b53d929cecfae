"""Command-line interface for the Microsoft 365 admin helpers.

Usage:
    python -m m365admin validate-config
    python -m m365admin domains contoso.com
    python -m m365admin devices --filter MTR --detailed
    python -m m365admin devices --device-id <id> --json
    python -m m365admin logout
"""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from m365admin.config import resolve_config_path, validate_config_file
from m365admin.core.logging import configure_logging, set_correlation_id
from m365admin.teams.device_types import DEVICE_FILTERS

if TYPE_CHECKING:
    from m365admin.auth.msal_auth import GraphAuth
    from m365admin.config_schema import AppConfig
    from m365admin.graph.client import GraphClient
    from m365admin.teams.records import TeamsDeviceRecord

console = Console()
err_console = Console(stderr=True)

LIST_COLUMNS = [
    ("Device Type", "device_type"),
    ("Manufacturer", "manufacturer"),
    ("Model", "model"),
    ("User", "user_upn"),
    ("Serial Number", "serial_number"),
    ("Health", "health_status"),
    ("Activity", "activity_state"),
]


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    auth: GraphAuth
    graph_client: GraphClient


def _load_config_or_exit() -> AppConfig:
    from m365admin.config import get_config
    from m365admin.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        err_console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml with at least an [cyan]auth.client_id[/cyan] entry.\n"
            "See config/config.yaml.example."
        )
        sys.exit(1)


def _init_cli_deps() -> CLIDeps:
    """Load config and initialize auth and the Graph client.

    Prints actionable error messages and calls sys.exit(1) on failure.
    """
    from m365admin.auth.msal_auth import GraphAuth
    from m365admin.graph.client import GraphClient

    config = _load_config_or_exit()

    try:
        auth = GraphAuth(
            client_id=config.auth.client_id,
            tenant_id=config.auth.tenant_id,
            scopes=config.auth.scopes,
            token_cache_path=config.auth.token_cache_path,
        )
    except ValueError as e:
        err_console.print(f"[red]Authentication error:[/red] {e}")
        sys.exit(1)

    graph_client = GraphClient(
        auth,
        base_url=config.graph.base_url,
        timeout=config.graph.timeout_seconds,
    )

    return CLIDeps(config=config, auth=auth, graph_client=graph_client)


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _device_table(records: list[TeamsDeviceRecord]) -> Table:
    table = Table(title=f"Teams devices ({len(records)})")
    for header, _ in LIST_COLUMNS:
        table.add_column(header)
    for record in records:
        table.add_row(*[str(getattr(record, attr) or "") for _, attr in LIST_COLUMNS])
    return table


def _detail_table(record: TeamsDeviceRecord) -> Table:
    table = Table(title=f"Teams device {record.device_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in record.to_dict().items():
        if isinstance(value, dict):
            value = json.dumps(value, default=str) if value else ""
        table.add_row(key, str(value if value is not None else ""))
    return table


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Microsoft 365 admin helpers - tenant domains and Teams devices."""
    log_level = "DEBUG" if debug else "WARNING"
    configure_logging(log_level=log_level, json_output=False)
    set_correlation_id(str(uuid.uuid4()))


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    console.print(f"Validating config: [cyan]{resolve_config_path(config_path)}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("domains")
@click.argument("domain")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def domains(domain: str, as_json: bool) -> None:
    """List every domain of the Microsoft 365 tenant that owns DOMAIN."""
    from m365admin.config import get_config
    from m365admin.config_schema import DomainsConfig
    from m365admin.core.errors import ConfigLoadError, ConfigValidationError
    from m365admin.tenant.domains import TenantDomainResolver

    # Domain lookups need no sign-in, so a missing config file falls back to defaults
    try:
        domains_config = get_config().domains
    except ConfigLoadError:
        domains_config = DomainsConfig()
    except ConfigValidationError as e:
        err_console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    resolver = TenantDomainResolver(
        metadata_url_template=domains_config.metadata_url_template,
        timeout=domains_config.timeout_seconds,
    )
    try:
        records = resolver.get_domains(domain)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    if as_json:
        _print_json([{"name": r.name} for r in records])
        return

    if not records:
        console.print(f"[yellow]No tenant domains found for {domain}.[/yellow]")
        return

    table = Table(title=f"Tenant domains for {domain}")
    table.add_column("Name")
    for record in records:
        table.add_row(record.name)
    console.print(table)


@cli.command("devices")
@click.option(
    "--filter",
    "device_filter",
    type=click.Choice(DEVICE_FILTERS),
    default=None,
    help="Restrict to a device category",
)
@click.option("--device-id", default=None, help="Fetch one device with full detail")
@click.option("--detailed", is_flag=True, help="Include activity, configuration and health")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def devices(device_filter: str | None, device_id: str | None, detailed: bool, as_json: bool) -> None:
    """List Microsoft Teams devices and their health."""
    from m365admin.core.errors import M365AdminError
    from m365admin.teams.devices import TeamsDeviceInventory

    deps = _init_cli_deps()

    try:
        with Progress(console=err_console, transient=True, disable=as_json) as progress:
            task = progress.add_task("Fetching device details", total=None)

            def on_progress(completed: int, total: int) -> None:
                progress.update(task, completed=completed, total=total)

            inventory = TeamsDeviceInventory(
                deps.graph_client,
                deps.auth,
                flush_threshold=deps.config.graph.batch_flush_threshold,
                users_base_url=deps.config.graph.users_base_url,
                progress=on_progress,
            )
            result = inventory.get_devices(
                device_filter=device_filter,
                device_id=device_id,
                detailed=detailed,
            )
    except M365AdminError as e:
        err_console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)

    if device_id:
        if result is None:
            err_console.print(f"[red]Device {device_id} not found.[/red]")
            sys.exit(1)
        if as_json:
            _print_json(result.to_dict())
        else:
            console.print(_detail_table(result))
        return

    if as_json:
        _print_json([record.to_dict() for record in result])
    else:
        console.print(_device_table(result))


@cli.command("logout")
def logout() -> None:
    """Clear the cached sign-in."""
    from m365admin.auth.msal_auth import GraphAuth

    config = _load_config_or_exit()
    auth = GraphAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=config.auth.scopes,
        token_cache_path=config.auth.token_cache_path,
    )
    auth.clear_cache()
    console.print("[green]✓[/green] Signed out.")


def main() -> None:
    """Entry point for the CLI; loads .env so M365ADMIN_* overrides apply."""
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
