"""CLI commands for configuration management."""

import json
import shutil
import sys
from typing import Any

import click  # type: ignore[import-not-found]
from rich.console import Console  # type: ignore[import-not-found]
from rich.table import Table  # type: ignore[import-not-found]

from colmillo.core.config import ConfigManager

console = Console()
error_console = Console(stderr=True)


def _config_manager(ctx: click.Context) -> ConfigManager:
    """Config manager for the file selected with --config (or the default)."""
    obj = ctx.find_root().obj or {}
    if obj.get("config") is not None:
        return obj["config"]  # type: ignore[no-any-return]
    return ConfigManager(obj.get("config_path"))


@click.group()  # type: ignore[misc]
def config() -> None:
    """Manage Colmillo configuration.

    Configuration is stored in ~/.colmillo/config.yml
    """
    pass


@config.command("show")  # type: ignore[misc]
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_show(ctx: click.Context, as_json: bool) -> None:
    """Show all configuration settings.

    Example:
        colmillo config show
        colmillo config show --json
    """
    config_mgr = _config_manager(ctx)

    if as_json:
        click.echo(json.dumps(config_mgr.to_dict(), indent=2))
        return

    table = Table(title="Colmillo Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key in config_mgr.get_all_keys():
        table.add_row(key, str(config_mgr.get(key)))

    console.print(table)
    console.print(f"\nConfig file: {config_mgr.config_path}")


@config.command("get")  # type: ignore[misc]
@click.argument("key")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_get(ctx: click.Context, key: str) -> None:
    """Get a specific configuration value.

    Uses dot notation to access nested values.

    Example:
        colmillo config get persistence.backend
        colmillo config get users.A
    """
    value = _config_manager(ctx).get(key)

    if value is None:
        error_console.print(f"[red]Error:[/red] Configuration key '{key}' not found")
        sys.exit(1)

    if isinstance(value, dict):
        console.print(json.dumps(value, indent=2))
    else:
        console.print(str(value))


def _convert(key: str, value: str) -> Any:
    """Convert a command-line string to bool, null, int, float or str.

    User display names are always kept as strings.
    """
    if key.startswith("users."):
        return value
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    if value.lower() == "null":
        return None
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


@config.command("set")  # type: ignore[misc]
@click.argument("key")  # type: ignore[misc]
@click.argument("value")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value.

    Values are automatically converted to appropriate types.
    Use 'true'/'false' for booleans, numbers for integers.
    User display names (users.A, users.B) are never converted.

    Example:
        colmillo config set users.A "Nacho"
        colmillo config set persistence.retry_attempts 5
    """
    config_mgr = _config_manager(ctx)
    converted_value = _convert(key, value)

    try:
        config_mgr.set(key, converted_value)
        console.print(f"[green]✓[/green] Set {key} = {converted_value}")
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@config.command("reset")  # type: ignore[misc]
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_reset(ctx: click.Context, yes: bool) -> None:
    """Reset configuration to defaults.

    Example:
        colmillo config reset --yes
    """
    config_mgr = _config_manager(ctx)

    if not yes:
        console.print("[yellow]Warning:[/yellow] This will reset all configuration to defaults.")
        if not click.confirm("Continue?"):
            console.print("Cancelled")
            return

    backup_path = config_mgr.config_path.with_suffix(".yml.backup")
    if config_mgr.config_path.exists():
        shutil.copy(config_mgr.config_path, backup_path)
        console.print(f"Backed up current config to {backup_path}")

    config_mgr.reset()
    console.print("[green]✓[/green] Configuration reset to defaults")


@config.command("validate")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_validate(ctx: click.Context) -> None:
    """Validate configuration file."""
    try:
        _config_manager(ctx).validate()
        console.print("[green]✓[/green] Configuration is valid")
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@config.command("path")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_path(ctx: click.Context) -> None:
    """Show path to configuration file."""
    console.print(str(_config_manager(ctx).config_path))
