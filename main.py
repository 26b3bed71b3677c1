"""
QuizCore - Main Entry Point

CLI for inspecting provider configuration and checking provider health.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quizcore.config.loader import load_settings
from quizcore.config.settings import OrchestratorSettings
from quizcore.exceptions import ConfigurationError, QuizCoreError
from quizcore.observability.logging_config import configure_logging
from quizcore.providers.catalog import list_catalogue
from quizcore.providers.registry import ProviderRegistry
from quizcore.providers.router import PurposeRouter
from quizcore.providers.settings_store import ProviderSettingsStore
from quizcore.storage import create_row_store

root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="quizcore",
    help="QuizCore - AI provider orchestration for quiz content",
)
console = Console()
logger = logging.getLogger("quizcore")


def _get_settings(config: Optional[Path]) -> OrchestratorSettings:
    """Load settings, with a friendly error on failure."""
    try:
        return load_settings(config, use_cache=False)
    except ConfigurationError as e:
        console.print(Panel(
            f"[red]{e}[/]\n\n"
            f"Config file: [cyan]{e.config_path or 'none'}[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _open_store(settings: OrchestratorSettings) -> ProviderSettingsStore:
    configure_logging(settings.environment, level=logging.WARNING)
    try:
        return ProviderSettingsStore.from_settings(settings, create_row_store(settings))
    except (ConfigurationError, EnvironmentError) as e:
        console.print(Panel(str(e), title="⚠ Configuration Error", border_style="red"))
        raise typer.Exit(code=1)


ConfigOption = typer.Option(None, "--config", "-c", help="Path to a YAML settings file")


# =========================================================================
# Commands
# =========================================================================


@app.command()
def providers():
    """List the built-in provider catalogue."""
    table = Table(title="Built-in Providers")
    table.add_column("ID", style="cyan")
    table.add_column("Label", style="white")
    table.add_column("Family", style="green")
    table.add_column("Default Model", style="yellow")
    table.add_column("JSON Mode", style="blue")
    table.add_column("Env Fallback", style="dim")

    for entry in list_catalogue():
        table.add_row(
            entry["id"],
            entry["label"],
            entry["family"],
            entry["model"],
            "yes" if entry["structured_output"] else "no",
            entry["env_var"] or "",
        )
    console.print(table)


@app.command(name="show-settings")
def show_settings(
    config: Optional[Path] = ConfigOption,
    as_json: bool = typer.Option(False, "--json", help="Print the admin JSON instead of a table"),
):
    """Show stored provider settings. Secrets are never printed."""
    settings = _get_settings(config)
    snapshot = _open_store(settings).load_snapshot(decrypt_secrets=False)
    public = snapshot.to_public_dict()

    if as_json:
        console.print_json(json.dumps(public))
        return

    table = Table(title="Provider Settings")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="white")
    table.add_column("Key", style="yellow")
    for purpose in public["purposes"]:
        table.add_column(purpose.capitalize(), justify="center")

    for provider_id, info in public["providers"].items():
        if info["credentialError"]:
            key = "[red]undecryptable[/]"
        elif info["hasKey"]:
            key = f"…{info['keyHint']} ({info['keySource']})"
        else:
            key = "[dim]none[/]"
        marks = [
            "[green]✓[/]" if public["purposes"][p][provider_id] else "[dim]-[/]"
            for p in public["purposes"]
        ]
        table.add_row(provider_id, info["model"], key, *marks)

    console.print(table)
    console.print(f"Trusted migration provider: [bold]{public['trustedMigrationProvider']}[/]")


@app.command()
def status(
    config: Optional[Path] = ConfigOption,
    timeout: Optional[float] = typer.Option(None, help="Per-provider probe timeout in seconds"),
):
    """Probe every credentialed provider and report its status."""
    settings = _get_settings(config)
    store = _open_store(settings)

    async def _run():
        registry = ProviderRegistry.open(store, settings=settings)
        return await PurposeRouter(registry).liveness_report(timeout=timeout)

    try:
        report = asyncio.run(_run())
    except QuizCoreError as e:
        console.print(f"[red]Status check failed:[/] {e}")
        raise typer.Exit(1)

    styles = {"active": "green", "rate_limited": "yellow"}
    table = Table(title="Provider Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="white")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Message", style="dim")
    for result in report.results:
        style = styles.get(result.status, "red")
        table.add_row(
            result.provider,
            result.model,
            f"[{style}]{result.status}[/]",
            f"{result.latency_ms:.0f} ms",
            result.message,
        )
    console.print(table)

    summary = report.summary
    style = "green" if summary["inactive"] == 0 else "yellow"
    console.print(Panel(
        f"Total:        {summary['total']}\n"
        f"Active:       [green]{summary['active']}[/green]\n"
        f"Inactive:     [red]{summary['inactive']}[/red]\n"
        f"Unconfigured: {', '.join(report.unconfigured) or '-'}",
        title="Summary",
        border_style=style,
    ))


@app.command(name="delete-provider")
def delete_provider(
    provider_id: str = typer.Argument(..., help="Custom provider id"),
    config: Optional[Path] = ConfigOption,
):
    """Delete a custom provider. Built-ins can only be disabled."""
    settings = _get_settings(config)
    try:
        deleted = _open_store(settings).delete_custom_provider(provider_id)
    except QuizCoreError as e:
        console.print(f"[red]Delete failed:[/] {e}")
        raise typer.Exit(1)
    if deleted:
        console.print(f"[green]Deleted[/] {provider_id}")
    else:
        console.print(f"[yellow]No such custom provider:[/] {provider_id}")


if __name__ == "__main__":
    app()
