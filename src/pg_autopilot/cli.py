"""Typer CLI for pg-autopilot."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pg_autopilot.config.loader import load_operator_config
from pg_autopilot.config.models import OperatorConfig
from pg_autopilot.kube.client import KubernetesClient
from pg_autopilot.manager import InstanceManager
from pg_autopilot.observability.logging import configure_logging
from pg_autopilot.pki.webhook import WebhookCertificateCoordinator
from pg_autopilot.slots.postgres import PostgresSlotManager
from pg_autopilot.slots.replicator import RestartPolicy, synchronize_replication_slots

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="pg-autopilot", help="PostgreSQL operator self-healing loops")
certs_app = typer.Typer(name="certs", help="Webhook PKI operations")
slots_app = typer.Typer(name="slots", help="Replication slot operations")
app.add_typer(certs_app)
app.add_typer(slots_app)


def _load(config_path: str | None) -> OperatorConfig:
    if config_path is not None and not Path(config_path).exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(1)
    try:
        config = load_operator_config(config_path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid config:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    configure_logging(config.logging)
    return config


@app.command()
def validate(
    config_path: str | None = typer.Argument(None, help="Path to operator YAML"),
) -> None:
    """Validate an operator configuration file."""
    config = _load(config_path)
    slots = config.replication_slots
    console.print(f"[green]Valid[/green] pod_name={config.pod_name}")
    console.print(f"  webhook: {'enabled' if config.webhook.enabled else 'disabled'}")
    if config.webhook.enabled:
        console.print(f"    hostname: {config.webhook.hostname}")
        console.print(f"    cert_dir: {config.webhook.cert_dir}")
    console.print(
        f"  slots:   ha={'on' if slots.ha_enabled else 'off'} "
        f"interval={slots.update_interval_seconds}s"
    )
    if config.postgres.primary_dsn is None:
        console.print("  [dim]No primary_dsn, slot replication will not run[/dim]")


@certs_app.command("setup")
def certs_setup(
    config_path: str | None = typer.Argument(None, help="Path to operator YAML"),
) -> None:
    """Ensure CA and webhook certificates once, then exit."""
    config = _load(config_path)

    async def _setup() -> None:
        async with KubernetesClient(config.kubernetes) as client:
            await client.wait_until_ready()
            coordinator = WebhookCertificateCoordinator(config.webhook, client, client)
            await coordinator.setup()

    try:
        asyncio.run(_setup())
    except Exception as exc:
        console.print(f"[red]Certificate setup failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(f"[green]Certificates ready in[/green] {config.webhook.cert_dir}")


@slots_app.command("sync")
def slots_sync(
    config_path: str | None = typer.Argument(None, help="Path to operator YAML"),
) -> None:
    """Run a single replication slot reconciliation pass."""
    config = _load(config_path)
    if config.postgres.primary_dsn is None:
        console.print("[red]postgres.primary_dsn is not configured[/red]")
        raise typer.Exit(1)

    primary = PostgresSlotManager(
        config.postgres.primary_dsn.get_secret_value(), role="primary"
    )
    local = PostgresSlotManager(config.postgres.local_dsn.get_secret_value())
    try:
        result = asyncio.run(
            synchronize_replication_slots(
                primary, local, config.pod_name, config.replication_slots
            )
        )
    except Exception as exc:
        console.print(f"[red]Synchronization failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    table = Table(title="Replication slots")
    table.add_column("Slot", style="cyan")
    table.add_column("Action")
    for name in result.created:
        table.add_row(name, "[green]created[/green]")
    for name in result.deleted:
        table.add_row(name, "[red]deleted[/red]")
    for name in result.updated:
        if name not in result.created:
            table.add_row(name, "updated")
    console.print(table)


@app.command()
def run(
    config_path: str | None = typer.Argument(None, help="Path to operator YAML"),
    restart_on_failure: bool = typer.Option(
        False, "--restart-on-failure", help="Restart the slot replicator after a crash"
    ),
) -> None:
    """Run certificate maintenance and slot replication until signalled."""
    config = _load(config_path)
    policy = RestartPolicy.ON_FAILURE if restart_on_failure else RestartPolicy.NEVER
    manager = InstanceManager(config, restart_policy=policy)

    def _reload() -> None:
        try:
            manager.reload(load_operator_config(config_path).replication_slots)
        except (ValueError, TypeError, FileNotFoundError) as exc:
            logger.error("cli.reload_failed", error=str(exc))

    async def _run() -> None:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGTERM, manager.stop)
        loop.add_signal_handler(signal.SIGINT, manager.stop)
        loop.add_signal_handler(signal.SIGHUP, _reload)
        await manager.run()

    console.print(f"[yellow]Starting pg-autopilot:[/yellow] {config.pod_name}")
    asyncio.run(_run())
