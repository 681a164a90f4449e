"""
OrderZap payments CLI.

Command-line interface for payment operations: recheck pending payments,
inspect webhook audit rows, check service health.
"""

import asyncio
import sys
import time
from datetime import datetime, timedelta, timezone

import typer
from rich.console import Console
from rich.table import Table

from shared.config.constants import Limits

app = typer.Typer(
    name="orderzap-payments",
    help="OrderZap payment webhooks CLI",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    "marked_paid": "green",
    "already_paid": "cyan",
    "not_paid": "yellow",
    "skip": "dim",
    "api_error": "red",
    "error": "red",
}


# =============================================================================
# Payment Commands
# =============================================================================


@app.command()
def recheck_payments(
    days: int = typer.Option(None, "--days", "-d", help="Look back this many days (default from settings)"),
    tenant: str = typer.Option(None, "--tenant", "-t", help="Only orders of this tenant"),
):
    """Ask the providers about unpaid orders with a payment link and mark paid ones."""
    from shared.config.logging import setup_logging
    from shared.config.settings import settings
    from shared.infrastructure.db import get_db_context
    from webhook_api.services.payments import PendingPaymentRechecker

    setup_logging()
    lookback = days if days is not None else settings.recheck_lookback_days
    since = datetime.now(timezone.utc) - timedelta(days=lookback)
    console.print(f"[blue]Rechecking pending payments since {since:%Y-%m-%d %H:%M} UTC[/blue]")

    with get_db_context() as db:
        results = asyncio.run(PendingPaymentRechecker(db).run(since, tenant_id=tenant))

    if not results:
        console.print("[yellow]No pending orders found[/yellow]")
        return

    table = Table(title="Recheck Results")
    table.add_column("Order", style="cyan", justify="right")
    table.add_column("Tenant", style="dim")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Reason", style="dim")

    for result in results:
        style = STATUS_STYLES.get(result.status, "white")
        table.add_row(
            str(result.order_id),
            result.tenant_id or "-",
            f"[{style}]{result.status}[/{style}]",
            result.source or "-",
            result.reason or "",
        )
    console.print(table)

    paid = sum(1 for r in results if r.status == "marked_paid")
    console.print(f"[green]✓ {paid} of {len(results)} orders marked as paid[/green]")


@app.command()
def webhook_logs(
    limit: int = typer.Option(Limits.WEBHOOK_LOGS_DEFAULT_LIMIT, "--limit", "-n", help="Number of rows"),
    tenant: str = typer.Option(None, "--tenant", "-t", help="Only rows of this tenant"),
    webhook_type: str = typer.Option(None, "--type", help="webhook_type prefix, e.g. mercadopago_order"),
):
    """Show the most recent webhook audit rows."""
    from sqlalchemy import select

    from shared.infrastructure.db import get_db_context
    from webhook_api.models import WebhookLog

    stmt = select(WebhookLog).order_by(WebhookLog.id.desc()).limit(limit)
    if tenant:
        stmt = stmt.where(WebhookLog.tenant_id == tenant)
    if webhook_type:
        stmt = stmt.where(WebhookLog.webhook_type.startswith(webhook_type, autoescape=True))

    with get_db_context() as db:
        rows = db.scalars(stmt).all()

        table = Table(title="Webhook Logs")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("When", style="cyan")
        table.add_column("Type")
        table.add_column("Status", justify="right")
        table.add_column("Tenant", style="dim")
        table.add_column("Error", style="red")

        for row in rows:
            status_style = "green" if row.status_code < 400 else "red"
            table.add_row(
                str(row.id),
                row.created_at.strftime("%Y-%m-%d %H:%M:%S") if row.created_at else "-",
                row.webhook_type,
                f"[{status_style}]{row.status_code}[/{status_style}]",
                row.tenant_id or "-",
                (row.error_message or "")[:60],
            )

    console.print(table)


# =============================================================================
# Health Commands
# =============================================================================


@app.command()
def breakers(
    url: str = typer.Option("http://localhost:8000", help="Webhook API base URL"),
):
    """Show circuit breaker state of the running API."""
    import httpx

    try:
        response = httpx.get(f"{url.rstrip('/')}/api/health/detailed", timeout=5.0)
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        console.print(f"[red]✗ Could not reach API: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Circuit Breakers")
    table.add_column("Provider", style="cyan")
    table.add_column("State")
    table.add_column("Calls", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Rejected", justify="right", style="yellow")

    for name, stats in data.get("circuit_breakers", {}).items():
        state_style = "green" if stats["state"] == "closed" else "red"
        table.add_row(
            name,
            f"[{state_style}]{stats['state']}[/{state_style}]",
            str(stats["total_calls"]),
            str(stats["failed_calls"]),
            str(stats["rejected_calls"]),
        )
    console.print(table)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8000", help="Webhook API base URL"),
):
    """Check database connectivity and the API health endpoint."""
    import httpx
    from sqlalchemy import text

    from shared.infrastructure.db import get_db_context

    table = Table(title="Service Health")
    table.add_column("Service", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Response Time", style="yellow")

    start = time.time()
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        table.add_row("Database", "✓ Healthy", f"{(time.time() - start) * 1000:.0f}ms")
    except Exception as e:
        table.add_row("Database", f"✗ {type(e).__name__}", "-")

    start = time.time()
    try:
        response = httpx.get(f"{url.rstrip('/')}/api/health", timeout=5.0)
        elapsed = (time.time() - start) * 1000
        if response.status_code == 200:
            table.add_row("Webhook API", "✓ Healthy", f"{elapsed:.0f}ms")
        else:
            table.add_row("Webhook API", f"✗ Status {response.status_code}", f"{elapsed:.0f}ms")
    except httpx.HTTPError as e:
        table.add_row("Webhook API", f"✗ {type(e).__name__}", "-")

    console.print(table)


@app.command()
def version():
    """Show version information."""
    from webhook_api import __version__

    table = Table(title="OrderZap Payments Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("Webhook API", __version__)
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()
