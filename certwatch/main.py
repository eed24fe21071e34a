"""
certwatch command line.

Monitors the certificates served for the configured domains and drives
renewal through the TLS terminator's ACME store when one gets close to
expiry. Every command logs to the configured log file and to stdout.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from config import ensure_directories, get_domain_records, get_primary_domain, parse_domains, settings
from core.acme_store import AcmeStoreError, get_acme_store
from core.cert_monitor import get_cert_monitor
from core.docker_service import docker_service
from core.reachability import get_reachability_prober
from core.renewal_orchestrator import ExhaustedRetriesError, get_renewal_orchestrator
from models.certificate import CertificateState, CertificateStatus, DomainRecord
from models.renewal import CheckReport

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

STATE_STYLES = {
    CertificateState.OK: "green",
    CertificateState.WARNING: "yellow",
    CertificateState.CRITICAL: "red",
    CertificateState.UNKNOWN: "magenta",
}

logger = logging.getLogger("certwatch")

app = typer.Typer(
    help="SSL certificate monitoring and renewal for a Traefik TLS terminator",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def setup_logging(log_file: str | None, log_level: str | None) -> None:
    """Log to stdout and, when set, append to log_file."""
    level_name = (log_level or "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise typer.BadParameter(
            f"Unknown log level: {log_level}, must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_certwatch_handler", False)]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    for handler in handlers:
        handler._certwatch_handler = True
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)


def _records(
    domains: Optional[List[str]], alert_days: Optional[int] = None, critical_days: Optional[int] = None
) -> list[DomainRecord]:
    try:
        records = get_domain_records(domains, alert_days, critical_days)
    except ValidationError as e:
        raise typer.BadParameter(f"Invalid domain: {e.errors()[0]['msg']}")
    if not records:
        raise typer.BadParameter("No domains configured, set DOMAIN or pass --domain")
    return records


def render_statuses(statuses: list[CertificateStatus]) -> None:
    table = Table(show_header=True, header_style="bold", box=box.ROUNDED)
    table.add_column("Domain")
    table.add_column("State")
    table.add_column("Days", justify="right")
    table.add_column("Expires")
    table.add_column("Issuer / Error")

    for status in statuses:
        state = "SKIPPED" if status.skipped else status.state.value.upper()
        style = "dim" if status.skipped else STATE_STYLES[status.state]
        table.add_row(
            status.domain,
            f"[{style}]{state}[/{style}]",
            "-" if status.days_remaining is None else str(status.days_remaining),
            status.not_after.strftime("%Y-%m-%d %H:%M") if status.not_after else "-",
            status.error or status.issuer or "-",
        )
    console.print(table)


def render_report(report: CheckReport) -> None:
    render_statuses(report.statuses)
    for domain, renewed in report.renewals.items():
        if renewed:
            console.print(f"[green]✓ Renewed certificate for {domain}[/green]")
        else:
            console.print(f"[red]✗ Renewal failed for {domain}[/red]")


# Commands

@app.callback()
def main(
    log_file: str = typer.Option(
        None, "-l", "--log-file",
        help="Log file, appended to (default LOG_FILE). Pass an empty value to log to stdout only",
    ),
    log_level: str = typer.Option(
        None, "--log-level",
        help="Log level (default LOG_LEVEL)",
    ),
) -> None:
    setup_logging(settings.log_file if log_file is None else log_file, log_level or settings.log_level)


@app.command(help="Inspect the configured domains once and renew critical certificates")
def check(
    domains: Optional[List[str]] = typer.Option(
        None, "-d", "--domain",
        help="Domain to check, repeatable (default DOMAIN)",
    ),
    alert_days: Optional[int] = typer.Option(
        None, "-a", "--alert-days", min=0,
        help="Days before expiry to warn (default ALERT_DAYS)",
    ),
    critical_days: Optional[int] = typer.Option(
        None, "-c", "--critical-days", min=0,
        help="Days before expiry to renew (default CRITICAL_DAYS)",
    ),
    renew: bool = typer.Option(
        True, "--renew/--no-renew",
        help="Renew certificates in the critical window",
    ),
) -> None:
    records = _records(domains, alert_days, critical_days)
    monitor = get_cert_monitor(renew_critical=renew)
    report = asyncio.run(monitor.run_once(records))
    render_report(report)
    raise typer.Exit(code=report.exit_code)


@app.command(help="Force certificate renewal for a domain")
def renew(
    domain: Optional[str] = typer.Argument(None, help="Domain to renew (default: first DOMAIN)"),
    max_attempts: Optional[int] = typer.Option(
        None, "--max-attempts", min=1,
        help="Renewal attempts (default MAX_RETRY_ATTEMPTS)",
    ),
    retry_delay: Optional[float] = typer.Option(
        None, "--retry-delay", min=0,
        help="Seconds between attempts (default RETRY_DELAY)",
    ),
    generation_timeout: Optional[float] = typer.Option(
        None, "--generation-timeout", min=0,
        help="Seconds to wait for the new certificate (default GENERATION_TIMEOUT)",
    ),
) -> None:
    record = _records([domain] if domain else [get_primary_domain()])[0]
    ensure_directories()
    orchestrator = get_renewal_orchestrator()

    try:
        result = asyncio.run(
            orchestrator.renew(
                record.name,
                max_attempts=max_attempts,
                retry_delay=retry_delay,
                generation_timeout=generation_timeout,
            )
        )
    except ExhaustedRetriesError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        if e.suggestion:
            console.print(f"  Suggestion: {e.suggestion}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]✓ Certificate renewal for {record.name} completed "
        f"after {result.attempt_count} attempt(s)[/green]"
    )


@app.command(help="Check the configured domains periodically until interrupted")
def monitor(
    domains: Optional[List[str]] = typer.Option(
        None, "-d", "--domain",
        help="Domain to monitor, repeatable (default DOMAIN)",
    ),
    interval: Optional[float] = typer.Option(
        None, "-i", "--interval", min=1,
        help="Seconds between checks (default MONITOR_INTERVAL)",
    ),
    once: bool = typer.Option(
        False, "--once",
        help="Run a single cycle and exit with its status, for cron",
    ),
) -> None:
    records = _records(domains)
    cert_monitor = get_cert_monitor()

    if once:
        report = asyncio.run(cert_monitor.run_once(records))
        render_report(report)
        raise typer.Exit(code=report.exit_code)

    logger.info(f"Starting certificate monitor for {', '.join(r.name for r in records)}")
    asyncio.run(cert_monitor.run_daemon(records, interval))


@app.command(help="Validate the ACME store")
def validate() -> None:
    store = get_acme_store()
    try:
        store.validate()
    except AcmeStoreError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        if e.suggestion:
            console.print(f"  Suggestion: {e.suggestion}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ ACME store {store.path} is valid[/green]")


@app.command(help="Back up the ACME store and rebuild it with a minimal valid structure")
def repair(
    email: Optional[str] = typer.Option(
        None, "-e", "--email",
        help="Account email for the rebuilt store (default ACME_EMAIL, then admin@<domain>)",
    ),
    force: bool = typer.Option(
        False, "--force",
        help="Rebuild even if the store validates",
    ),
) -> None:
    store = get_acme_store()
    if store.is_valid() and not force:
        console.print("ACME store is valid, nothing to repair (use --force to rebuild anyway)")
        return

    try:
        backup_path = store.backup()
    except OSError as e:
        console.print(f"[red]✗ Backup failed, store left untouched: {e}[/red]")
        raise typer.Exit(code=1)
    if backup_path:
        console.print(f"Backed up {store.path} to {backup_path}")

    try:
        store.repair(email or settings.acme_email or f"admin@{get_primary_domain()}")
    except AcmeStoreError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ ACME store {store.path} rebuilt[/green]")


@app.command(help="Back up the ACME store")
def backup() -> None:
    store = get_acme_store()
    try:
        backup_path = store.backup()
    except OSError as e:
        console.print(f"[red]✗ Backup failed: {e}[/red]")
        raise typer.Exit(code=1)

    if backup_path is None:
        console.print(f"[yellow]Nothing to back up, {store.path} does not exist[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Backed up {store.path} to {backup_path}[/green]")


@app.command(help="Show TLS terminator, ACME store and domain reachability status")
def status(
    domains: Optional[List[str]] = typer.Option(
        None, "-d", "--domain",
        help="Domain to diagnose, repeatable (default DOMAIN)",
    ),
) -> None:
    names = parse_domains(",".join(domains)) if domains else parse_domains(settings.domain)

    async def gather():
        terminator = await docker_service.describe()
        prober = get_reachability_prober()
        reachability = [await prober.diagnose(name) for name in names]
        return terminator, reachability

    terminator, reachability = asyncio.run(gather())

    def mark(value: Optional[bool]) -> str:
        if value is None:
            return "-"
        return "[green]yes[/green]" if value else "[red]no[/red]"

    table = Table(show_header=True, header_style="bold", box=box.ROUNDED, title="TLS terminator")
    table.add_column("Container")
    table.add_column("Status")
    table.add_column("Running")
    table.add_column("Healthy")
    table.add_column("API")
    table.add_column("ACME store")
    table.add_column("Uptime", justify="right")
    table.add_row(
        terminator.container_name,
        terminator.status,
        mark(terminator.running),
        mark(terminator.healthy),
        mark(terminator.api_reachable),
        mark(terminator.store_accessible),
        "-" if terminator.uptime_seconds is None else f"{terminator.uptime_seconds}s",
    )
    console.print(table)
    if terminator.health_error:
        console.print(f"  {terminator.health_error}")

    store = get_acme_store()
    try:
        certificates = store.list_certificates()
        console.print(f"ACME store {store.path}: {len(certificates)} certificate(s)")
        for cert in certificates:
            expires = cert.not_after.strftime("%Y-%m-%d") if cert.not_after else "unknown"
            console.print(f"  {cert.domain} ({cert.resolver}) expires {expires}")
    except AcmeStoreError as e:
        console.print(f"[yellow]ACME store {store.path}: {e.message}[/yellow]")

    table = Table(show_header=True, header_style="bold", box=box.ROUNDED, title="Reachability")
    table.add_column("Domain")
    table.add_column("DNS")
    table.add_column("Addresses")
    table.add_column("Port 80")
    table.add_column("Issues")
    for result in reachability:
        table.add_row(
            result.domain,
            mark(result.dns_resolves),
            ", ".join(result.ip_addresses) or "-",
            mark(result.port_80_open) if result.dns_resolves else "-",
            "; ".join(result.issues) or "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
