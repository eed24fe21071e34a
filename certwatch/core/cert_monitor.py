"""
Certificate monitor loop.

Inspects every configured domain in turn and renews the ones that
crossed the critical threshold. Runs once (cron mode) or as a daemon
on an APScheduler interval trigger.
"""

import asyncio
import logging
import signal
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from core.acme_store import AcmeStore, AcmeStoreError, get_acme_store
from core.cert_inspector import CertInspector, get_cert_inspector
from core.docker_service import DockerService, docker_service
from core.renewal_orchestrator import RenewalError, RenewalOrchestrator, get_renewal_orchestrator
from models.certificate import CertificateState, CertificateStatus, DomainRecord
from models.renewal import CheckReport

logger = logging.getLogger(__name__)


def format_status_table(statuses: list[CertificateStatus]) -> list[str]:
    """Fixed-width summary lines for the log."""
    lines = [f"{'DOMAIN':<40} {'STATE':<9} {'DAYS':>5}  EXPIRES"]
    for status in statuses:
        days = "-" if status.days_remaining is None else str(status.days_remaining)
        expires = status.not_after.strftime("%Y-%m-%d %H:%M") if status.not_after else "-"
        state = "SKIPPED" if status.skipped else status.state.value.upper()
        lines.append(f"{status.domain:<40} {state:<9} {days:>5}  {expires}")
    return lines


class CertMonitor:
    """
    Periodic certificate inspection and renewal.

    Domains are handled strictly one at a time so at most one restart
    of the shared TLS terminator is in flight.
    """

    def __init__(
        self,
        inspector: CertInspector | None = None,
        orchestrator: RenewalOrchestrator | None = None,
        store: AcmeStore | None = None,
        terminator: DockerService | None = None,
        renew_critical: bool = True,
    ):
        self.inspector = inspector or get_cert_inspector()
        self._orchestrator = orchestrator
        self.store = store
        self.terminator = terminator
        self.renew_critical = renew_critical
        self.scheduler = AsyncIOScheduler()
        self._started = False
        self._stop_event: asyncio.Event | None = None
        self._cycle_lock: asyncio.Lock | None = None
        self._stopping = False

    @property
    def orchestrator(self) -> RenewalOrchestrator:
        """Renewal orchestrator, created on first renewal."""
        if self._orchestrator is None:
            self._orchestrator = get_renewal_orchestrator()
        return self._orchestrator

    async def run_once(self, domains: list[DomainRecord]) -> CheckReport:
        """
        Inspect every domain sequentially, renewing critical ones.

        Returns:
            CheckReport with the final status per domain
        """
        report = CheckReport()
        logger.info(f"Starting SSL health check for {len(domains)} domain(s)")

        await self._check_terminator()
        self._check_store()

        for record in domains:
            status = await self.inspector.inspect_safe(record)
            logger.info(status.summary())

            if status.state == CertificateState.CRITICAL and self.renew_critical:
                logger.warning(
                    f"CRITICAL: Certificate for {record.name} expires in {status.days_remaining} days, "
                    "attempting automatic renewal"
                )
                renewed = await self._renew(record.name)
                report.renewals[record.name] = renewed
                if renewed:
                    status = await self.inspector.inspect_safe(record)
                    logger.info(f"After renewal: {status.summary()}")

            report.statuses.append(status)

        for line in format_status_table(report.statuses):
            logger.info(line)

        failing = [s.domain for s in report.statuses if s.is_failure]
        if failing:
            logger.error(f"SSL health check completed with failures: {', '.join(failing)}")
        else:
            logger.info("SSL health check completed")
        return report

    async def _renew(self, domain: str) -> bool:
        try:
            await self.orchestrator.renew(domain)
            return True
        except RenewalError as e:
            logger.error(f"Automatic renewal failed for {domain}: {e.message}")
            return False

    async def _check_terminator(self) -> None:
        """Advisory terminator status, logged only."""
        if self.terminator is None:
            return
        if not await self.terminator.is_running():
            logger.warning(f"{self.terminator.container_name} container is not running")
            return
        if not await self.terminator.is_healthy():
            logger.warning("TLS terminator health check failed")
            return
        logger.info("✓ TLS terminator is running and healthy")

    def _check_store(self) -> None:
        """Advisory ACME storage inventory, logged only."""
        if self.store is None:
            return
        try:
            certificates = self.store.list_certificates()
        except AcmeStoreError as e:
            logger.warning(f"Cannot read ACME storage: {e.message}")
            return

        if not certificates:
            logger.warning("No certificates found in ACME storage")
            return

        logger.info(f"✓ Found {len(certificates)} certificates in ACME storage")
        for cert in certificates:
            expires = cert.not_after.strftime("%Y-%m-%d") if cert.not_after else "unknown"
            logger.info(f"  {cert.domain} expires: {expires}")

    async def _run_cycle(self, domains: list[DomainRecord]) -> None:
        """One daemon cycle; failures are logged and never stop the loop."""
        if self._stopping:
            return
        async with self._cycle_lock:
            try:
                report = await self.run_once(domains)
                logger.info(f"Monitor cycle complete (exit code {report.exit_code})")
            except Exception as e:
                logger.exception(f"Error in monitor cycle: {e}")

    async def start(self, domains: list[DomainRecord], interval: float | None = None) -> None:
        """Schedule the monitor cycle; the first cycle runs immediately."""
        if self._started:
            logger.warning("Certificate monitor already started")
            return

        interval = interval if interval is not None else settings.monitor_interval
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._stopping = False

        self.scheduler.add_job(
            self._run_cycle,
            IntervalTrigger(seconds=interval),
            args=[domains],
            id="cert_monitor_cycle",
            name="Certificate Monitor Cycle",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.start()
        self._started = True
        logger.info(f"Certificate monitor started, checking every {interval:.0f}s")

    def request_stop(self) -> None:
        """Ask the daemon to stop after the in-flight cycle."""
        logger.info("Shutdown requested, stopping after the current cycle")
        self._stopping = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop scheduling and wait for an in-flight cycle to finish."""
        if not self._started:
            return
        self._stopping = True
        self.scheduler.shutdown(wait=False)
        self._started = False
        async with self._cycle_lock:
            pass
        logger.info("Certificate monitor stopped")

    async def run_daemon(self, domains: list[DomainRecord], interval: float | None = None) -> None:
        """Run until SIGINT/SIGTERM."""
        await self.start(domains, interval)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug(f"Cannot install handler for {sig.name}: {e}")

        try:
            await self._stop_event.wait()
        finally:
            await self.stop()


def get_cert_monitor(renew_critical: bool = True) -> CertMonitor:
    """Monitor wired to the configured store and terminator."""
    return CertMonitor(
        store=get_acme_store(),
        terminator=docker_service,
        renew_critical=renew_critical,
    )
