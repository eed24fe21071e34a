"""
Certificate renewal orchestrator.

Drives one renewal for a domain through a fixed sequence of steps per
attempt (pre-check, backup, validate-or-repair, invalidate, restart,
await issuance) and retries the whole attempt with a fixed delay.

Only one orchestrator may run against a given ACME store at a time.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from config import settings
from core.acme_store import AcmeStore, AcmeStoreError, get_acme_store
from core.cert_inspector import CertInspector, ProbeError, get_cert_inspector
from core.docker_service import docker_service
from core.interfaces import ProcessController
from core.reachability import ReachabilityProber, get_reachability_prober
from core.retry import ClockFunc, SleepFunc, poll_until
from models.renewal import RenewalAttempt, RenewalOutcome, RenewalResult, RenewalStep

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("certwatch.audit")

ISSUANCE_POLL_INTERVAL = 10.0
RESTART_INITIAL_DELAY = 2.0
RESTART_MAX_DELAY = 10.0
DIAGNOSTIC_LOG_LINES = 20
ISSUANCE_LOG_KEYWORDS = ("acme", "certificate")


class RenewalError(Exception):
    """Base exception for renewal failures."""

    def __init__(self, message: str, domain: str = None, step: RenewalStep = None, suggestion: str = None):
        self.message = message
        self.domain = domain
        self.step = step
        self.suggestion = suggestion
        super().__init__(message)


class StoreWriteFailedError(RenewalError):
    """ACME store could not be backed up, repaired or rewritten."""

    pass


class ProcessRestartFailedError(RenewalError):
    """TLS terminator did not come back running and healthy."""

    pass


class IssuanceTimeoutError(RenewalError):
    """No verified certificate appeared within the generation timeout."""

    pass


class ExhaustedRetriesError(RenewalError):
    """Every renewal attempt failed."""

    def __init__(self, message: str, domain: str, attempts: list[RenewalAttempt], last_error: RenewalError):
        super().__init__(
            message,
            domain=domain,
            step=last_error.step if last_error else None,
            suggestion=last_error.suggestion if last_error else None,
        )
        self.attempts = attempts
        self.last_error = last_error


class RenewalOrchestrator:
    """
    End-to-end certificate renewal with retries.

    Every step failure is logged with domain, attempt and step before
    the attempt is retried or the run gives up.
    """

    def __init__(
        self,
        store: AcmeStore | None = None,
        controller: ProcessController | None = None,
        inspector: CertInspector | None = None,
        prober: ReachabilityProber | None = None,
        *,
        backup_dir: str | None = None,
        retain_count: int | None = None,
        account_email: str | None = None,
        stop_timeout: int | None = None,
        restart_timeout: float | None = None,
        rate_limit_threshold: int | None = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = time.monotonic,
    ):
        self.store = store or get_acme_store()
        self.controller = controller or docker_service
        self.inspector = inspector or get_cert_inspector()
        self.prober = prober or get_reachability_prober()
        self.backup_dir = backup_dir or settings.backup_dir
        self.retain_count = retain_count if retain_count is not None else settings.backup_retain_count
        self.account_email = account_email if account_email is not None else settings.acme_email
        self.stop_timeout = stop_timeout if stop_timeout is not None else settings.traefik_stop_timeout
        self.restart_timeout = restart_timeout if restart_timeout is not None else settings.traefik_restart_timeout
        self.rate_limit_threshold = (
            rate_limit_threshold if rate_limit_threshold is not None else settings.rate_limit_threshold
        )
        self._sleep = sleep
        self._clock = clock

    async def renew(
        self,
        domain: str,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        generation_timeout: float | None = None,
    ) -> RenewalResult:
        """
        Renew the certificate for a domain.

        Args:
            domain: Domain whose certificate entry is replaced
            max_attempts: Whole-cycle attempts (default MAX_RETRY_ATTEMPTS)
            retry_delay: Seconds between attempts (default RETRY_DELAY)
            generation_timeout: Seconds to wait for the new certificate (default GENERATION_TIMEOUT)

        Returns:
            RenewalResult for the successful run

        Raises:
            ExhaustedRetriesError: All attempts failed; carries the attempts and last step error
        """
        max_attempts = max_attempts if max_attempts is not None else settings.max_retry_attempts
        retry_delay = retry_delay if retry_delay is not None else settings.retry_delay
        generation_timeout = generation_timeout if generation_timeout is not None else settings.generation_timeout
        max_attempts = max(1, max_attempts)

        logger.info(f"Starting certificate renewal for {domain} (max {max_attempts} attempts)")
        attempts: list[RenewalAttempt] = []
        last_error: RenewalError | None = None

        for attempt_number in range(1, max_attempts + 1):
            attempt = RenewalAttempt(domain=domain, attempt_number=attempt_number)
            attempts.append(attempt)
            logger.info(f"Renewal attempt {attempt_number}/{max_attempts} for {domain}")

            try:
                await self._run_attempt(attempt, generation_timeout)
            except RenewalError as e:
                last_error = e
                self._finish(attempt, RenewalOutcome.FAILED, error=e.message)
                logger.error(
                    f"Renewal attempt {attempt_number}/{max_attempts} for {domain} failed "
                    f"at step {e.step.value if e.step else 'unknown'}: {e.message}"
                )
                if e.suggestion:
                    logger.info(f"Suggestion: {e.suggestion}")

                if attempt_number < max_attempts:
                    logger.info(f"Waiting {retry_delay:.0f}s before next attempt...")
                    await self._sleep(retry_delay)
                continue

            self._finish(attempt, RenewalOutcome.SUCCESS)
            logger.info(f"Certificate renewal for {domain} successful on attempt {attempt_number}")
            return RenewalResult(domain=domain, success=True, attempts=attempts)

        logger.error(f"All {max_attempts} renewal attempts failed for {domain}")
        raise ExhaustedRetriesError(
            f"Certificate renewal for {domain} failed after {max_attempts} attempts: {last_error.message}",
            domain=domain,
            attempts=attempts,
            last_error=last_error,
        )

    def _finish(self, attempt: RenewalAttempt, outcome: RenewalOutcome, error: str | None = None) -> None:
        attempt.outcome = outcome
        attempt.error = error
        attempt.finished_at = datetime.now(timezone.utc)
        audit_logger.info(attempt.audit_line())

    async def _run_attempt(self, attempt: RenewalAttempt, generation_timeout: float) -> None:
        domain = attempt.domain

        attempt.step = RenewalStep.PRE_CHECK
        await self._pre_check(domain)

        attempt.step = RenewalStep.BACKUP
        backup_path = self._backup(domain)
        attempt.backup_path = str(backup_path) if backup_path else None

        attempt.step = RenewalStep.VALIDATE
        attempt.repaired = self._validate_or_repair(domain)

        attempt.step = RenewalStep.INVALIDATE
        self._invalidate(domain)

        attempt.step = RenewalStep.RESTART
        await self.restart_terminator(domain)

        attempt.step = RenewalStep.AWAIT_ISSUANCE
        await self._await_issuance(domain, generation_timeout)

    async def _pre_check(self, domain: str) -> None:
        """Advisory checks; failures are logged and never abort the attempt."""
        try:
            await self.prober.probe(domain)
            logger.info(f"✓ {domain} resolves and port 80 is reachable")
        except ProbeError as e:
            logger.warning(f"Domain {domain} is not accessible, renewal may fail: {e.message}")

        count = self.store.certificate_count()
        if count > self.rate_limit_threshold:
            logger.warning(f"Multiple certificates detected ({count}), potential rate limit concern")

    def _backup(self, domain: str):
        try:
            return self.store.backup(self.backup_dir, self.retain_count)
        except OSError as e:
            raise StoreWriteFailedError(
                f"Failed to back up ACME store: {e}",
                domain=domain,
                step=RenewalStep.BACKUP,
                suggestion="Check BACKUP_DIR exists and is writable",
            ) from e

    def _validate_or_repair(self, domain: str) -> bool:
        """Returns True when the store had to be rebuilt."""
        try:
            self.store.validate()
            return False
        except AcmeStoreError as e:
            logger.warning(f"ACME store invalid for {domain} renewal: {e.message}")

        email = self.account_email or f"admin@{domain}"
        try:
            self.store.repair(email)
        except AcmeStoreError as e:
            raise StoreWriteFailedError(
                f"Failed to repair ACME store: {e.message}",
                domain=domain,
                step=RenewalStep.VALIDATE,
                suggestion=e.suggestion,
            ) from e
        return True

    def _invalidate(self, domain: str) -> None:
        try:
            self.store.remove_certificate(domain)
        except AcmeStoreError as e:
            raise StoreWriteFailedError(
                f"Failed to modify ACME JSON file: {e.message}",
                domain=domain,
                step=RenewalStep.INVALIDATE,
                suggestion=e.suggestion,
            ) from e

    async def restart_terminator(self, domain: str | None = None) -> None:
        """
        Stop (forcing if needed) and start the terminator, then wait for running+healthy.

        Raises:
            ProcessRestartFailedError: Not running and healthy within the restart timeout
        """
        logger.info("Restarting TLS terminator with monitoring...")
        try:
            if not await self.controller.stop(self.stop_timeout):
                logger.warning("Graceful stop failed, forcing stop...")
                await self.controller.kill()
            await self.controller.start()
        except Exception as e:
            raise ProcessRestartFailedError(
                f"Failed to restart TLS terminator: {e}",
                domain=domain,
                step=RenewalStep.RESTART,
                suggestion="Check the container exists and the Docker daemon is reachable",
            ) from e

        async def running_and_healthy() -> bool:
            return await self.controller.is_running() and await self.controller.is_healthy()

        ready = await poll_until(
            running_and_healthy,
            timeout=self.restart_timeout,
            initial_delay=RESTART_INITIAL_DELAY,
            multiplier=2.0,
            max_delay=RESTART_MAX_DELAY,
            retry_on=(Exception,),
            sleep=self._sleep,
            clock=self._clock,
            description="TLS terminator running and healthy",
        )
        if not ready:
            logger.error(f"TLS terminator failed to start properly, last {DIAGNOSTIC_LOG_LINES} log lines:")
            for line in await self.controller.recent_logs(DIAGNOSTIC_LOG_LINES):
                logger.error(f"  {line}")
            raise ProcessRestartFailedError(
                f"TLS terminator not running and healthy after {self.restart_timeout:.0f}s",
                domain=domain,
                step=RenewalStep.RESTART,
                suggestion="Inspect the terminator logs for configuration or ACME errors",
            )

        logger.info("✓ TLS terminator is running and healthy")

    async def _await_issuance(self, domain: str, generation_timeout: float) -> None:
        logger.info(f"Waiting for certificate generation for {domain}...")

        async def issued() -> bool:
            await self._log_issuance_activity()
            entry = self.store.find_certificate(domain)
            if entry is None:
                return False
            logger.info("Certificate found in ACME storage")
            not_after = self.store.entry_expiry(entry)
            if not_after is not None and not_after <= datetime.now(timezone.utc):
                logger.warning(f"Stored certificate for {domain} is already expired, waiting for a new one")
                return False
            return await self.inspector.verify(domain)

        if not await poll_until(
            issued,
            timeout=generation_timeout,
            initial_delay=ISSUANCE_POLL_INTERVAL,
            multiplier=1.0,
            max_delay=ISSUANCE_POLL_INTERVAL,
            sleep=self._sleep,
            clock=self._clock,
            description=f"certificate for {domain}",
        ):
            raise IssuanceTimeoutError(
                f"Certificate generation timed out after {generation_timeout:.0f}s",
                domain=domain,
                step=RenewalStep.AWAIT_ISSUANCE,
                suggestion="Check the terminator logs for ACME challenge errors and Let's Encrypt rate limits",
            )

        logger.info(f"Certificate generation for {domain} completed and verified")

    async def _log_issuance_activity(self) -> None:
        """Surface the terminator's recent ACME log lines at debug level."""
        if not logger.isEnabledFor(logging.DEBUG):
            return
        for line in await self.controller.recent_logs(DIAGNOSTIC_LOG_LINES):
            if any(keyword in line.lower() for keyword in ISSUANCE_LOG_KEYWORDS):
                logger.debug(f"  terminator: {line}")


# Singleton instance
_renewal_orchestrator: RenewalOrchestrator | None = None


def get_renewal_orchestrator() -> RenewalOrchestrator:
    """Get the global renewal orchestrator instance."""
    global _renewal_orchestrator
    if _renewal_orchestrator is None:
        _renewal_orchestrator = RenewalOrchestrator()
    return _renewal_orchestrator
