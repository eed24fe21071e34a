"""
Certificate inspector for served TLS certificates.

Connects to domain:443, reads the leaf certificate presented by the
peer and classifies how close it is to expiry.
"""

import asyncio
import ipaddress
import logging
import socket
import ssl
from datetime import datetime, timezone
from typing import Callable

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID

from config import settings
from core.interfaces import TLSProber
from models.certificate import CertificateState, CertificateStatus, DomainRecord

logger = logging.getLogger(__name__)

HTTPS_PORT = 443


class ProbeError(Exception):
    """Base exception for network probes."""

    def __init__(self, message: str, domain: str = None, suggestion: str = None):
        self.message = message
        self.domain = domain
        self.suggestion = suggestion
        super().__init__(message)


class UnreachableError(ProbeError):
    """TCP connect or TLS handshake did not complete."""

    pass


class NoCertificateError(ProbeError):
    """Peer completed the handshake without presenting a certificate."""

    pass


def is_loopback(domain: str) -> bool:
    """Check if a domain names the local host."""
    name = domain.strip().lower().rstrip(".")
    if name == "localhost" or name.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(name).is_loopback
    except ValueError:
        return False


def parse_certificate(data: bytes) -> dict:
    """
    Parse a PEM or DER certificate and extract details.

    Args:
        data: PEM- or DER-encoded certificate (first certificate of a PEM bundle)

    Returns:
        Dictionary with certificate details
    """
    if data.lstrip().startswith(b"-----BEGIN"):
        cert = x509.load_pem_x509_certificate(data)
    else:
        cert = x509.load_der_x509_certificate(data)

    issuer = ", ".join(f"{attr.oid._name}={attr.value}" for attr in cert.issuer)
    subject = ", ".join(f"{attr.oid._name}={attr.value}" for attr in cert.subject)

    alt_names = []
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        alt_names = [name.value for name in san_ext.value if isinstance(name, x509.DNSName)]
    except x509.ExtensionNotFound:
        pass

    return {
        "subject": subject,
        "issuer": issuer,
        "serial_number": format(cert.serial_number, "x"),
        "not_before": cert.not_valid_before_utc,
        "not_after": cert.not_valid_after_utc,
        "alt_names": alt_names,
        "fingerprint_sha256": cert.fingerprint(hashes.SHA256()).hex(),
    }


def days_until(not_after: datetime, now: datetime) -> int:
    """Whole days from now until not_after, floored (negative once expired)."""
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=timezone.utc)
    return (not_after - now).days


def classify(days_remaining: int, critical_days: int, alert_days: int) -> CertificateState:
    """Map days remaining onto OK / WARNING / CRITICAL."""
    if days_remaining < critical_days:
        return CertificateState.CRITICAL
    if days_remaining < alert_days:
        return CertificateState.WARNING
    return CertificateState.OK


class SocketTLSProber(TLSProber):
    """TLS prober using the standard socket and ssl modules."""

    async def fetch_certificate(self, host: str, port: int, timeout: float, verify: bool = False) -> bytes | None:
        return await asyncio.to_thread(self._fetch_sync, host, port, timeout, verify)

    def _fetch_sync(self, host: str, port: int, timeout: float, verify: bool) -> bytes | None:
        context = ssl.create_default_context()
        if not verify:
            # Expired or self-signed certificates still have to be readable
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        try:
            with socket.create_connection((host, port), timeout=timeout) as sock:
                with context.wrap_socket(sock, server_hostname=host) as tls:
                    return tls.getpeercert(binary_form=True)
        except ssl.SSLCertVerificationError as e:
            raise UnreachableError(
                f"TLS verification failed for {host}:{port}: {e.verify_message or e}",
                domain=host,
                suggestion="Check that the served certificate is trusted and matches the hostname",
            ) from e
        except (socket.timeout, TimeoutError) as e:
            raise UnreachableError(
                f"TLS handshake with {host}:{port} timed out after {timeout}s",
                domain=host,
                suggestion="Ensure the TLS terminator is running and reachable",
            ) from e
        except (OSError, ssl.SSLError) as e:
            raise UnreachableError(
                f"Cannot complete TLS handshake with {host}:{port}: {e}",
                domain=host,
                suggestion="Check DNS, firewall rules and the TLS terminator",
            ) from e


class CertInspector:
    """Reads and classifies the certificate served for a domain."""

    def __init__(
        self,
        prober: TLSProber | None = None,
        timeout: float | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.prober = prober or SocketTLSProber()
        self.timeout = timeout if timeout is not None else settings.probe_timeout
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def inspect(self, record: DomainRecord, timeout: float | None = None) -> CertificateStatus:
        """
        Inspect the certificate served for a domain.

        Args:
            record: Domain and thresholds
            timeout: Handshake timeout (default from settings)

        Raises:
            UnreachableError: Handshake did not complete
            NoCertificateError: Peer presented no certificate
        """
        domain = record.name
        checked_at = self._now()

        if is_loopback(domain):
            logger.info(f"Skipping certificate inspection for loopback domain {domain}")
            return CertificateStatus(
                domain=domain, state=CertificateState.UNKNOWN, skipped=True, checked_at=checked_at
            )

        der = await self.prober.fetch_certificate(
            domain, HTTPS_PORT, timeout if timeout is not None else self.timeout, verify=False
        )
        if not der:
            raise NoCertificateError(
                f"{domain} presented no certificate",
                domain=domain,
                suggestion="Check the TLS terminator router and certificate resolver for this domain",
            )

        info = parse_certificate(der)
        days_remaining = days_until(info["not_after"], checked_at)
        state = classify(days_remaining, record.critical_threshold_days, record.alert_threshold_days)

        return CertificateStatus(
            domain=domain,
            not_after=info["not_after"],
            days_remaining=days_remaining,
            state=state,
            issuer=info["issuer"],
            checked_at=checked_at,
        )

    async def inspect_safe(self, record: DomainRecord, timeout: float | None = None) -> CertificateStatus:
        """Inspect a domain, reporting probe failures as UNKNOWN instead of raising."""
        try:
            return await self.inspect(record, timeout)
        except ProbeError as e:
            logger.warning(f"Could not retrieve certificate information for {record.name}: {e.message}")
            return CertificateStatus(
                domain=record.name, state=CertificateState.UNKNOWN, error=e.message, checked_at=self._now()
            )
        except ValueError as e:
            # Unparseable certificate bytes
            logger.warning(f"Could not parse certificate served for {record.name}: {e}")
            return CertificateStatus(
                domain=record.name, state=CertificateState.UNKNOWN, error=str(e), checked_at=self._now()
            )

    async def verify(self, domain: str, timeout: float | None = None) -> bool:
        """
        Verify a domain serves a trusted certificate over a full handshake.

        Loopback domains always pass.
        """
        if is_loopback(domain):
            logger.info(f"Skipping certificate verification for {domain}")
            return True

        try:
            der = await self.prober.fetch_certificate(
                domain, HTTPS_PORT, timeout if timeout is not None else self.timeout, verify=True
            )
        except ProbeError as e:
            logger.warning(f"HTTPS connection verification failed for {domain}: {e.message}")
            return False

        if not der:
            logger.warning(f"HTTPS connection verification failed for {domain}: no certificate presented")
            return False

        logger.info(f"HTTPS connection to {domain} verified")
        return True


# Singleton instance
_cert_inspector: CertInspector | None = None


def get_cert_inspector() -> CertInspector:
    """Get the global certificate inspector instance."""
    global _cert_inspector
    if _cert_inspector is None:
        _cert_inspector = CertInspector()
    return _cert_inspector
