"""
Domain reachability checks ahead of renewal.

DNS resolution and a TCP connect on the HTTP-01 challenge port.
Results are advisory: DNS-01 renewals do not need port 80 at all.
"""

import asyncio
import logging
import socket

from config import settings
from core.cert_inspector import ProbeError
from models.certificate import ReachabilityResult

logger = logging.getLogger(__name__)

HTTP_CHALLENGE_PORT = 80


class DnsFailureError(ProbeError):
    """Domain does not resolve."""

    pass


class PortUnreachableError(ProbeError):
    """Challenge port refused the connection or timed out."""

    pass


class ReachabilityProber:
    """Advisory DNS and port 80 checks for a domain."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.probe_timeout

    async def check_domain_dns(self, domain: str) -> tuple[bool, list[str]]:
        """
        Check if domain resolves in DNS.

        Returns (resolves, ip_addresses); a lookup slower than the
        timeout counts as not resolving.
        """
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(socket.getaddrinfo, domain, None), timeout=self.timeout
            )
            ips = sorted(set(addr[4][0] for addr in result))
            return bool(ips), ips
        except asyncio.TimeoutError:
            logger.warning(f"DNS lookup for {domain} timed out after {self.timeout}s")
            return False, []
        except (socket.gaierror, UnicodeError):
            return False, []

    async def check_port_accessible(self, domain: str, port: int, timeout: float | None = None) -> bool:
        """Check if a port is accessible on the domain."""
        timeout = timeout if timeout is not None else self.timeout

        def check():
            try:
                with socket.create_connection((domain, port), timeout=timeout):
                    return True
            except OSError:
                return False

        return await asyncio.to_thread(check)

    async def probe(self, domain: str) -> ReachabilityResult:
        """
        Verify DNS resolution and port 80 reachability.

        Raises:
            DnsFailureError: Domain does not resolve
            PortUnreachableError: Port 80 refused or timed out
        """
        resolves, ips = await self.check_domain_dns(domain)
        if not resolves:
            raise DnsFailureError(
                f"DNS resolution failed for {domain}",
                domain=domain,
                suggestion="Ensure a DNS A/AAAA record exists for the domain",
            )

        if not await self.check_port_accessible(domain, HTTP_CHALLENGE_PORT):
            raise PortUnreachableError(
                f"Port {HTTP_CHALLENGE_PORT} not reachable on {domain}",
                domain=domain,
                suggestion="Ensure the firewall allows inbound HTTP for the ACME HTTP-01 challenge",
            )

        return ReachabilityResult(domain=domain, dns_resolves=True, ip_addresses=ips, port_80_open=True)

    async def diagnose(self, domain: str) -> ReachabilityResult:
        """Run both checks without raising, collecting issues."""
        result = ReachabilityResult(domain=domain)

        result.dns_resolves, result.ip_addresses = await self.check_domain_dns(domain)
        if not result.dns_resolves:
            result.issues.append("Domain does not resolve in DNS")
            return result

        result.port_80_open = await self.check_port_accessible(domain, HTTP_CHALLENGE_PORT)
        if not result.port_80_open:
            result.issues.append("Port 80 is not accessible (required for HTTP-01 challenge)")

        return result


# Singleton instance
_reachability_prober: ReachabilityProber | None = None


def get_reachability_prober() -> ReachabilityProber:
    """Get the global reachability prober instance."""
    global _reachability_prober
    if _reachability_prober is None:
        _reachability_prober = ReachabilityProber()
    return _reachability_prober
