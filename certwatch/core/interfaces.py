"""
Collaborator interfaces.

The renewal and inspection logic only talks to the TLS terminator and to
remote endpoints through these seams, so tests can inject fakes.
"""

from abc import ABC, abstractmethod


class ProcessController(ABC):
    """Lifecycle control over the TLS-terminating process."""

    @abstractmethod
    async def stop(self, timeout: int) -> bool:
        """Request a graceful stop; True if the process stopped within timeout."""

    @abstractmethod
    async def kill(self) -> None:
        """Force-stop the process."""

    @abstractmethod
    async def start(self) -> None:
        """Start the process."""

    @abstractmethod
    async def is_running(self) -> bool:
        """Whether the process is running."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Whether the process answers its health endpoint."""

    async def recent_logs(self, tail: int = 20) -> list[str]:
        """Recent log lines for diagnostics."""
        return []


class TLSProber(ABC):
    """Fetches the leaf certificate presented by a TLS endpoint."""

    @abstractmethod
    async def fetch_certificate(self, host: str, port: int, timeout: float, verify: bool = False) -> bytes | None:
        """
        Complete a TLS handshake and return the peer leaf certificate.

        Returns:
            DER bytes, or None if the peer presented no certificate
        """
