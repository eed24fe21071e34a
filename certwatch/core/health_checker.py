"""
Health verification for the TLS terminator.

HTTP checks against the terminator's ping endpoint and its API
services endpoint, used after restarts and for diagnostics.
"""

import logging
from typing import Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class HealthChecker:
    """Check the terminator's ping and API endpoints."""

    def __init__(
        self,
        ping_url: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.ping_url = ping_url or settings.traefik_ping_url
        self.api_url = api_url or settings.traefik_api_url
        self._transport = transport

    async def _get(self, url: str, timeout: float) -> tuple[bool, Optional[str]]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(url, timeout=timeout)

                if response.status_code == 200:
                    return True, None
                return False, f"HTTP {response.status_code}"

        except httpx.TimeoutException as e:
            return False, f"Timeout: {e}"

        except httpx.RequestError as e:
            return False, str(e)

    async def check_health_once(self, timeout: float = 5.0) -> tuple[bool, Optional[str]]:
        """
        Single ping check without retries.

        Returns:
            Tuple of (is_healthy, error_message)
        """
        healthy, error = await self._get(self.ping_url, timeout)
        if not healthy:
            logger.debug(f"Health check against {self.ping_url} failed: {error}")
        return healthy, error

    async def check_api(self, timeout: float = 5.0) -> bool:
        """Whether the services API endpoint answers."""
        ok, error = await self._get(self.api_url, timeout)
        if ok:
            logger.info("✓ API endpoint accessible")
        else:
            logger.debug(f"API endpoint {self.api_url} not accessible: {error}")
        return ok


# Singleton instance
health_checker = HealthChecker()
