"""
Docker service for TLS terminator container management.

Provides async-safe wrapper around Docker SDK for the stop, kill,
start, status and log operations the renewal flow needs.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import docker
from docker.errors import APIError, NotFound

from config import settings
from core.health_checker import HealthChecker, health_checker
from core.interfaces import ProcessController
from models.certificate import TerminatorStatus

logger = logging.getLogger(__name__)


class DockerServiceError(Exception):
    """Base exception for Docker service errors."""

    def __init__(self, message: str, error_type: str, suggestion: str | None = None):
        self.message = message
        self.error_type = error_type
        self.suggestion = suggestion
        super().__init__(message)


class ContainerNotFoundError(DockerServiceError):
    """Container not found."""

    pass


class ContainerOperationError(DockerServiceError):
    """Error during container operation."""

    pass


class DockerUnavailableError(DockerServiceError):
    """Docker daemon not available."""

    pass


class DockerService(ProcessController):
    """Process controller for the TLS terminator running in Docker."""

    def __init__(
        self,
        container_name: str | None = None,
        checker: HealthChecker | None = None,
        client: docker.DockerClient | None = None,
    ):
        self.container_name = container_name or settings.traefik_container
        self.health_checker = checker or health_checker
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        """Lazy-load Docker client."""
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as e:
                raise DockerUnavailableError(
                    f"Cannot connect to Docker daemon: {e}",
                    error_type="docker_unavailable",
                    suggestion="Ensure Docker daemon is running and socket is accessible",
                )
        return self._client

    def _get_container(self):
        """Get the terminator container by name."""
        try:
            return self.client.containers.get(self.container_name)
        except NotFound:
            raise ContainerNotFoundError(
                f"Container '{self.container_name}' not found",
                error_type="container_not_found",
                suggestion="Ensure the container exists with 'docker compose up -d'",
            )
        except APIError as e:
            raise ContainerOperationError(
                f"Docker API error: {e}",
                error_type="docker_api_error",
                suggestion="Check Docker daemon status and permissions",
            )

    async def get_container_status(self) -> dict[str, Any]:
        """Get detailed container status."""
        return await asyncio.to_thread(self._get_container_status_sync)

    def _get_container_status_sync(self) -> dict[str, Any]:
        """Synchronous container status retrieval."""
        container = self._get_container()
        container.reload()  # Refresh container data

        attrs = container.attrs
        state = attrs.get("State", {})

        # Parse started_at timestamp
        started_at = None
        if state.get("StartedAt"):
            try:
                # Docker returns ISO format with nanoseconds
                started_str = state["StartedAt"].split(".")[0].replace("Z", "")
                started_at = datetime.fromisoformat(started_str).replace(tzinfo=timezone.utc)
            except (ValueError, IndexError):
                pass

        uptime_seconds = None
        if started_at and state.get("Running"):
            uptime_seconds = int((datetime.now(timezone.utc) - started_at).total_seconds())

        return {
            "container_id": container.short_id,
            "container_name": container.name,
            "status": state.get("Status", "unknown"),
            "running": state.get("Running", False),
            "started_at": started_at,
            "uptime_seconds": uptime_seconds,
            "health_status": state.get("Health", {}).get("Status", "unknown"),
            "exit_code": state.get("ExitCode"),
        }

    async def stop(self, timeout: int | None = None) -> bool:
        """
        Stop the container gracefully.

        Args:
            timeout: Seconds to wait for graceful stop

        Returns:
            True if the container is no longer running afterwards
        """
        timeout = timeout if timeout is not None else settings.traefik_stop_timeout
        logger.info(f"Stopping {self.container_name} container gracefully ({timeout}s timeout)...")
        return await asyncio.to_thread(self._stop_sync, timeout)

    def _stop_sync(self, timeout: int) -> bool:
        container = self._get_container()
        try:
            container.stop(timeout=timeout)
        except APIError as e:
            logger.warning(f"Graceful stop of {self.container_name} failed: {e}")
            return False
        container.reload()
        return container.status != "running"

    async def kill(self) -> None:
        """Force-stop the container."""
        logger.warning(f"Forcing stop of {self.container_name} container")
        await asyncio.to_thread(self._kill_sync)

    def _kill_sync(self) -> None:
        container = self._get_container()
        try:
            container.kill()
        except APIError as e:
            # Docker refuses to kill a container that already exited
            if "is not running" not in str(e):
                raise ContainerOperationError(
                    f"Failed to kill container: {e}",
                    error_type="docker_api_error",
                    suggestion="Inspect the container with 'docker inspect'",
                )

    async def start(self) -> None:
        """Start the container."""
        logger.info(f"Starting {self.container_name} container...")
        await asyncio.to_thread(self._start_sync)

    def _start_sync(self) -> None:
        container = self._get_container()
        try:
            container.start()
        except APIError as e:
            raise ContainerOperationError(
                f"Failed to start container '{self.container_name}': {e}",
                error_type="docker_api_error",
                suggestion="Check the container logs with 'docker logs'",
            )

    async def is_running(self) -> bool:
        """Check if the container is running."""
        try:
            status = await self.get_container_status()
            return status.get("running", False)
        except DockerServiceError:
            return False

    async def is_healthy(self) -> bool:
        """Check the terminator's ping endpoint."""
        healthy, _ = await self.health_checker.check_health_once()
        return healthy

    async def recent_logs(self, tail: int = 20) -> list[str]:
        """Recent container log lines."""
        try:
            logs = await self.get_container_logs(tail=tail)
        except DockerServiceError as e:
            return [f"<logs unavailable: {e.message}>"]
        return [line for line in logs.splitlines() if line.strip()]

    async def get_container_logs(self, tail: int = 50) -> str:
        """
        Get recent container logs.

        Args:
            tail: Number of lines to retrieve

        Returns:
            Log output as string
        """
        return await asyncio.to_thread(self._get_container_logs_sync, tail)

    def _get_container_logs_sync(self, tail: int) -> str:
        """Synchronous log retrieval."""
        container = self._get_container()
        logs = container.logs(tail=tail, timestamps=True)
        return logs.decode(errors="replace") if logs else ""

    async def store_accessible(self, path: str | None = None) -> bool:
        """Check the terminator can see its ACME storage."""
        path = path or settings.traefik_acme_path
        return await asyncio.to_thread(self._store_accessible_sync, path)

    def _store_accessible_sync(self, path: str) -> bool:
        try:
            container = self._get_container()
            exec_result = container.exec_run(cmd=["ls", path])
        except (DockerServiceError, APIError) as e:
            logger.debug(f"ACME storage check failed: {e}")
            return False
        return exec_result.exit_code == 0

    async def describe(self) -> TerminatorStatus:
        """Container state plus ping, API and ACME storage checks."""
        result = TerminatorStatus(container_name=self.container_name)
        try:
            status = await self.get_container_status()
        except DockerServiceError as e:
            result.status = e.error_type
            result.health_error = e.message
            return result

        result.running = status["running"]
        result.status = status["status"]
        result.uptime_seconds = status["uptime_seconds"]
        if not result.running:
            return result

        result.healthy, result.health_error = await self.health_checker.check_health_once()
        result.api_reachable = await self.health_checker.check_api()
        result.store_accessible = await self.store_accessible()
        return result


# Singleton instance
docker_service = DockerService()
