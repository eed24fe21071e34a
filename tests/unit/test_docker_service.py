"""
Unit tests for the Docker process controller.

The Docker client is a MagicMock; no daemon is needed.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from docker.errors import APIError, NotFound

from core.docker_service import ContainerNotFoundError, ContainerOperationError, DockerService


@pytest.fixture
def container():
    container = MagicMock()
    container.short_id = "abc123"
    container.name = "traefik"
    container.status = "running"
    container.attrs = {
        "State": {
            "Status": "running",
            "Running": True,
            "StartedAt": "2026-01-01T10:00:00.123456789Z",
            "ExitCode": 0,
        }
    }
    return container


@pytest.fixture
def checker():
    checker = MagicMock()
    checker.check_health_once = AsyncMock(return_value=(True, None))
    checker.check_api = AsyncMock(return_value=True)
    return checker


@pytest.fixture
def service(container, checker):
    client = MagicMock()
    client.containers.get.return_value = container
    return DockerService(container_name="traefik", checker=checker, client=client)


class TestContainerStatus:
    """Test status retrieval."""

    @pytest.mark.asyncio
    async def test_running_container(self, service):
        status = await service.get_container_status()
        assert status["running"] is True
        assert status["container_id"] == "abc123"
        assert status["uptime_seconds"] > 0

    @pytest.mark.asyncio
    async def test_missing_container(self, service):
        service.client.containers.get.side_effect = NotFound("No such container: traefik")
        with pytest.raises(ContainerNotFoundError):
            await service.get_container_status()
        assert await service.is_running() is False


class TestLifecycle:
    """Test stop, kill and start."""

    @pytest.mark.asyncio
    async def test_graceful_stop(self, service, container):
        def stop(timeout):
            container.status = "exited"

        container.stop.side_effect = stop
        assert await service.stop(30) is True
        container.stop.assert_called_once_with(timeout=30)

    @pytest.mark.asyncio
    async def test_stop_still_running(self, service, container):
        assert await service.stop(5) is False

    @pytest.mark.asyncio
    async def test_stop_api_error(self, service, container):
        container.stop.side_effect = APIError("timeout waiting for stop")
        assert await service.stop(5) is False

    @pytest.mark.asyncio
    async def test_kill_already_stopped(self, service, container):
        container.kill.side_effect = APIError("Container abc123 is not running")
        await service.kill()

    @pytest.mark.asyncio
    async def test_kill_failure(self, service, container):
        container.kill.side_effect = APIError("permission denied")
        with pytest.raises(ContainerOperationError):
            await service.kill()

    @pytest.mark.asyncio
    async def test_start_failure(self, service, container):
        container.start.side_effect = APIError("port is already allocated")
        with pytest.raises(ContainerOperationError):
            await service.start()


class TestDiagnostics:
    """Test logs and status aggregation."""

    @pytest.mark.asyncio
    async def test_recent_logs(self, service, container):
        container.logs.return_value = b"line one\nline two\n\n"
        assert await service.recent_logs(20) == ["line one", "line two"]
        container.logs.assert_called_once_with(tail=20, timestamps=True)

    @pytest.mark.asyncio
    async def test_recent_logs_without_container(self, service):
        service.client.containers.get.side_effect = NotFound("No such container")
        lines = await service.recent_logs()
        assert len(lines) == 1
        assert "unavailable" in lines[0]

    @pytest.mark.asyncio
    async def test_is_healthy_uses_ping(self, service, checker):
        checker.check_health_once.return_value = (False, "HTTP 503")
        assert await service.is_healthy() is False

    @pytest.mark.asyncio
    async def test_describe_running(self, service, container):
        container.exec_run.return_value = MagicMock(exit_code=0)

        status = await service.describe()

        assert status.running is True
        assert status.healthy is True
        assert status.api_reachable is True
        assert status.store_accessible is True
        container.exec_run.assert_called_once_with(cmd=["ls", "/letsencrypt/acme.json"])

    @pytest.mark.asyncio
    async def test_describe_missing_container(self, service, checker):
        service.client.containers.get.side_effect = NotFound("No such container")

        status = await service.describe()

        assert status.running is False
        assert status.status == "container_not_found"
        checker.check_health_once.assert_not_called()
