"""
Global test fixtures.

Fakes for the terminator process, the TLS endpoint and the clock, plus
helpers that build real certificates and ACME stores on disk so unit
tests never touch Docker or the network.
"""

import base64
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

sys.path.insert(0, str(Path(__file__).parent.parent / "certwatch"))

from core.interfaces import ProcessController, TLSProber  # noqa: E402


def build_certificate(
    common_name: str = "example.com",
    days: float = 90,
    not_after: datetime | None = None,
    issuer_cn: str = "Test CA",
) -> x509.Certificate:
    """Self-signed certificate expiring in `days` days (plus a margin so the floor is stable)."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    not_after = not_after or now + timedelta(days=days, hours=12)
    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=365))
        .not_valid_after(not_after)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .sign(key, hashes.SHA256())
    )


def cert_der(common_name: str = "example.com", days: float = 90) -> bytes:
    return build_certificate(common_name, days).public_bytes(serialization.Encoding.DER)


def cert_pem(common_name: str = "example.com", days: float = 90) -> bytes:
    return build_certificate(common_name, days).public_bytes(serialization.Encoding.PEM)


def store_entry(domain: str, days: float = 90) -> dict:
    """Certificate entry the way Traefik writes it into acme.json."""
    return {
        "domain": {"main": domain, "sans": [f"www.{domain}"]},
        "certificate": base64.b64encode(cert_pem(domain, days)).decode(),
        "key": base64.b64encode(b"not-a-real-key").decode(),
        "Store": "default",
    }


def valid_store(resolver: str = "letsencrypt", certificates: list | None = None) -> dict:
    return {
        resolver: {
            "Account": {
                "Email": "ops@example.com",
                "Registration": {"body": {"status": "valid"}, "uri": "https://acme.test/acct/1"},
                "PrivateKey": "a2V5",
                "KeyType": "4096",
            },
            "Certificates": certificates or [],
        }
    }


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeController(ProcessController):
    """Records lifecycle calls; state is set by the test."""

    def __init__(self, stop_result=True, running=True, healthy=True, on_start=None, start_error=None, log_lines=None):
        self.stop_result = stop_result
        self.running = running
        self.healthy = healthy
        self.on_start = on_start
        self.start_error = start_error
        self.calls: list[str] = []
        self.log_lines = log_lines if log_lines is not None else ["level=error msg=\"unable to obtain ACME certificate\""]
        self.log_requests = 0

    async def stop(self, timeout: int) -> bool:
        self.calls.append("stop")
        return self.stop_result

    async def kill(self) -> None:
        self.calls.append("kill")

    async def start(self) -> None:
        self.calls.append("start")
        if self.start_error:
            raise self.start_error
        if self.on_start:
            self.on_start()

    async def is_running(self) -> bool:
        return self.running

    async def is_healthy(self) -> bool:
        return self.healthy

    async def recent_logs(self, tail: int = 20) -> list[str]:
        self.log_requests += 1
        return list(self.log_lines)


class FakeTLSProber(TLSProber):
    """Serves canned certificates (or raises canned errors) per host."""

    def __init__(self, responses: dict | None = None):
        self.responses = responses or {}
        self.calls: list[tuple[str, bool]] = []

    async def fetch_certificate(self, host: str, port: int, timeout: float, verify: bool = False) -> bytes | None:
        self.calls.append((host, verify))
        response = self.responses.get(host)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_controller():
    return FakeController()


@pytest.fixture
def fake_prober():
    return FakeTLSProber()


@pytest.fixture
def acme_path(tmp_path):
    """Path of a valid acme.json with no certificates."""
    path = tmp_path / "letsencrypt" / "acme.json"
    path.parent.mkdir()
    path.write_text(json.dumps(valid_store(), indent=2))
    path.chmod(0o600)
    return path


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / "backups"
