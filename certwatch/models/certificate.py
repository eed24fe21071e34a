"""
Certificate models for expiry monitoring.

Provides Pydantic models for monitored domains, live certificate
status and the certificate entries held in the ACME store.
"""

import ipaddress
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9.-]*[a-z0-9])?$")


class CertificateState(str, Enum):
    """Expiry classification of a served certificate."""
    OK = "ok"                 # Outside the alert window
    WARNING = "warning"       # Inside the alert window
    CRITICAL = "critical"     # Inside the critical window, renewal needed
    UNKNOWN = "unknown"       # Not inspected or probe failed


class DomainRecord(BaseModel):
    """A monitored domain with its expiry thresholds."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=253, description="Domain name to inspect")
    critical_threshold_days: int = Field(default=7, ge=0, description="Below this many days the state is CRITICAL")
    alert_threshold_days: int = Field(default=30, ge=0, description="Below this many days the state is WARNING")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate domain format; IP literals are kept in canonical form."""
        v = v.strip().lower().rstrip(".")
        try:
            address = ipaddress.ip_address(v)
        except ValueError:
            address = None
        if address is not None:
            return str(address)
        if not DOMAIN_PATTERN.match(v):
            raise ValueError(f"Invalid domain format: {v}")
        if ".." in v:
            raise ValueError("Domain cannot contain consecutive dots")
        return v


class CertificateStatus(BaseModel):
    """
    Point-in-time status of the certificate served for a domain.

    Computed fresh on every inspection and never persisted.
    """
    domain: str = Field(..., description="Inspected domain")
    not_after: Optional[datetime] = Field(None, description="Leaf certificate expiry")
    days_remaining: Optional[int] = Field(None, description="Whole days until expiry, floored")
    state: CertificateState = Field(default=CertificateState.UNKNOWN)
    issuer: Optional[str] = Field(None, description="Certificate issuer (CA)")
    skipped: bool = Field(default=False, description="Inspection skipped for a loopback domain")
    error: Optional[str] = Field(None, description="Probe error when the state is UNKNOWN")
    checked_at: datetime = Field(..., description="When the inspection ran")

    @property
    def is_failure(self) -> bool:
        """Whether this status should fail a check run."""
        if self.state == CertificateState.CRITICAL:
            return True
        return self.state == CertificateState.UNKNOWN and not self.skipped

    def summary(self) -> str:
        """One-line human summary."""
        if self.skipped:
            return f"{self.domain}: inspection skipped (loopback)"
        if self.state == CertificateState.UNKNOWN:
            return f"{self.domain}: UNKNOWN ({self.error or 'no data'})"
        return f"{self.domain}: {self.state.value.upper()} ({self.days_remaining} days remaining)"


class StoredCertificate(BaseModel):
    """A certificate entry found in the ACME store."""

    resolver: str = Field(..., description="Certificate resolver section holding the entry")
    domain: str = Field(..., description="Main domain of the entry")
    sans: List[str] = Field(default_factory=list, description="Subject Alternative Names")
    not_after: Optional[datetime] = Field(None, description="Decoded expiry, if the certificate could be parsed")
    days_remaining: Optional[int] = Field(None)


class ReachabilityResult(BaseModel):
    """Outcome of the advisory DNS and port 80 checks."""

    domain: str
    dns_resolves: bool = False
    ip_addresses: List[str] = Field(default_factory=list)
    port_80_open: bool = False
    issues: List[str] = Field(default_factory=list)


class TerminatorStatus(BaseModel):
    """Diagnostics for the TLS-terminating container."""

    container_name: str
    running: bool = False
    status: str = "unknown"
    healthy: bool = False
    health_error: Optional[str] = None
    api_reachable: bool = False
    store_accessible: Optional[bool] = None
    uptime_seconds: Optional[int] = None
