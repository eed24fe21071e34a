"""
Renewal models.

Renewal attempts live only for the duration of a run; finished
attempts are written to the audit log, never stored as state.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from models.certificate import CertificateState, CertificateStatus


class RenewalOutcome(str, Enum):
    """Attempt lifecycle status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RenewalStep(str, Enum):
    """Steps of a single renewal attempt, in execution order."""

    PRE_CHECK = "pre_check"
    BACKUP = "backup"
    VALIDATE = "validate"
    INVALIDATE = "invalidate"
    RESTART = "restart"
    AWAIT_ISSUANCE = "await_issuance"


class RenewalAttempt(BaseModel):
    """One invalidate-restart-await cycle for a single domain."""

    domain: str
    attempt_number: int = Field(..., ge=1)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    outcome: RenewalOutcome = RenewalOutcome.PENDING
    step: RenewalStep | None = Field(None, description="Step reached, or the step that failed")
    error: str | None = None
    backup_path: str | None = None
    repaired: bool = False

    def audit_line(self) -> str:
        """Single-line audit record."""
        parts = [
            f"renewal_attempt domain={self.domain}",
            f"attempt={self.attempt_number}",
            f"outcome={self.outcome.value}",
            f"started_at={self.started_at.isoformat()}",
        ]
        if self.step:
            parts.append(f"step={self.step.value}")
        if self.repaired:
            parts.append("repaired=true")
        if self.backup_path:
            parts.append(f"backup={self.backup_path}")
        if self.error:
            parts.append(f'error="{self.error}"')
        return " ".join(parts)


class RenewalResult(BaseModel):
    """Final result of a renewal run."""

    domain: str
    success: bool
    attempts: list[RenewalAttempt] = Field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class CheckReport(BaseModel):
    """Result of one monitor pass over all configured domains."""

    statuses: list[CertificateStatus] = Field(default_factory=list)
    renewals: dict[str, bool] = Field(default_factory=dict, description="Renewal success per renewed domain")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def exit_code(self) -> int:
        """0 when every domain is OK, WARNING or skipped, 1 otherwise."""
        return 1 if any(status.is_failure for status in self.statuses) else 0

    @property
    def critical_domains(self) -> list[str]:
        return [s.domain for s in self.statuses if s.state == CertificateState.CRITICAL]
