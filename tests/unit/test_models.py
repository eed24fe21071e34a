"""
Unit tests for certificate and renewal models.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from models.certificate import CertificateState, CertificateStatus, DomainRecord
from models.renewal import CheckReport, RenewalAttempt, RenewalOutcome, RenewalStep

NOW = datetime(2026, 5, 1, tzinfo=timezone.utc)


class TestDomainRecord:
    """Test DomainRecord validation."""

    def test_normalizes_name(self):
        assert DomainRecord(name="Example.COM.").name == "example.com"

    @pytest.mark.parametrize("name", ["::1", "127.0.0.1", "2001:db8::10"])
    def test_accepts_ip_literals(self, name):
        assert DomainRecord(name=name).name == name

    def test_ipv6_literal_is_normalized(self):
        assert DomainRecord(name="2001:DB8:0:0::1").name == "2001:db8::1"

    @pytest.mark.parametrize("name", ["-bad.com", "bad..com", "under_score.com", "spa ce.com"])
    def test_rejects_invalid_names(self, name):
        with pytest.raises(ValidationError):
            DomainRecord(name=name)

    def test_defaults(self):
        record = DomainRecord(name="example.com")
        assert record.critical_threshold_days == 7
        assert record.alert_threshold_days == 30

    def test_immutable(self):
        record = DomainRecord(name="example.com")
        with pytest.raises(ValidationError):
            record.name = "other.com"


class TestCertificateStatus:
    """Test failure semantics of a status."""

    @pytest.mark.parametrize(
        "state,skipped,failure",
        [
            (CertificateState.OK, False, False),
            (CertificateState.WARNING, False, False),
            (CertificateState.CRITICAL, False, True),
            (CertificateState.UNKNOWN, False, True),
            (CertificateState.UNKNOWN, True, False),
        ],
    )
    def test_is_failure(self, state, skipped, failure):
        status = CertificateStatus(domain="example.com", state=state, skipped=skipped, checked_at=NOW)
        assert status.is_failure is failure

    def test_summary(self):
        status = CertificateStatus(
            domain="example.com", state=CertificateState.WARNING, days_remaining=12, checked_at=NOW
        )
        assert status.summary() == "example.com: WARNING (12 days remaining)"


class TestCheckReport:
    """Test the aggregated run result."""

    def test_exit_code(self):
        report = CheckReport()
        assert report.exit_code == 0

        report.statuses.append(CertificateStatus(domain="localhost", skipped=True, checked_at=NOW))
        assert report.exit_code == 0

        report.statuses.append(
            CertificateStatus(domain="example.com", state=CertificateState.CRITICAL, days_remaining=2, checked_at=NOW)
        )
        assert report.exit_code == 1
        assert report.critical_domains == ["example.com"]


class TestRenewalAttempt:
    """Test audit records."""

    def test_audit_line(self):
        attempt = RenewalAttempt(
            domain="example.com",
            attempt_number=2,
            started_at=NOW,
            outcome=RenewalOutcome.FAILED,
            step=RenewalStep.RESTART,
            error="terminator not healthy",
            repaired=True,
        )
        line = attempt.audit_line()

        assert "domain=example.com" in line
        assert "attempt=2" in line
        assert "outcome=failed" in line
        assert "step=restart" in line
        assert "repaired=true" in line
        assert 'error="terminator not healthy"' in line

    def test_attempt_number_starts_at_one(self):
        with pytest.raises(ValidationError):
            RenewalAttempt(domain="example.com", attempt_number=0)
