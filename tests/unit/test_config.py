"""
Unit tests for settings and domain list parsing.
"""

import pytest
from pydantic import ValidationError

import config
from config import Settings, get_domain_records, parse_domains


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("DOMAIN", "ALERT_DAYS", "CRITICAL_DAYS", "MAX_RETRY_ATTEMPTS", "ACME_RESOLVER"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.domain == "localhost"
        assert settings.alert_days == 30
        assert settings.critical_days == 7
        assert settings.max_retry_attempts == 3
        assert settings.retry_delay == 300
        assert settings.generation_timeout == 600
        assert settings.backup_retain_count == 10
        assert settings.acme_resolver == "letsencrypt"
        assert settings.traefik_container == "traefik"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DOMAIN", "example.com,api.example.com")
        monkeypatch.setenv("ALERT_DAYS", "14")
        monkeypatch.setenv("retry_delay", "60")
        settings = Settings(_env_file=None)

        assert settings.domain == "example.com,api.example.com"
        assert settings.alert_days == 14
        assert settings.retry_delay == 60


class TestParseDomains:
    """Test DOMAIN list parsing."""

    def test_comma_and_space_separated(self):
        assert parse_domains("example.com, api.example.com www.example.com") == [
            "example.com",
            "api.example.com",
            "www.example.com",
        ]

    def test_normalizes_and_dedupes(self):
        assert parse_domains("Example.COM.,example.com") == ["example.com"]

    def test_empty(self):
        assert parse_domains(" , ") == []


class TestDomainRecords:
    """Test building monitored domain records."""

    def test_explicit_domains_and_thresholds(self):
        records = get_domain_records(["a.example.com", "b.example.com"], alert_days=21, critical_days=3)
        assert [r.name for r in records] == ["a.example.com", "b.example.com"]
        assert all(r.alert_threshold_days == 21 and r.critical_threshold_days == 3 for r in records)

    def test_configured_domain(self, monkeypatch):
        monkeypatch.setattr(config.settings, "domain", "example.com")
        monkeypatch.setattr(config.settings, "critical_days", 10)
        records = get_domain_records()
        assert len(records) == 1
        assert records[0].critical_threshold_days == 10

    def test_invalid_domain(self):
        with pytest.raises(ValidationError):
            get_domain_records(["bad_domain!"])
