"""
Configuration utilities and settings management.

Handles environment variables, path resolution, and monitor settings.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from models.certificate import DomainRecord


class Settings(BaseSettings):
    """Monitor settings loaded from environment variables."""

    # Domains
    domain: str = Field(
        default="localhost",
        alias="DOMAIN",
        description="Primary domain, or a comma-separated list for multi-domain mode",
    )
    alert_days: int = Field(default=30, alias="ALERT_DAYS", description="Days before expiry to warn")
    critical_days: int = Field(default=7, alias="CRITICAL_DAYS", description="Days before expiry to force renewal")
    probe_timeout: float = Field(default=10.0, alias="PROBE_TIMEOUT", description="TLS/TCP probe timeout in seconds")

    # ACME store
    acme_json_path: str = Field(default="./data/traefik/letsencrypt/acme.json", alias="ACME_JSON_PATH")
    acme_resolver: str = Field(
        default="letsencrypt", alias="ACME_RESOLVER", description="Certificate resolver section in acme.json"
    )
    acme_email: str = Field(
        default="", alias="ACME_EMAIL", description="Account email used when the store has to be rebuilt"
    )
    rate_limit_threshold: int = Field(
        default=5,
        alias="RATE_LIMIT_THRESHOLD",
        description="Stored certificate count above which a rate-limit warning is logged",
    )

    # Backups
    backup_dir: str = Field(default="./backups/ssl", alias="BACKUP_DIR")
    backup_retain_count: int = Field(default=10, alias="BACKUP_RETAIN_COUNT")

    # Renewal
    max_retry_attempts: int = Field(default=3, alias="MAX_RETRY_ATTEMPTS")
    retry_delay: float = Field(default=300.0, alias="RETRY_DELAY", description="Seconds between renewal attempts")
    generation_timeout: float = Field(
        default=600.0, alias="GENERATION_TIMEOUT", description="Seconds to wait for a new certificate to appear"
    )

    # TLS terminator (Traefik container)
    traefik_container: str = Field(default="traefik", alias="TRAEFIK_CONTAINER")
    traefik_ping_url: str = Field(default="http://localhost:8080/ping", alias="TRAEFIK_PING_URL")
    traefik_api_url: str = Field(default="http://localhost:8080/api/http/services", alias="TRAEFIK_API_URL")
    traefik_acme_path: str = Field(
        default="/letsencrypt/acme.json",
        alias="TRAEFIK_ACME_PATH",
        description="Path of acme.json inside the container",
    )
    traefik_stop_timeout: int = Field(
        default=30, alias="TRAEFIK_STOP_TIMEOUT", description="Seconds to wait for a graceful stop"
    )
    traefik_restart_timeout: float = Field(
        default=120.0, alias="TRAEFIK_RESTART_TIMEOUT", description="Seconds to wait for running+healthy after start"
    )

    # Monitor loop
    monitor_interval: float = Field(default=3600.0, alias="MONITOR_INTERVAL")

    # Logging
    log_file: str = Field(default="./logs/ssl-renewal-handler.log", alias="LOG_FILE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()


def parse_domains(value: str) -> list[str]:
    """Split a DOMAIN value on commas and whitespace, dropping duplicates."""
    names: list[str] = []
    for part in value.replace(",", " ").split():
        name = part.strip().lower().rstrip(".")
        if name and name not in names:
            names.append(name)
    return names


def get_domain_records(
    domains: list[str] | None = None,
    alert_days: int | None = None,
    critical_days: int | None = None,
) -> list[DomainRecord]:
    """Build domain records from explicit values or the configured DOMAIN list."""
    names = parse_domains(",".join(domains)) if domains else parse_domains(settings.domain)
    alert = alert_days if alert_days is not None else settings.alert_days
    critical = critical_days if critical_days is not None else settings.critical_days
    return [DomainRecord(name=name, alert_threshold_days=alert, critical_threshold_days=critical) for name in names]


def get_primary_domain() -> str:
    """First configured domain."""
    names = parse_domains(settings.domain)
    return names[0] if names else "localhost"


def ensure_directories():
    """Ensure log and backup directories exist."""
    for dir_path in (Path(settings.log_file).parent, Path(settings.backup_dir)):
        dir_path.mkdir(parents=True, exist_ok=True)
