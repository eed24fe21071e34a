"""
ACME store access for the TLS terminator's acme.json.

The store is owned by the terminator; this module validates it,
rebuilds it when corrupt, backs it up before every write, and removes
a domain's certificate entry to force re-issuance. Writes go through a
temporary file and an atomic rename so a partial store is never left
behind.
"""

import base64
import binascii
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config import settings
from core.backup_service import BackupService
from core.cert_inspector import days_until, parse_certificate
from models.certificate import StoredCertificate

logger = logging.getLogger(__name__)

PLACEHOLDER_ACCOUNT_URI = "https://acme-v02.api.letsencrypt.org/acme/acct/placeholder"


class AcmeStoreError(Exception):
    """Base exception for ACME store operations."""

    def __init__(self, message: str, path: str = None, suggestion: str = None):
        self.message = message
        self.path = path
        self.suggestion = suggestion
        super().__init__(message)


class StoreNotFoundError(AcmeStoreError):
    """Store file missing or unreadable."""

    pass


class MalformedStoreError(AcmeStoreError):
    """Store content is not a JSON object."""

    pass


class MissingSchemaError(AcmeStoreError):
    """Resolver section, its Account or its Certificates list is missing or malformed."""

    pass


class StoreWriteError(AcmeStoreError):
    """Store could not be rewritten."""

    pass


def build_skeleton(resolver: str, account_email: str) -> dict[str, Any]:
    """Minimal valid store: one account, no certificates."""
    return {
        resolver: {
            "Account": {
                "Email": account_email,
                "Registration": {
                    "body": {"status": "valid", "contact": [f"mailto:{account_email}"]},
                    "uri": PLACEHOLDER_ACCOUNT_URI,
                },
            },
            "Certificates": [],
            "HTTPChallenges": {},
            "TLSChallenges": {},
        }
    }


def decode_certificate_field(value: str) -> bytes | None:
    """Decode the base64 PEM bundle Traefik keeps in an entry's 'certificate'."""
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def entry_main_domain(entry: Any) -> str | None:
    """Main domain of a certificate entry, None for a malformed entry."""
    if not isinstance(entry, dict) or not isinstance(entry.get("domain"), dict):
        return None
    main = entry["domain"].get("main")
    return main if isinstance(main, str) and main else None


def well_formed_entries(certificates: Any) -> list[dict[str, Any]]:
    """Entries of a Certificates list that carry a domain object."""
    if not isinstance(certificates, list):
        return []
    return [entry for entry in certificates if entry_main_domain(entry) is not None]


class AcmeStore:
    """
    Validator, repairer and editor for one acme.json file.

    Not safe for concurrent writers: run at most one renewal process
    against a given store.
    """

    def __init__(self, path: str | Path | None = None, resolver: str | None = None):
        self.path = Path(path or settings.acme_json_path)
        self.resolver = resolver or settings.acme_resolver

    def _read_raw(self) -> str:
        if not self.path.is_file():
            raise StoreNotFoundError(
                f"ACME JSON file does not exist: {self.path}",
                path=str(self.path),
                suggestion="Start the TLS terminator once or run 'certwatch repair' to create it",
            )
        try:
            return self.path.read_text(encoding="utf-8")
        except PermissionError as e:
            raise StoreNotFoundError(
                f"ACME JSON file is not readable: {self.path}",
                path=str(self.path),
                suggestion="Check file ownership and permissions",
            ) from e
        except UnicodeDecodeError as e:
            raise MalformedStoreError(
                f"ACME JSON file is not valid UTF-8: {e}", path=str(self.path)
            ) from e

    def load(self) -> dict[str, Any]:
        """
        Parse the store.

        Raises:
            StoreNotFoundError: File missing or unreadable
            MalformedStoreError: Content is not a JSON object
        """
        raw = self._read_raw()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedStoreError(
                f"ACME JSON file has invalid JSON structure: {e}",
                path=str(self.path),
                suggestion="Run renewal or 'certwatch repair' to rebuild the store",
            ) from e
        if not isinstance(data, dict):
            raise MalformedStoreError(
                "ACME JSON top level is not an object", path=str(self.path), suggestion="Rebuild the store"
            )
        return data

    def validate(self) -> None:
        """
        Validate the store is parseable and carries the resolver account.

        Certificates, when present, must be a list of objects each with a
        domain object.

        Raises:
            StoreNotFoundError, MalformedStoreError, MissingSchemaError
        """
        data = self.load()
        section = data.get(self.resolver)
        if not isinstance(section, dict):
            raise MissingSchemaError(
                f"ACME JSON file missing {self.resolver} section",
                path=str(self.path),
                suggestion=f"Check ACME_RESOLVER matches the terminator's resolver name ({self.resolver})",
            )
        if not isinstance(section.get("Account"), dict):
            raise MissingSchemaError(
                f"ACME JSON {self.resolver} section has no Account", path=str(self.path)
            )

        certificates = section.get("Certificates")
        if certificates is not None:
            if not isinstance(certificates, list):
                raise MissingSchemaError(
                    f"ACME JSON {self.resolver} Certificates is not a list", path=str(self.path)
                )
            for index, entry in enumerate(certificates):
                if not isinstance(entry, dict) or not isinstance(entry.get("domain"), dict):
                    raise MissingSchemaError(
                        f"ACME JSON {self.resolver} certificate entry {index} is malformed",
                        path=str(self.path),
                        suggestion="Run renewal or 'certwatch repair' to rebuild the store",
                    )
        logger.info("ACME JSON file validation passed")

    def is_valid(self) -> bool:
        """Validate without raising."""
        try:
            self.validate()
            return True
        except AcmeStoreError as e:
            logger.warning(e.message)
            return False

    def backup(self, backup_dir: str | Path | None = None, retain_count: int | None = None) -> Path | None:
        """Back up the store; see BackupService.create_backup."""
        return BackupService(backup_dir, retain_count).create_backup(self.path)

    def repair(self, account_email: str) -> None:
        """
        Replace the store with a minimal valid skeleton.

        Discards every existing entry. Only call after validate() failed
        and a backup was taken.

        Raises:
            StoreWriteError: Skeleton could not be written
        """
        logger.warning(f"Rebuilding ACME JSON file {self.path} with minimal structure")
        self.write(build_skeleton(self.resolver, account_email))
        logger.info(f"ACME JSON file repaired with account {account_email}")

    def write(self, data: dict[str, Any]) -> None:
        """
        Atomically replace the store with data (owner read/write only).

        Raises:
            StoreWriteError: Temporary write or rename failed; the original is untouched
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StoreWriteError(
                f"Failed to write ACME JSON file {self.path}: {e}",
                path=str(self.path),
                suggestion="Check free disk space and directory permissions",
            ) from e

    def _certificates(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        """Well-formed certificate entries of the resolver section."""
        section = data.get(self.resolver)
        if not isinstance(section, dict):
            return []
        return well_formed_entries(section.get("Certificates"))

    def find_certificate(self, domain: str) -> dict[str, Any] | None:
        """Entry whose main domain matches, or None (also when the store is unreadable)."""
        try:
            data = self.load()
        except AcmeStoreError:
            return None
        for entry in self._certificates(data):
            if entry_main_domain(entry) == domain:
                return entry
        return None

    def remove_certificate(self, domain: str) -> bool:
        """
        Drop every entry for a domain so the terminator requests a new one.

        Returns:
            True if an entry was removed

        Raises:
            AcmeStoreError: Store invalid or could not be rewritten
        """
        data = self.load()
        section = data.get(self.resolver)
        if not isinstance(section, dict):
            raise MissingSchemaError(f"ACME JSON file missing {self.resolver} section", path=str(self.path))

        certificates = section.get("Certificates") or []
        if not isinstance(certificates, list):
            raise MissingSchemaError(
                f"ACME JSON {self.resolver} Certificates is not a list", path=str(self.path)
            )
        kept = [c for c in certificates if entry_main_domain(c) != domain]
        if len(kept) == len(certificates):
            logger.info(f"No certificate entry for {domain} in ACME storage")
            return False

        section["Certificates"] = kept
        self.write(data)
        logger.info(f"Removed existing certificate entry for {domain}")
        return True

    def certificate_count(self) -> int:
        """Number of certificate entries, 0 if the store is unreadable."""
        try:
            return len(self._certificates(self.load()))
        except AcmeStoreError:
            return 0

    def list_certificates(self) -> list[StoredCertificate]:
        """
        Every certificate entry across resolvers with its decoded expiry.

        Raises:
            StoreNotFoundError, MalformedStoreError
        """
        data = self.load()
        now = datetime.now(timezone.utc)
        stored = []

        for resolver, section in data.items():
            if not isinstance(section, dict):
                continue
            for entry in well_formed_entries(section.get("Certificates")):
                main = entry_main_domain(entry)
                sans = entry["domain"].get("sans")
                if not isinstance(sans, list):
                    sans = []
                cert = StoredCertificate(resolver=resolver, domain=main, sans=[s for s in sans if isinstance(s, str)])

                value = entry.get("certificate")
                pem = decode_certificate_field(value) if isinstance(value, str) else None
                if pem:
                    try:
                        cert.not_after = parse_certificate(pem)["not_after"]
                        cert.days_remaining = days_until(cert.not_after, now)
                    except ValueError as e:
                        logger.debug(f"Could not parse stored certificate for {main}: {e}")
                stored.append(cert)

        return stored

    def entry_expiry(self, entry: dict[str, Any]) -> datetime | None:
        """Expiry of a raw store entry, if its certificate decodes."""
        value = entry.get("certificate")
        pem = decode_certificate_field(value) if isinstance(value, str) else None
        if not pem:
            return None
        try:
            return parse_certificate(pem)["not_after"]
        except ValueError:
            return None


# Singleton instance
_acme_store: AcmeStore | None = None


def get_acme_store() -> AcmeStore:
    """Get the global ACME store instance."""
    global _acme_store
    if _acme_store is None:
        _acme_store = AcmeStore()
    return _acme_store
