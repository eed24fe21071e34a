"""
Timestamped file backups with rotation.

Backups are byte-for-byte copies named <basename>.<timestamp>,
restricted to the owner, and pruned to the newest N copies.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable

from config import settings

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


class BackupService:
    """Creates and rotates backups of a single file."""

    def __init__(
        self,
        backup_dir: str | Path | None = None,
        retain_count: int | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.backup_dir = Path(backup_dir or settings.backup_dir)
        self.retain_count = retain_count if retain_count is not None else settings.backup_retain_count
        self._now = now

    def create_backup(self, source: str | Path) -> Path | None:
        """
        Copy a file into the backup directory and rotate old copies.

        Args:
            source: File to back up

        Returns:
            Path of the new backup, or None if the source does not exist

        Raises:
            OSError: Backup directory not writable or copy failed
        """
        source = Path(source)
        if not source.is_file():
            logger.info(f"Nothing to back up, {source} does not exist")
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self.backup_dir, os.W_OK):
            raise PermissionError(f"Backup directory is not writable: {self.backup_dir}")

        dest = self._next_backup_path(source.name)
        shutil.copyfile(source, dest)
        os.chmod(dest, 0o600)
        logger.info(f"{source.name} backed up to: {dest}")

        self.rotate(source.name)
        return dest

    def list_backups(self, basename: str) -> list[Path]:
        """Backups for a file, newest first."""
        if not self.backup_dir.exists():
            return []
        backups = [p for p in self.backup_dir.glob(f"{basename}.*") if p.is_file()]
        return sorted(backups, key=lambda p: p.name, reverse=True)

    def rotate(self, basename: str) -> int:
        """Delete backups beyond retain_count. Returns the number removed."""
        removed = 0
        for old in self.list_backups(basename)[self.retain_count:]:
            old.unlink()
            removed += 1
            logger.debug(f"Removed old backup {old.name}")

        if removed:
            logger.info(f"Rotated backups for {basename}: removed {removed}, kept {self.retain_count}")
        return removed

    def _next_backup_path(self, basename: str) -> Path:
        stamp = self._now().strftime(TIMESTAMP_FORMAT)
        candidate = self.backup_dir / f"{basename}.{stamp}"
        taken = [p.name for p in self.backup_dir.glob(f"{basename}.{stamp}*")]
        if not taken:
            return candidate

        # suffixes only grow within one timestamp, even after rotation pruned lower ones
        counters = [
            int(name.rsplit("-", 1)[1])
            for name in taken
            if name != candidate.name and name.rsplit("-", 1)[-1].isdigit()
        ]
        return self.backup_dir / f"{basename}.{stamp}-{max(counters, default=0) + 1:03d}"
