"""Per-file timestamped snapshots taken before every overwrite"""
import logging
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from devconsole.errors import ExecutionError, ValidationError
from devconsole.models import BackupRecord
from devconsole.paths import is_within

logger = logging.getLogger(__name__)


class BackupStore:
    """
    Backups of ``dir/name`` live in ``dir/<backup_dirname>/name.<ns>.bak``.

    Backups are never overwritten: the nanosecond stamp only moves forward
    and a clash with an existing file bumps it. Restoring copies a backup
    back in place without snapshotting the state it replaces.
    """

    def __init__(self, backup_dirname: str = ".dc-backups"):
        self.backup_dirname = backup_dirname
        self._last_stamp = 0

    def backup_dir(self, path: Path) -> Path:
        return path.parent / self.backup_dirname

    def _next_stamp(self) -> int:
        self._last_stamp = max(time.time_ns(), self._last_stamp + 1)
        return self._last_stamp

    def _record(self, original: Path, backup: Path, stamp: int) -> BackupRecord:
        return BackupRecord(
            original_path=str(original),
            backup_path=str(backup),
            stamp=stamp,
            timestamp=datetime.fromtimestamp(stamp / 1e9, tz=timezone.utc),
        )

    def snapshot(self, path: Path) -> BackupRecord:
        """Copy the current bytes of path into a new backup file"""
        backup_dir = self.backup_dir(path)
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = self._next_stamp()
            while True:
                candidate = backup_dir / f"{path.name}.{stamp}.bak"
                try:
                    with open(path, "rb") as src, open(candidate, "xb") as dst:
                        shutil.copyfileobj(src, dst)
                    break
                except FileExistsError:
                    stamp = self._last_stamp = stamp + 1
        except OSError as e:
            logger.warning("Failed to create backup for %s: %s", path, e)
            raise ExecutionError(f"Failed to create backup for file: {path.name}") from e

        logger.debug("Backed up %s to %s", path, candidate)
        return self._record(path, candidate, stamp)

    def list_backups(self, path: Path) -> List[BackupRecord]:
        """Backups of path, newest first"""
        backup_dir = self.backup_dir(path)
        if not backup_dir.is_dir():
            return []

        prefix = f"{path.name}."
        records = []
        for entry in backup_dir.iterdir():
            name = entry.name
            if not (entry.is_file() and name.startswith(prefix) and name.endswith(".bak")):
                continue
            stamp = name[len(prefix):-len(".bak")]
            if stamp.isdigit():
                records.append(self._record(path, entry, int(stamp)))
        records.sort(key=lambda r: r.stamp, reverse=True)
        return records

    def lookup(self, path: Path, backup_path: str) -> BackupRecord:
        """Find the record of path whose backup file is backup_path"""
        candidate = Path(backup_path).resolve()
        if not is_within(candidate, self.backup_dir(path).resolve()):
            raise ValidationError("Invalid backup path. Directory traversal is not permitted.")
        for record in self.list_backups(path):
            if Path(record.backup_path).resolve() == candidate:
                return record
        raise ValidationError("Backup file not found.")

    def restore(self, record: BackupRecord):
        """Copy backup bytes onto the original path"""
        try:
            shutil.copyfile(record.backup_path, record.original_path)
        except OSError as e:
            raise ExecutionError("Failed to restore file. Check file permissions.") from e
        logger.info("Restored %s from %s", record.original_path, record.backup_path)
