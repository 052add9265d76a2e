"""
Retention policy enforcement for backups.

Cleans up old dumps and archives from the local backup root and old
objects from the S3 scope prefix. Per-item failures are logged and
skipped; only a failure to list the remote objects is fatal.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .storage import RemoteDeleteError


logger = logging.getLogger(__name__)


class LocalDeleteError(Exception):
    """Raised when a local file cannot be deleted."""
    pass


class LocalRetentionSweeper:
    """
    Deletes local files older than the retention window.

    A file's age is taken from its modification time; dumps and archives
    are written once and never modified afterwards.
    """

    def __init__(self, root: str, max_age: timedelta):
        """
        Initialize local sweeper.

        Args:
            root: Local backup root directory
            max_age: Retention window
        """
        self.root = Path(root)
        self.max_age = max_age

    def sweep(self, now: datetime = None) -> int:
        """
        Delete all files under the root older than the retention window.

        Directories emptied by the sweep are removed as well.

        Args:
            now: Reference time (default: current local time)

        Returns:
            Number of files deleted
        """
        if not self.root.exists():
            logger.info(f"Local backup root {self.root} does not exist, nothing to sweep")
            return 0

        now = now or datetime.now()
        cutoff = now - self.max_age
        logger.info(f"Sweeping local backups in {self.root} older than {cutoff:%Y-%m-%d %H:%M:%S}")

        deleted_count = 0
        touched_dirs = set()

        for file_path in sorted(self.root.rglob('*')):
            if not file_path.is_file():
                continue

            try:
                modified = datetime.fromtimestamp(file_path.stat().st_mtime)
                if modified >= cutoff:
                    continue
                if not self._delete(file_path):
                    continue
                deleted_count += 1
                touched_dirs.add(file_path.parent)
                logger.info(f"Deleted local file: {file_path}")
            except (OSError, LocalDeleteError) as e:
                logger.error(f"Failed to delete local file {file_path}: {e}")

        self._prune_dirs(touched_dirs)

        logger.info(f"Local retention sweep complete. Deleted: {deleted_count}")
        return deleted_count

    def _delete(self, file_path: Path) -> bool:
        """Remove one file; False if it was already gone."""
        try:
            file_path.unlink()
        except PermissionError as e:
            raise LocalDeleteError(f"Permission denied: {e}")
        except FileNotFoundError:
            logger.debug(f"Local file already removed: {file_path}")
            return False
        return True

    def _prune_dirs(self, directories):
        # Deepest first so nested empty directories collapse
        for directory in sorted(directories, key=lambda d: len(d.parts), reverse=True):
            while directory != self.root and self.root in directory.parents:
                try:
                    if any(directory.iterdir()):
                        break
                    directory.rmdir()
                    logger.debug(f"Removed empty directory: {directory}")
                except OSError as e:
                    logger.warning(f"Failed to remove directory {directory}: {e}")
                    break
                directory = directory.parent


class RemoteRetentionSweeper:
    """
    Deletes S3 objects under the scope prefix older than the retention window.
    """

    def __init__(self, storage, max_age: timedelta):
        """
        Initialize remote sweeper.

        Args:
            storage: S3Storage scoped to the backup prefix
            max_age: Retention window
        """
        self.storage = storage
        self.max_age = max_age

    def sweep(self, now: datetime = None) -> int:
        """
        Delete remote objects older than the retention window.

        Args:
            now: Reference time, timezone-aware (default: current UTC time)

        Returns:
            Number of objects deleted

        Raises:
            RemoteListError: If the object list cannot be read
        """
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        cutoff = now - self.max_age
        logger.info(f"Sweeping S3 objects under '{self.storage.prefix}' older than {cutoff:%Y-%m-%d %H:%M:%S}")

        objects = self.storage.list_objects()

        to_delete = [
            obj for obj in objects
            if _as_utc(obj.last_modified) < cutoff
        ]

        deleted_count = 0
        for obj in to_delete:
            try:
                self.storage.delete(obj.key)
                deleted_count += 1
                logger.info(f"Deleted S3 object: {obj.key}")
            except RemoteDeleteError as e:
                logger.error(f"Failed to delete S3 object {obj.key}: {e}")

        logger.info(
            f"Remote retention sweep complete. "
            f"Listed: {len(objects)}, Deleted: {deleted_count}"
        )
        return deleted_count


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
