"""
Unit tests for retention sweepers (dbvault/backup/retention.py).

Tests LocalRetentionSweeper and RemoteRetentionSweeper for cleaning up
old backups.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from dbvault.backup.retention import LocalRetentionSweeper, RemoteRetentionSweeper
from dbvault.backup.storage import S3Storage, RemoteDeleteError, RemoteListError
from dbvault.models import RemoteObject


def make_file(path, age: timedelta, now: datetime):
    """Create a file whose modification time is `age` before `now`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text('data')
    timestamp = (now - age).timestamp()
    os.utime(path, (timestamp, timestamp))
    return path


class TestLocalRetentionSweeper:
    """Test local filesystem retention."""

    def test_old_file_deleted_recent_file_kept(self, tmp_path):
        """Test 3 day retention deletes a 4 day old file and keeps a 2 day old one."""
        now = datetime.now()
        old = make_file(tmp_path / 'orders_old' / 'orders_old.zip', timedelta(days=4), now)
        recent = make_file(tmp_path / 'orders_new' / 'orders_new.zip', timedelta(days=2), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))
        deleted = sweeper.sweep(now=now)

        assert deleted == 1
        assert not old.exists()
        assert recent.exists()

    def test_sweep_is_idempotent(self, tmp_path):
        """Test a second sweep with no new files deletes nothing."""
        now = datetime.now()
        make_file(tmp_path / 'a' / 'a.sql', timedelta(days=5), now)
        make_file(tmp_path / 'a' / 'a.zip', timedelta(days=5), now)
        make_file(tmp_path / 'b' / 'b.zip', timedelta(hours=1), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))

        assert sweeper.sweep(now=now) == 2
        assert sweeper.sweep(now=now) == 0

    def test_sweep_walks_recursively(self, tmp_path):
        """Test files in nested directories are considered."""
        now = datetime.now()
        nested = make_file(tmp_path / 'x' / 'y' / 'z' / 'dump.sql', timedelta(days=10), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))

        assert sweeper.sweep(now=now) == 1
        assert not nested.exists()

    def test_emptied_directories_are_removed(self, tmp_path):
        """Test per-run directories left empty are pruned, the root is kept."""
        now = datetime.now()
        make_file(tmp_path / 'orders_old' / 'orders_old.sql', timedelta(days=4), now)
        make_file(tmp_path / 'orders_old' / 'orders_old.zip', timedelta(days=4), now)
        make_file(tmp_path / 'mixed' / 'old.zip', timedelta(days=4), now)
        make_file(tmp_path / 'mixed' / 'new.zip', timedelta(days=1), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))
        sweeper.sweep(now=now)

        assert tmp_path.exists()
        assert not (tmp_path / 'orders_old').exists()
        assert (tmp_path / 'mixed' / 'new.zip').exists()

    def test_missing_root_deletes_nothing(self, tmp_path):
        """Test a root that does not exist yet is not an error."""
        sweeper = LocalRetentionSweeper(str(tmp_path / 'missing'), timedelta(days=3))

        assert sweeper.sweep() == 0

    def test_delete_errors_are_skipped(self, tmp_path):
        """Test a file that cannot be deleted does not stop the sweep."""
        now = datetime.now()
        first = make_file(tmp_path / 'a' / 'first.zip', timedelta(days=4), now)
        second = make_file(tmp_path / 'b' / 'second.zip', timedelta(days=4), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))

        original_unlink = type(first).unlink

        def flaky_unlink(path, *args, **kwargs):
            if path.name == 'first.zip':
                raise PermissionError("Operation not permitted")
            return original_unlink(path, *args, **kwargs)

        with patch.object(type(first), 'unlink', flaky_unlink):
            deleted = sweeper.sweep(now=now)

        assert deleted == 1
        assert first.exists()
        assert not second.exists()


    def test_file_removed_concurrently_is_not_counted(self, tmp_path):
        """Test a file that vanished before unlink does not count as deleted."""
        now = datetime.now()
        gone = make_file(tmp_path / 'a' / 'gone.zip', timedelta(days=4), now)
        old = make_file(tmp_path / 'b' / 'old.zip', timedelta(days=4), now)

        sweeper = LocalRetentionSweeper(str(tmp_path), timedelta(days=3))

        original_unlink = type(gone).unlink

        def racing_unlink(path, *args, **kwargs):
            if path.name == 'gone.zip':
                original_unlink(path)
                raise FileNotFoundError(path)
            return original_unlink(path, *args, **kwargs)

        with patch.object(type(gone), 'unlink', racing_unlink):
            deleted = sweeper.sweep(now=now)

        assert deleted == 1
        assert not gone.exists()
        assert not old.exists()


class TestRemoteRetentionSweeper:
    """Test S3 retention with a mocked storage handler."""

    @freeze_time("2024-01-15 12:00:00")
    def test_old_object_deleted_recent_object_kept(self):
        """Test 35 day retention deletes a 40 day old object and keeps a 10 day old one."""
        now = datetime.now(timezone.utc)
        storage = MagicMock()
        storage.prefix = 'mysql-backups'
        storage.list_objects.return_value = [
            RemoteObject(key='mysql-backups/old.zip', last_modified=now - timedelta(days=40), size=10),
            RemoteObject(key='mysql-backups/new.zip', last_modified=now - timedelta(days=10), size=10),
        ]

        sweeper = RemoteRetentionSweeper(storage, timedelta(days=35))
        deleted = sweeper.sweep()

        assert deleted == 1
        storage.delete.assert_called_once_with('mysql-backups/old.zip')

    def test_delete_errors_are_skipped(self):
        """Test one failed delete does not stop the sweep."""
        now = datetime.now(timezone.utc)
        storage = MagicMock()
        storage.prefix = 'mysql-backups'
        storage.list_objects.return_value = [
            RemoteObject(key='mysql-backups/a.zip', last_modified=now - timedelta(days=50), size=1),
            RemoteObject(key='mysql-backups/b.zip', last_modified=now - timedelta(days=50), size=1),
        ]
        storage.delete.side_effect = [RemoteDeleteError("S3 delete failed (AccessDenied)"), None]

        sweeper = RemoteRetentionSweeper(storage, timedelta(days=35))

        assert sweeper.sweep(now=now) == 1
        assert storage.delete.call_count == 2

    def test_list_error_propagates(self):
        """Test a failed listing is not swallowed."""
        storage = MagicMock()
        storage.prefix = 'mysql-backups'
        storage.list_objects.side_effect = RemoteListError("S3 list failed (NoSuchBucket)")

        sweeper = RemoteRetentionSweeper(storage, timedelta(days=35))

        with pytest.raises(RemoteListError):
            sweeper.sweep()

        storage.delete.assert_not_called()

    def test_naive_reference_time_treated_as_utc(self):
        """Test a naive `now` can be compared with S3 timestamps."""
        storage = MagicMock()
        storage.prefix = ''
        storage.list_objects.return_value = [
            RemoteObject(key='old.zip', last_modified=datetime(2023, 11, 1, tzinfo=timezone.utc), size=1),
        ]

        sweeper = RemoteRetentionSweeper(storage, timedelta(days=35))

        assert sweeper.sweep(now=datetime(2024, 1, 15)) == 1


class TestRemoteRetentionWithS3:
    """Test S3 retention end to end against moto."""

    def test_sweep_only_touches_scope_prefix(self, mock_s3):
        """Test objects outside the prefix survive and old ones inside are deleted."""
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='mysql-backups/orders_20240101_030000.zip', Body=b'data')
        bucket.put_object(Key='other/unrelated.zip', Body=b'data')

        storage = S3Storage(
            bucket_name='test-bucket',
            prefix='mysql-backups',
            access_key='test_key',
            secret_key='test_secret'
        )
        sweeper = RemoteRetentionSweeper(storage, timedelta(days=35))

        # Everything just uploaded is recent
        assert sweeper.sweep() == 0

        # 36 days later the backup has expired
        later = datetime.now(timezone.utc) + timedelta(days=36)
        assert sweeper.sweep(now=later) == 1

        keys = [obj.key for obj in bucket.objects.all()]
        assert keys == ['other/unrelated.zip']
