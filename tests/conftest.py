"""
Shared pytest fixtures for dbvault tests.

This module provides fixtures for:
- Configuration objects and YAML config files
- Fake pipeline collaborators (dumper, uploader, notifier)
- Mock fixtures for external services (S3, SSH)
- Temporary dump files
"""

import os
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import boto3
import yaml
from moto import mock_aws

from dbvault.backup.dumper import DumpError, DatabaseListError
from dbvault.backup.runners import CommandResult
from dbvault.backup.storage import UploadError
from dbvault.config import parse_config
from dbvault.models import Artifact, ArtifactKind, RemoteObject


@pytest.fixture
def config_data(tmp_path):
    """
    Minimal valid configuration document.

    Local backups go to a temp directory.
    """
    return {
        'database': {
            'host': 'db.example.com',
            'user': 'backup',
            'password': 'dbpass',
        },
        'include_databases': ['orders', 'users'],
        'backup': {
            'root': str(tmp_path / 'backups'),
        },
        'storage': {
            'bucket': 'test-bucket',
            'access_key': 'test_access_key',
            'secret_key': 'test_secret_key',
            'prefix': 'mysql-backups',
        },
        'notification': {
            'api_key': 'test-api-key',
            'sender': 'backups@example.com',
            'recipients': ['ops@example.com'],
        },
    }


@pytest.fixture
def config(config_data):
    """Parsed Config built from config_data."""
    return parse_config(config_data)


@pytest.fixture
def config_file(tmp_path, config_data):
    """config_data written to a YAML file."""
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config_data))
    return path


class FakeDumper:
    """
    In-memory stand-in for MySQLDumper.

    Writes small dump files under root and records every call.
    """

    def __init__(self, root, live_databases, failing=(), list_error=None):
        self.root = Path(root)
        self.live_databases = list(live_databases)
        self.failing = set(failing)
        self.list_error = list_error
        self.dumped = []
        self.closed = False

    def list_databases(self):
        if self.list_error:
            raise DatabaseListError(self.list_error)
        return list(self.live_databases)

    def dump(self, database):
        self.dumped.append(database)
        if database in self.failing:
            raise DumpError(database, "Access denied for user 'backup'")

        dump_dir = self.root / f"{database}_20240115_120000"
        dump_dir.mkdir(parents=True, exist_ok=True)
        dump_path = dump_dir / f"{database}_20240115_120000.sql"
        dump_path.write_text(f"-- dump of {database}\nCREATE TABLE t (id INT);\n")

        return Artifact(
            path=str(dump_path),
            database=database,
            created_at=datetime.now(),
            kind=ArtifactKind.DUMP
        )

    def close(self):
        self.closed = True


class FakeUploader:
    """Records uploads; fails for archives of the given databases."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.uploaded = []

    def upload(self, local_path):
        name = os.path.basename(local_path)
        if any(name.startswith(f"{db}_") for db in self.failing):
            raise UploadError("S3 upload failed (AccessDenied)")
        self.uploaded.append(local_path)
        return RemoteObject(key=f"mysql-backups/{name}", last_modified=datetime.utcnow(), size=10)


@pytest.fixture
def backup_root(tmp_path):
    root = tmp_path / 'backups'
    root.mkdir()
    return root


@pytest.fixture
def fake_dumper_factory(backup_root):
    """Build FakeDumper instances writing under backup_root."""
    def _factory(live_databases, failing=(), list_error=None):
        return FakeDumper(backup_root, live_databases, failing=failing, list_error=list_error)
    return _factory


@pytest.fixture
def fake_uploader_factory():
    def _factory(failing=()):
        return FakeUploader(failing=failing)
    return _factory


@pytest.fixture
def mock_notifier():
    return MagicMock()


@pytest.fixture
def mock_runner():
    """
    Command runner mock returning a successful, empty result.
    """
    runner = MagicMock()
    runner.run.return_value = CommandResult(returncode=0, stdout='', stderr='')
    return runner


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH command testing.

    Returns a MagicMock that simulates SSH connections.
    """
    with patch('dbvault.backup.runners.SSHClient') as mock_ssh:
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh


@pytest.fixture
def sample_dump(tmp_path):
    """
    Create a sample dump file and its artifact.
    """
    dump_dir = tmp_path / 'orders_20240115_120000'
    dump_dir.mkdir()
    dump_path = dump_dir / 'orders_20240115_120000.sql'
    dump_path.write_bytes(b"-- MySQL dump\nINSERT INTO orders VALUES (1, 'caf\xc3\xa9');\n" * 50)

    return Artifact(
        path=str(dump_path),
        database='orders',
        created_at=datetime.now(),
        kind=ArtifactKind.DUMP
    )
