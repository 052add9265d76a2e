"""
MySQL dump producer.

Lists the databases known to the server and produces one consistent
logical dump per database with ``mysqldump``. Dumps include routines,
triggers and events, and use ``--single-transaction`` so InnoDB tables
are read from a single snapshot.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List

from dbvault.models import Artifact, ArtifactKind
from .runners import CommandError


logger = logging.getLogger(__name__)

DUMP_OPTIONS = [
    '--single-transaction',
    '--quick',
    '--routines',
    '--triggers',
    '--events',
    '--hex-blob',
]

# Schemas owned by the server itself
SYSTEM_DATABASES = {'information_schema', 'performance_schema', 'mysql', 'sys'}


class DumpError(Exception):
    """Raised when dumping a database fails."""

    def __init__(self, database: str, message: str):
        self.database = database
        self.raw_message = message
        super().__init__(f"Dump of {database} failed: {message}")


class DatabaseListError(Exception):
    """Raised when the live database list cannot be read."""
    pass


def generate_dump_basename(database: str, now: datetime = None) -> str:
    """
    Generate the base name shared by a dump directory and its file.

    Format: {database}_{YYYYMMDD_HHMMSS}

    Args:
        database: Database name
        now: Timestamp to embed (default: current local time)

    Returns:
        Base name without extension
    """
    timestamp = (now or datetime.now()).strftime('%Y%m%d_%H%M%S')

    safe_name = "".join(
        c if c.isalnum() or c in ('-', '_') else '_'
        for c in database
    )

    return f"{safe_name}_{timestamp}"


class MySQLDumper:
    """
    Produces dumps through the MySQL client tools.

    Commands are executed through a command runner, so the tools may run
    on this host or on the database server over SSH.
    """

    def __init__(self, runner, database_config, backup_config):
        """
        Initialize dumper.

        Args:
            runner: LocalCommandRunner or SSHCommandRunner
            database_config: DatabaseConfig with host, port, user and password
            backup_config: BackupConfig with local root, tool paths and timeout
        """
        self.runner = runner
        self.database_config = database_config
        self.backup_config = backup_config

    def _connection_args(self) -> List[str]:
        return [
            f"--host={self.database_config.host}",
            f"--port={self.database_config.port}",
            f"--user={self.database_config.user}",
        ]

    def _env(self):
        # Keep the password off the process list
        if self.database_config.password:
            return {'MYSQL_PWD': self.database_config.password}
        return None

    def list_databases(self) -> List[str]:
        """
        List databases on the server, excluding system schemas.

        Returns:
            Database names in server order

        Raises:
            DatabaseListError: If the server cannot be queried
        """
        args = [self.backup_config.mysql_path] + self._connection_args() + [
            '--batch',
            '--skip-column-names',
            '--execute=SHOW DATABASES',
        ]

        try:
            result = self.runner.run(args, env=self._env(), timeout=self.backup_config.dump_timeout)
        except CommandError as e:
            raise DatabaseListError(f"Failed to list databases: {e}")

        if not result.ok:
            raise DatabaseListError(
                f"Failed to list databases (exit {result.returncode}): {result.stderr}"
            )

        names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return [name for name in names if name not in SYSTEM_DATABASES]

    def dump(self, database: str) -> Artifact:
        """
        Dump one database into a new directory under the backup root.

        Layout: {root}/{database}_{timestamp}/{database}_{timestamp}.sql

        Args:
            database: Name of the database to dump

        Returns:
            Dump artifact

        Raises:
            DumpError: If the dump command fails or produces no output
        """
        if not database:
            raise DumpError(database, "Database name must not be empty")

        now = datetime.now()
        basename = generate_dump_basename(database, now)
        dump_dir = Path(self.backup_config.root) / basename
        dump_path = dump_dir / f"{basename}.sql"

        try:
            dump_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DumpError(database, f"Failed to create dump directory {dump_dir}: {e}")

        args = [self.backup_config.mysqldump_path] + self._connection_args() + DUMP_OPTIONS
        args += list(self.backup_config.extra_dump_args)
        args += ['--databases', database]

        logger.debug(f"Running {self.backup_config.mysqldump_path} for {database}")

        try:
            result = self.runner.run(
                args,
                env=self._env(),
                stdout_path=str(dump_path),
                timeout=self.backup_config.dump_timeout
            )
        except CommandError as e:
            raise DumpError(database, str(e))

        if not result.ok:
            raise DumpError(database, f"mysqldump exited with {result.returncode}: {result.stderr}")

        if not dump_path.exists() or os.path.getsize(dump_path) == 0:
            raise DumpError(database, "mysqldump produced an empty dump")

        return Artifact(
            path=str(dump_path),
            database=database,
            created_at=now,
            kind=ArtifactKind.DUMP
        )

    def close(self):
        """Release the command runner's connections."""
        self.runner.close()
