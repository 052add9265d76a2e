"""
Backup orchestrator - drives the per-database backup pipeline.

Workflow:
1. Read the live database list and filter it to the configured include set
2. For each database, in name order:
   a. Dump (mysqldump, consistent snapshot)
   b. Archive (single-entry compressed container)
   c. Upload to S3 under the scope prefix
3. Sweep local backups older than the local retention window
4. Sweep S3 objects older than the remote retention window

Dump and archive failures only fail their database: they are logged, an
alert is sent and the run moves on. Upload failures, remote listing
failures and a failure to read the database list abort the whole run.
"""

import logging
import os
from datetime import datetime
from typing import Iterable, Optional

from dbvault.models import BackupJob, RunSummary, Stage
from .compression import EXTENSIONS, archive_dump, get_archive_size, CompressionError
from .dumper import MySQLDumper, DumpError, DatabaseListError
from .retention import LocalRetentionSweeper, RemoteRetentionSweeper
from .runners import create_runner
from .storage import S3Storage, UploadError, RemoteListError


logger = logging.getLogger(__name__)


class BackupAborted(Exception):
    """Raised when a hard failure ends the run."""

    def __init__(self, cause: Exception, job: Optional[BackupJob] = None, summary: Optional[RunSummary] = None):
        self.cause = cause
        self.job = job
        self.summary = summary
        super().__init__(str(cause))


class BackupOrchestrator:
    """
    Orchestrates backups of all included databases.

    Stage collaborators are injected, so any object with the same methods
    can stand in for the MySQL tools, S3 or the e-mail API.
    """

    def __init__(self, include_databases: Iterable[str], dumper, uploader, notifier,
                 local_sweeper=None, remote_sweeper=None, compression_format: str = 'zip'):
        """
        Initialize orchestrator.

        Args:
            include_databases: Names of databases eligible for backup
            dumper: Object with list_databases() and dump(name)
            uploader: Object with upload(path)
            notifier: Object with notify_failure(database, stage, error)
            local_sweeper: Object with sweep(), or None to skip the local sweep
            remote_sweeper: Object with sweep(), or None to skip the remote sweep
            compression_format: Archive format passed to the archiver

        Raises:
            ValueError: If compression_format is not a supported archive format
        """
        if compression_format not in EXTENSIONS:
            raise ValueError(
                f"Invalid compression format: {compression_format}. "
                f"Valid options: {list(EXTENSIONS)}"
            )

        self.include_databases = set(include_databases)
        self.dumper = dumper
        self.uploader = uploader
        self.notifier = notifier
        self.local_sweeper = local_sweeper
        self.remote_sweeper = remote_sweeper
        self.compression_format = compression_format

    def run(self) -> RunSummary:
        """
        Back up all included databases, then enforce retention.

        Returns:
            RunSummary with per-database jobs and sweep counts

        Raises:
            BackupAborted: On upload failure, remote listing failure or
                when the live database list cannot be read
        """
        summary = RunSummary()
        logger.info(f"Starting backup run for {len(self.include_databases)} included database(s)")

        try:
            self._run_pipelines(summary)
        finally:
            # Always release runner connections
            close = getattr(self.dumper, 'close', None)
            if close:
                close()

        self._log_results(summary)

        try:
            summary.local_deleted = self._sweep_local()
            summary.remote_deleted = self._sweep_remote()
        except RemoteListError as e:
            logger.critical(f"Backup run aborted during remote retention sweep: {e}")
            raise BackupAborted(e, summary=summary)

        logger.info(
            f"Backup run complete. "
            f"Succeeded: {len(summary.succeeded)}, "
            f"Failed: {len(summary.failed)}, "
            f"Local deleted: {summary.local_deleted}, "
            f"S3 deleted: {summary.remote_deleted}"
        )
        return summary

    def _run_pipelines(self, summary: RunSummary):
        try:
            live_databases = self.dumper.list_databases()
        except DatabaseListError as e:
            logger.critical(f"Backup run aborted: {e}")
            raise BackupAborted(e, summary=summary)

        targets = self.select_targets(live_databases)
        summary.skipped = sorted(self.include_databases - set(live_databases))

        for name in summary.skipped:
            logger.info(f"Database {name} is not present on the server, skipping")

        for name in targets:
            job = BackupJob(database=name)
            summary.jobs.append(job)
            try:
                self.backup_database(job)
            except BackupAborted as e:
                e.summary = summary
                raise

    def select_targets(self, live_databases: Iterable[str]):
        """
        Filter the live database list to included names.

        Args:
            live_databases: Names reported by the server

        Returns:
            Included live databases, sorted by name
        """
        return sorted(name for name in set(live_databases) if name in self.include_databases)

    def backup_database(self, job: BackupJob) -> BackupJob:
        """
        Run dump, archive and upload for one database.

        Args:
            job: BackupJob in the pending stage

        Returns:
            The same job, in the done or failed stage

        Raises:
            BackupAborted: If the upload fails
        """
        logger.info(f"Backing up database: {job.database}")

        job.advance(Stage.DUMPING)
        try:
            dump = self.dumper.dump(job.database)
        except DumpError as e:
            self._fail(job, e)
            return job
        logger.info(f"Dump created: {dump.path} ({os.path.getsize(dump.path) / 1024 / 1024:.2f} MB)")

        job.advance(Stage.ARCHIVING)
        try:
            archive = archive_dump(dump, self.compression_format)
            file_size = get_archive_size(archive.path)
        except CompressionError as e:
            self._fail(job, e)
            return job
        logger.info(f"Archive created: {os.path.basename(archive.path)} ({file_size / 1024 / 1024:.2f} MB)")

        job.advance(Stage.UPLOADING)
        try:
            remote_object = self.uploader.upload(archive.path)
        except UploadError as e:
            job.fail(e)
            logger.critical(f"Upload of {job.database} failed, aborting run: {e}")
            raise BackupAborted(e, job=job)

        job.succeed(remote_object)
        logger.info(f"Uploaded {job.database} to S3: {remote_object.key}")
        return job

    def _fail(self, job: BackupJob, error: Exception):
        """Record a soft failure and alert operators."""
        job.fail(error)
        stage = job.failed_stage.value
        logger.error(f"Backup of {job.database} failed during {stage}: {error}")

        try:
            self.notifier.notify_failure(job.database, stage, error)
        except Exception as e:
            logger.error(f"Failed to send failure alert for {job.database}: {e}")

    def _sweep_local(self) -> int:
        if self.local_sweeper is None:
            logger.info("Local retention: not configured, skipping")
            return 0
        return self.local_sweeper.sweep()

    def _sweep_remote(self) -> int:
        if self.remote_sweeper is None:
            logger.info("S3 retention: not configured, skipping")
            return 0
        return self.remote_sweeper.sweep()

    def _log_results(self, summary: RunSummary):
        for job in summary.jobs:
            duration = ((job.completed_at or datetime.utcnow()) - job.started_at).total_seconds()
            if job.succeeded:
                logger.info(f"{job.database}: success in {duration:.1f}s")
            else:
                logger.info(f"{job.database}: failed during {job.failed_stage.value} - {job.error_message}")


def create_orchestrator(config, notifier, only: Optional[Iterable[str]] = None,
                        skip_retention: bool = False, runner=None) -> BackupOrchestrator:
    """
    Build an orchestrator wired to the MySQL tools, S3 and the notifier.

    Args:
        config: Loaded Config
        notifier: EmailNotifier or NullNotifier
        only: Optional names narrowing the include set further
        skip_retention: If True, neither retention sweep runs
        runner: Command runner (default: chosen from config.ssh)

    Returns:
        Configured BackupOrchestrator
    """
    include = set(config.include_databases)
    if only:
        unknown = set(only) - include
        for name in sorted(unknown):
            logger.warning(f"Database {name} is not in include_databases, ignoring")
        include &= set(only)

    runner = runner or create_runner(config.ssh)
    dumper = MySQLDumper(runner, config.database, config.backup)
    storage = S3Storage.from_config(config.storage)

    local_sweeper = None
    remote_sweeper = None
    if not skip_retention:
        local_sweeper = LocalRetentionSweeper(config.backup.root, config.backup.local_retention)
        remote_sweeper = RemoteRetentionSweeper(storage, config.storage.retention)

    return BackupOrchestrator(
        include_databases=include,
        dumper=dumper,
        uploader=storage,
        notifier=notifier,
        local_sweeper=local_sweeper,
        remote_sweeper=remote_sweeper,
        compression_format=config.backup.compression
    )
