"""
APScheduler configuration for periodic backup runs.

Runs the backup on a cron schedule in the foreground. Only one run may be
active at a time; missed runs are coalesced into one. A hard failure
(upload or remote listing) stops the scheduler, so the process exits
just like a one-shot run would.
"""

import logging
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from dbvault.backup.executor import BackupAborted
from dbvault.config import ConfigError


logger = logging.getLogger(__name__)

JOB_ID = 'backup_run'


def create_scheduler(schedule_config, job_func: Callable) -> BlockingScheduler:
    """
    Create a scheduler with the backup job registered.

    Args:
        schedule_config: ScheduleConfig with cron expression and timezone
        job_func: Callable executed on every trigger

    Returns:
        Configured (not yet started) BlockingScheduler

    Raises:
        ConfigError: If no cron expression is configured or it is invalid
    """
    if not schedule_config.cron:
        raise ConfigError("schedule.cron is required to run the scheduler")

    try:
        trigger = CronTrigger.from_crontab(schedule_config.cron, timezone=schedule_config.timezone)
    except ValueError as e:
        raise ConfigError(f"Invalid schedule.cron '{schedule_config.cron}': {e}")

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one run at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=schedule_config.timezone
    )

    scheduler.add_job(
        func=job_func,
        trigger=trigger,
        id=JOB_ID,
        name='Database backup run',
        replace_existing=True
    )

    return scheduler


def run_scheduled(schedule_config, run_backup: Callable) -> int:
    """
    Run backups on the configured schedule until stopped.

    Args:
        schedule_config: ScheduleConfig with cron expression and timezone
        run_backup: Callable performing one backup run; raises BackupAborted on hard failure

    Returns:
        Process exit code: 0 when stopped normally, 1 after a hard failure
    """
    state = {'aborted': None}
    scheduler = None

    def _execute_backup_wrapper():
        try:
            logger.info("Scheduler starting backup run")
            run_backup()
        except BackupAborted as e:
            state['aborted'] = e
            logger.critical(f"Hard failure, stopping scheduler: {e}")
            scheduler.shutdown(wait=False)
        except Exception:
            logger.exception("Scheduled backup run failed unexpectedly")

    scheduler = create_scheduler(schedule_config, _execute_backup_wrapper)

    logger.info(f"Scheduled backups with cron '{schedule_config.cron}' ({schedule_config.timezone})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted, shutting down")
        if scheduler.running:
            scheduler.shutdown(wait=False)

    return 1 if state['aborted'] else 0
