"""
Backup module for dbvault.

This module handles the core backup functionality including:
- Command execution (local and SSH)
- Database dumps
- Compression
- Storage (S3)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupOrchestrator, BackupAborted, create_orchestrator
from .runners import LocalCommandRunner, SSHCommandRunner
from .dumper import MySQLDumper
from .compression import create_archive, archive_dump
from .storage import S3Storage
from .retention import LocalRetentionSweeper, RemoteRetentionSweeper

__all__ = [
    'BackupOrchestrator',
    'BackupAborted',
    'create_orchestrator',
    'LocalCommandRunner',
    'SSHCommandRunner',
    'MySQLDumper',
    'create_archive',
    'archive_dump',
    'S3Storage',
    'LocalRetentionSweeper',
    'RemoteRetentionSweeper'
]
