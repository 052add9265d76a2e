from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Stage(str, Enum):
    """Pipeline stage of a database backup"""
    PENDING = 'pending'
    DUMPING = 'dumping'
    ARCHIVING = 'archiving'
    UPLOADING = 'uploading'
    DONE = 'done'
    FAILED = 'failed'


class ArtifactKind(str, Enum):
    DUMP = 'dump'
    ARCHIVE = 'archive'


@dataclass
class Artifact:
    """Local file produced by the pipeline (raw dump or compressed archive)"""
    path: str
    database: str
    created_at: datetime
    kind: ArtifactKind

    def __repr__(self):
        return f'<Artifact {self.kind.value} {self.path}>'


@dataclass
class RemoteObject:
    """Object stored in S3"""
    key: str
    last_modified: datetime
    size: int

    def __repr__(self):
        return f'<RemoteObject {self.key} size={self.size}>'


@dataclass
class BackupJob:
    """One database backup attempt"""
    database: str
    started_at: datetime = field(default_factory=datetime.utcnow)
    stage: Stage = Stage.PENDING
    failed_stage: Optional[Stage] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    remote_object: Optional[RemoteObject] = None

    def advance(self, stage: Stage):
        self.stage = stage

    def succeed(self, remote_object: RemoteObject):
        self.remote_object = remote_object
        self.stage = Stage.DONE
        self.completed_at = datetime.utcnow()

    def fail(self, error: Exception):
        self.failed_stage = self.stage
        self.error_message = str(error)
        self.stage = Stage.FAILED
        self.completed_at = datetime.utcnow()

    @property
    def succeeded(self) -> bool:
        return self.stage == Stage.DONE

    def __repr__(self):
        return f'<BackupJob {self.database} stage={self.stage.value}>'


@dataclass
class RunSummary:
    """Outcome of one orchestrator run"""
    jobs: List[BackupJob] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    local_deleted: int = 0
    remote_deleted: int = 0

    @property
    def succeeded(self) -> List[str]:
        return [job.database for job in self.jobs if job.succeeded]

    @property
    def failed(self) -> List[str]:
        return [job.database for job in self.jobs if job.stage == Stage.FAILED]
