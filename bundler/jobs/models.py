"""Download job data model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed status moves. QUEUED -> FAILED covers aborts before the pipeline starts.
TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

# Fields fixed at creation.
IMMUTABLE_FIELDS = frozenset({"id", "keys", "total_files", "created_at"})


class Job(BaseModel):
    """Tracks the lifecycle of one archive bundling job."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    keys: List[str]
    progress: int = Field(default=0, ge=0, le=100)
    files_completed: int = 0
    total_files: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _fill_total_files(self) -> "Job":
        if not self.total_files:
            self.total_files = len(self.keys)
        return self

    def snapshot(self) -> Dict[str, Any]:
        """Push-channel payload: the fields a progress subscriber tracks."""
        payload: Dict[str, Any] = {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "filesCompleted": self.files_completed,
            "totalFiles": self.total_files,
        }
        if self.status == JobStatus.COMPLETED:
            payload["resultUrl"] = self.result_url
        elif self.status == JobStatus.FAILED:
            payload["error"] = self.error
        return payload

    def to_status(self) -> Dict[str, Any]:
        """Full record as served by the status endpoint."""
        return {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "filesCompleted": self.files_completed,
            "totalFiles": self.total_files,
            "resultUrl": self.result_url,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
