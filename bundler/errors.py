"""Exception hierarchy for download jobs.

Pipeline-fatal errors (NotFoundError, IntegrityError, StoreError) abort the
job and their message becomes the job's recorded error. PersistenceError is
raised by the durable store and only ever logged by the registry.
"""

from typing import Optional


class BundlerError(Exception):
    """Base class for all service errors."""


class NotFoundError(BundlerError):
    """A source object is missing or empty."""

    def __init__(self, key: str, reason: str = "not found"):
        self.key = key
        self.reason = reason
        super().__init__(f"File {key} {reason}")


class IntegrityError(BundlerError):
    """Checksum taken at archive time differs from the one taken on receipt."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Integrity check failed for file {key}")


class StoreError(BundlerError):
    """An object store operation failed."""

    def __init__(self, operation: str, key: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Object store {operation} failed for {key}{detail}")


class PersistenceError(BundlerError):
    """A durable job record could not be written."""

    def __init__(self, job_id: str, cause: Optional[BaseException] = None):
        self.job_id = job_id
        self.cause = cause
        super().__init__(f"Failed to persist job {job_id}: {cause}")


class InvalidTransitionError(BundlerError):
    """A job mutation would break the job lifecycle rules."""
