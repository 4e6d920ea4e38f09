from typing import Optional


class VfcError(Exception):
    """Base class for pipeline errors."""


class InvalidMediaError(VfcError):
    """Source video is unreadable or has no positive duration."""


class ToolFailureError(VfcError):
    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class BackendUnavailableError(VfcError):
    """Accelerated encode failed; never leaves the dispatcher."""


class RecordStoreError(VfcError):
    pass


class BlobStoreError(VfcError):
    pass


class JobNotFoundError(RecordStoreError):
    def __init__(self, job_id: int):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(VfcError):
    pass


class JobAlreadyRunningError(VfcError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} is already being processed")
        self.job_id = job_id
