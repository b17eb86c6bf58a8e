class JobError(Exception):
    """Base error for pipeline job failures; retried by the queue."""


class UnrecoverableJobError(JobError):
    """Fails the job permanently without consuming the remaining retry budget."""


class AwaitingApproval(JobError):
    """Parks the job until a reviewer approves or rejects it."""


class EntityResolutionError(JobError):
    """Raised when the disambiguation answer does not contain an identifier."""


class EntityNotFoundError(UnrecoverableJobError):
    """Raised when no entity candidates remain after every search attempt."""


class ExtractionUnavailableError(JobError):
    """Raised when the extraction service cannot be reached or errors out."""


class ExtractionParseError(JobError):
    """Raised when an extraction response does not conform to its schema."""


class DiffError(UnrecoverableJobError):
    """Raised when two fragments cannot be compared."""


class GatewayError(Exception):
    """Raised when the company API rejects or fails a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayNotFoundError(GatewayError):
    """Raised when the target record of an upsert does not exist."""
