"""Domain error taxonomy.

Extraction and job errors are recorded on the job and surfaced through
polling. Comparator and report builder failures are programming errors and
are not part of this hierarchy.
"""


class ReconciliationError(Exception):
    """Base class for all domain errors."""


class ExtractionError(ReconciliationError):
    """Base class for document analysis failures.

    Attributes:
        provider: Name of the provider that failed
        retryable: Whether repeating the same call may succeed
    """

    retryable: bool = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ExtractionServiceError(ExtractionError):
    """Network, timeout or rate-limit failure talking to the analysis service."""

    retryable = True


class ExtractionParseError(ExtractionError):
    """The analysis service answered, but not with the declared structure."""

    retryable = False


class ValidationError(ReconciliationError):
    """Caller-supplied input failed a precondition.

    Attributes:
        errors: Individual validation messages
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class JobStateError(ReconciliationError):
    """An illegal job or step transition was attempted."""

    def __init__(self, message: str, job_id: str | None = None, current: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.current = current


class JobNotFoundError(ReconciliationError):
    """No job exists with the requested id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id
