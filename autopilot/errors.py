"""Exception hierarchy for pipeline stages and external clients."""
from typing import Optional


class AutopilotError(Exception):
    """Base class for pipeline errors; message is persisted on the failed record."""


class ConfigurationError(AutopilotError):
    """Missing credentials or an unknown provider. Never retried."""


class ProviderError(AutopilotError):
    """Video provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ProviderTaskNotFoundError(ProviderError):
    """Provider does not know the task (yet). Eventual consistency, not a failure."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404, retryable=True)


class TaskFailedError(ProviderError):
    """Provider reported the task as failed."""


class PollTimeoutError(ProviderError):
    """Task did not finish within the poll ceiling."""


class ResultExtractionError(ProviderError):
    """Task reported success but carried no playable URL."""


class ScriptGenerationError(AutopilotError):
    """Text-generation call for a script failed."""


class ResearchError(AutopilotError):
    """Research call failed or returned an unusable payload."""


class DistributionError(AutopilotError):
    """Item cannot be distributed (no platforms, no account, video not ready)."""


class UploadPostError(AutopilotError):
    """upload-post.com call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UploadPostRateLimitError(UploadPostError):
    """upload-post.com returned 429; posts stay pending for the next run."""
