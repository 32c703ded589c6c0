"""Error taxonomy for the sourcing pipeline.

  - ConfigurationError: fatal, the job is failed immediately, never retried
  - StageError / ProviderError: transient, the stage may be re-invoked
  - item-level failures are not modelled as types; stages catch and log them
  - "no candidates found" is a pipeline state, not an exception
"""


class SourcingError(Exception):
    """Base class for all pipeline errors."""

    retryable = True


class ConfigurationError(SourcingError):
    """A provider credential or setting is missing or invalid."""

    retryable = False


class StageError(SourcingError):
    """A whole stage failed for a transient reason (outage, timeout)."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class ProviderError(SourcingError):
    """An external provider call failed or returned an unusable response."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class JobNotFoundError(SourcingError):
    """No sourcing job exists with the requested id."""

    retryable = False


class RetryNotAllowedError(SourcingError):
    """The job is not in a state that allows a retry."""

    retryable = False
