"""Exception types raised by the sentimeter core."""

from typing import Any, Optional


class SentimeterError(Exception):
    """Base class for all sentimeter errors."""


class ConfigError(SentimeterError, ValueError):
    """Raised when config.yaml holds a value of the wrong shape."""


class PipelineJobError(SentimeterError):
    """Raised when a pipeline run fails.

    ``result`` carries the partial :class:`JobResult` with the counts of
    whatever completed before the failure. The step cache is left intact, so
    invoking the job again resumes from the last cached step.
    """

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(f"job failed: {message}")
        self.reason = message
        self.result = result
