"""Error taxonomy shared by the batch and runtime pipelines."""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class SchemaError(PipelineError):
    """A row's field count does not match the header count."""

    def __init__(self, message: str, expected: Optional[int] = None, found: Optional[int] = None):
        super().__init__(message)
        self.expected = expected
        self.found = found


class ValidationError(PipelineError):
    """A coerced record violates a record invariant."""

    def __init__(self, message: str, field: Optional[str] = None, value: object = None):
        super().__init__(message)
        self.field = field
        self.value = value


class LimitExceededError(PipelineError):
    """Input size, row count or column count is above its ceiling."""

    def __init__(self, message: str, limit: str, actual: int, maximum: int):
        super().__init__(message)
        self.limit = limit
        self.actual = actual
        self.maximum = maximum


class SourceFetchError(PipelineError):
    """A remote archive or dataset could not be fetched."""

    def __init__(self, message: str, source: Optional[str] = None, retryable: bool = True):
        super().__init__(message)
        self.source = source
        self.retryable = retryable


class EmptyResultError(PipelineError):
    """Parsing finished but no valid record survived."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report
