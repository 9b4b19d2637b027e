"""
Error taxonomy for the pipeline. Every error is fatal to the run.
"""

from typing import Any, Optional


class PipelineError(RuntimeError):
    """Base error carrying the stage (and record, when known) that failed."""

    def __init__(self, stage: str, message: str, record: Optional[Any] = None):
        self.stage = stage
        self.record = record
        detail = f"[{stage}] {message}"
        if record is not None:
            detail += f" (record: {record!r})"
        super().__init__(detail)


class SourceUnavailable(PipelineError):
    """Input path missing or remote fetch returned a non-success status."""


class MalformedDateColumn(PipelineError, ValueError):
    pass


class MalformedNumericField(PipelineError, ValueError):
    pass


class JoinYieldedEmpty(PipelineError):
    pass


class JoinCardinalityMismatch(PipelineError):
    pass


class WriteError(PipelineError):
    pass
