"""
Pipeline Errors — Error codes and exception types for the SalesCore pipeline.

Field-level data quality issues never raise; they are repaired by the
cleansing rules. Exceptions here cover configuration problems, storage
faults and stage-execution faults, all of which are fatal to a run.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Categorized error codes used instead of a deep exception hierarchy."""

    # Configuration errors
    CONFIG_MISSING = "CONFIG_001"
    CONFIG_INVALID = "CONFIG_002"

    # Storage errors
    TABLE_NOT_FOUND = "RESOURCE_001"
    TABLE_WRITE_FAILED = "RESOURCE_002"

    # Stage errors
    CLEANSING_FAILED = "STAGE_001"
    BUILD_FAILED = "STAGE_002"
    VALIDATION_FAILED = "STAGE_003"
    STAGE_FAILED = "STAGE_999"


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Error message
        error_code: Error code from ErrorCode
        details: Additional error context
        cause: Underlying exception, if any
        error_id: Unique identifier for correlating logs and run outcomes
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STAGE_FAILED,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.error_id = uuid.uuid4().hex[:12]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "cause": repr(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class PipelineConfigError(PipelineError):
    """Raised when the pipeline configuration is missing or invalid."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.CONFIG_INVALID)
        super().__init__(message, **kwargs)


class TableStoreError(PipelineError):
    """Raised when a table cannot be read from or written to its store."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.TABLE_NOT_FOUND)
        super().__init__(message, **kwargs)


class PipelineStageError(PipelineError):
    """Raised when a pipeline stage fails; aborts the remainder of the run."""

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        error_code: ErrorCode = ErrorCode.STAGE_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.stage = stage
        merged = {}
        if isinstance(cause, PipelineError):
            # Keep the more specific code and context of the underlying fault.
            error_code = cause.error_code
            merged.update(cause.details)
        merged.update(details or {})
        merged["stage"] = stage
        super().__init__(
            f"Stage '{stage}' failed: {cause}",
            error_code=error_code,
            details=merged,
            cause=cause,
        )
