"""
Pipeline Error Taxonomy
═══════════════════════

Every failure that crosses a component boundary is expressed as one of:

  ValidationError        bad input shape / size / type          never retried
  AuthorizationError     collaborator rejected our credentials  never retried
  NotFoundError          missing source artifact                never retried
  TransientServiceError  rate limit, timeout, 5xx               retried w/ backoff
  QualityError           content insufficient after extraction  not retried,
                                                                carries remediation

Stage-specific errors (ExtractionFailed, ChunkingFailed, RetrievalFailed)
refine these. StageFailed is the single tagged error the orchestrator uses
to identify which stage sank a document.

Adapters translate third-party exceptions (botocore, openai, PyMuPDF) into
this taxonomy at the boundary so retry decisions are made on our types.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    error_code: str  = "PIPELINE_ERROR"
    retryable:  bool = False

    def __init__(
        self,
        message: str,
        *,
        cause:       BaseException | None = None,
        context:     dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message     = message
        self.cause       = cause
        self.context     = context or {}
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict[str, Any]:
        """Structured form for log lines and caller responses."""
        result: dict[str, Any] = {
            "error": {
                "type":    type(self).__name__,
                "code":    self.error_code,
                "message": self.message,
            },
        }
        if self.context:
            result["context"] = self.context
        if self.suggestions:
            result["suggestions"] = self.suggestions
        if self.cause is not None:
            result["cause"] = {
                "type":    type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result


# ---------------------------------------------------------------------------
# Base taxonomy
# ---------------------------------------------------------------------------

class ValidationError(PipelineError):
    error_code = "VALIDATION_ERROR"


class AuthorizationError(PipelineError):
    error_code = "AUTHORIZATION_ERROR"


class NotFoundError(PipelineError):
    error_code = "NOT_FOUND"


class TransientServiceError(PipelineError):
    error_code = "TRANSIENT_SERVICE_ERROR"
    retryable  = True


class QualityError(PipelineError):
    error_code = "QUALITY_ERROR"


# ---------------------------------------------------------------------------
# Stage-specific errors
# ---------------------------------------------------------------------------

class ExtractionErrorType(str, Enum):
    IMAGE_BASED = "image_based_pdf"
    CORRUPTED   = "corrupted_pdf"
    PROTECTED   = "protected_pdf"
    RESOURCE    = "resource_error"
    EMPTY       = "empty_document"
    UNKNOWN     = "unknown_error"


class ExtractionFailed(QualityError):
    """Neither the digital nor the OCR strategy produced usable text."""

    error_code = "EXTRACTION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        error_type: ExtractionErrorType = ExtractionErrorType.IMAGE_BASED,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.error_type = error_type


class ChunkingFailed(PipelineError):
    error_code = "CHUNKING_FAILED"


class RetrievalFailed(PipelineError):
    error_code = "RETRIEVAL_FAILED"


class StageFailed(PipelineError):
    """A document-level failure tagged with the pipeline stage that raised it."""

    error_code = "STAGE_FAILED"

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(
            f"{stage} stage failed: {cause}",
            cause=cause,
            context={"stage": stage},
            suggestions=getattr(cause, "suggestions", None),
        )
        self.stage = stage


# ---------------------------------------------------------------------------
# Retry predicate
# ---------------------------------------------------------------------------

TERMINAL_ERRORS: tuple[type[BaseException], ...] = (
    ValidationError,
    AuthorizationError,
    NotFoundError,
    QualityError,
    ChunkingFailed,
)


def is_retryable(exc: BaseException) -> bool:
    """
    Default retry predicate shared by every retry_async call site.

    Terminal taxonomy members are never retried. Timeouts and
    TransientServiceError always are. Anything unclassified is treated as
    transient, since unknown collaborator failures are usually network noise.
    """
    if isinstance(exc, TERMINAL_ERRORS):
        return False
    if isinstance(exc, (TransientServiceError, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, PipelineError):
        return exc.retryable
    return True
