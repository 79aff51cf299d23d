"""Exception types raised by the card analysis and translation pipeline."""

from __future__ import annotations

from typing import Optional


class CardTranslatorError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(CardTranslatorError, ValueError):
    """Raised when input bytes are not a readable raster image."""


class UpstreamError(CardTranslatorError):
    """An external API rejected a call or returned unusable data."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.code:
            parts.append(self.code)
        prefix = " ".join(parts)
        return f"{prefix}: {self.message}" if prefix else self.message


class ExtractionError(UpstreamError):
    """Structured extraction failed (HTTP error, bad JSON, or schema mismatch)."""


class OverlayError(UpstreamError):
    """The image-edit endpoint failed or returned no image."""


class SubmissionError(UpstreamError):
    """An OCR job could not be submitted or returned no job location."""


class OcrJobError(UpstreamError):
    """The OCR job reached the failed state or a poll request was rejected."""


class TranslationError(UpstreamError):
    """The text translation endpoint failed."""


class OcrTimeoutError(CardTranslatorError):
    """The OCR job did not finish within the poll budget.

    The job is abandoned; callers may resubmit the image as a new job.
    """

    def __init__(self, operation_location: str, polls: int) -> None:
        self.operation_location = operation_location
        self.polls = polls
        super().__init__(
            f"OCR job {operation_location} still running after {polls} polls"
        )


class StorageError(CardTranslatorError):
    """Blob upload or table persistence failed."""


class PipelineError(CardTranslatorError):
    """Wraps the failure of a single pipeline stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Card pipeline failed at stage '{stage}': {cause}")
