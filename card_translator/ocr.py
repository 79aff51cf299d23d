"""Submit-then-poll client for the Azure AI Vision Read (OCR) API."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import OcrJobError, OcrTimeoutError, SubmissionError
from .settings import VisionSettings

logger = logging.getLogger(__name__)

NO_TEXT_DETECTED = "No text content detected in the image."

READ_ANALYZE_PATH = "/vision/v3.2/read/analyze"
OPERATION_LOCATION_HEADER = "Operation-Location"


class OcrJobStatus(str, enum.Enum):
    """Job status as reported by the Read API poll document."""

    NOT_STARTED = "notStarted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ReadWord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""


class ReadLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""
    words: List[ReadWord] = Field(default_factory=list)

    def joined_words(self) -> str:
        if not self.words:
            return self.text
        return "".join(word.text for word in self.words)


class ReadPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    page: int = 1
    lines: List[ReadLine] = Field(default_factory=list)


class AnalyzeResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    read_results: List[ReadPage] = Field(default_factory=list, alias="readResults")


class ReadError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    message: str = ""


class ReadOperationResult(BaseModel):
    """Poll response document for a Read job."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: OcrJobStatus
    analyze_result: Optional[AnalyzeResult] = Field(default=None, alias="analyzeResult")
    error: Optional[ReadError] = None


def flatten_read_result(result: Optional[AnalyzeResult]) -> str:
    """Flatten page → line → word text into newline-separated lines.

    Word fragments within a line are concatenated without separators.
    """
    if result is None:
        return NO_TEXT_DETECTED
    lines = []
    for page in result.read_results:
        for line in page.lines:
            text = line.joined_words()
            if text.strip():
                lines.append(text)
    return "\n".join(lines) if lines else NO_TEXT_DETECTED


class ReadOcrClient:
    """Runs one OCR job per call: submit, poll with a bounded budget, flatten."""

    def __init__(
        self,
        settings: VisionSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def _headers(self) -> dict:
        return {"Ocp-Apim-Subscription-Key": self._settings.api_key}

    async def submit(self, client: httpx.AsyncClient, image_bytes: bytes) -> str:
        """POST the image and return the job location."""
        try:
            response = await client.post(
                f"{self._settings.endpoint}{READ_ANALYZE_PATH}",
                content=image_bytes,
                headers={
                    **self._headers(),
                    "Content-Type": "application/octet-stream",
                },
            )
        except httpx.HTTPError as exc:
            raise SubmissionError(f"OCR submission failed: {exc}") from exc

        if response.is_error:
            raise SubmissionError(
                _error_message(response),
                status_code=response.status_code,
                code=_error_code(response),
            )

        location = response.headers.get(OPERATION_LOCATION_HEADER)
        if not location:
            raise SubmissionError(
                f"OCR submission response is missing the {OPERATION_LOCATION_HEADER} header",
                status_code=response.status_code,
            )
        logger.info("Submitted OCR job %s", location)
        return location

    async def poll_once(
        self, client: httpx.AsyncClient, operation_location: str
    ) -> ReadOperationResult:
        try:
            response = await client.get(operation_location, headers=self._headers())
        except httpx.HTTPError as exc:
            raise OcrJobError(f"OCR poll request failed: {exc}") from exc

        if response.is_error:
            raise OcrJobError(
                _error_message(response),
                status_code=response.status_code,
                code=_error_code(response),
            )
        try:
            return ReadOperationResult.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise OcrJobError(
                f"Unreadable OCR status document: {exc}",
                status_code=response.status_code,
            ) from exc

    async def wait_for_result(
        self,
        client: httpx.AsyncClient,
        operation_location: str,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReadOperationResult:
        """Poll until the job is terminal or the retry budget is spent."""
        interval = self._settings.poll_interval_seconds
        max_retries = self._settings.max_retries
        for attempt in range(1, max_retries + 1):
            await _pause(interval, cancel_event)
            result = await self.poll_once(client, operation_location)
            logger.debug(
                "OCR job %s poll %d/%d: %s",
                operation_location,
                attempt,
                max_retries,
                result.status.value,
            )
            if result.status is OcrJobStatus.SUCCEEDED:
                return result
            if result.status is OcrJobStatus.FAILED:
                error = result.error or ReadError(message="OCR job failed")
                raise OcrJobError(error.message or "OCR job failed", code=error.code)

        raise OcrTimeoutError(operation_location, max_retries)

    async def read_text(
        self, image_bytes: bytes, *, cancel_event: Optional[asyncio.Event] = None
    ) -> str:
        """Run OCR on raw image bytes and return the flattened text.

        Returns ``NO_TEXT_DETECTED`` when the job succeeds without any text.
        """
        if not self._settings.endpoint or not self._settings.api_key:
            raise SubmissionError("Azure Vision endpoint or key is not configured")

        async with httpx.AsyncClient(
            timeout=self._settings.timeout_seconds, transport=self._transport
        ) as client:
            location = await self.submit(client, image_bytes)
            result = await self.wait_for_result(
                client, location, cancel_event=cancel_event
            )
        return flatten_read_result(result.analyze_result)


async def _pause(interval: float, cancel_event: Optional[asyncio.Event]) -> None:
    """Wait one poll interval, raising CancelledError if cancellation is signalled."""
    if cancel_event is None:
        await asyncio.sleep(interval)
        return
    if cancel_event.is_set():
        raise asyncio.CancelledError("OCR polling cancelled")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=interval)
    except asyncio.TimeoutError:
        return
    raise asyncio.CancelledError("OCR polling cancelled")


def _error_payload(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def _error_message(response: httpx.Response) -> str:
    return _error_payload(response).get("message") or response.text or response.reason_phrase


def _error_code(response: httpx.Response) -> Optional[str]:
    code = _error_payload(response).get("code")
    return str(code) if code is not None else None
