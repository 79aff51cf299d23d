import asyncio
from typing import Dict, List

import httpx
import pytest

from card_translator.errors import OcrJobError, OcrTimeoutError, SubmissionError
from card_translator.ocr import (
    NO_TEXT_DETECTED,
    AnalyzeResult,
    OcrJobStatus,
    ReadOcrClient,
    flatten_read_result,
)
from Tests.helpers import make_image_bytes, vision_settings

RESULT_URL = "https://vision.test/vision/v3.2/read/analyzeResults/job-1"


def _line(*words: str) -> Dict[str, object]:
    return {"text": " ".join(words), "words": [{"text": word} for word in words]}


def _succeeded(lines: List[Dict[str, object]]) -> Dict[str, object]:
    return {
        "status": "succeeded",
        "analyzeResult": {"readResults": [{"page": 1, "lines": lines}]},
    }


class _ReadApi:
    """Scripted stand-in for the Read endpoint."""

    def __init__(self, statuses: List[Dict[str, object]], location: str = RESULT_URL) -> None:
        self.statuses = list(statuses)
        self.location = location
        self.submissions = 0
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.submissions += 1
            assert request.url.path == "/vision/v3.2/read/analyze"
            assert request.headers["Ocp-Apim-Subscription-Key"] == "vision-key"
            assert request.headers["Content-Type"] == "application/octet-stream"
            headers = {"Operation-Location": self.location} if self.location else {}
            return httpx.Response(202, headers=headers)
        self.polls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(200, json=status)


def _client(api: _ReadApi, **overrides) -> ReadOcrClient:
    return ReadOcrClient(vision_settings(**overrides), transport=httpx.MockTransport(api))


@pytest.mark.asyncio
async def test_read_text_polls_until_succeeded() -> None:
    api = _ReadApi(
        [{"status": "running"}] * 4 + [_succeeded([_line("ルフィ"), _line("リーダー")])]
    )

    text = await _client(api).read_text(make_image_bytes())

    assert text == "ルフィ\nリーダー"
    assert api.submissions == 1
    assert api.polls == 5


@pytest.mark.asyncio
async def test_missing_operation_location_fails_without_polling() -> None:
    api = _ReadApi([{"status": "running"}], location="")

    with pytest.raises(SubmissionError):
        await _client(api).read_text(make_image_bytes())

    assert api.polls == 0


@pytest.mark.asyncio
async def test_submission_rejected_by_service() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": {"code": "InvalidImageFormat", "message": "Bad image"}}
        )

    client = ReadOcrClient(vision_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionError) as excinfo:
        await client.read_text(b"bytes")

    assert excinfo.value.status_code == 400
    assert excinfo.value.code == "InvalidImageFormat"
    assert excinfo.value.message == "Bad image"


@pytest.mark.asyncio
async def test_failed_job_raises_job_error() -> None:
    api = _ReadApi(
        [
            {"status": "notStarted"},
            {"status": "failed", "error": {"code": "InternalServerError", "message": "boom"}},
        ]
    )

    with pytest.raises(OcrJobError) as excinfo:
        await _client(api).read_text(b"bytes")

    assert excinfo.value.code == "InternalServerError"
    assert api.polls == 2


@pytest.mark.asyncio
async def test_poll_budget_is_bounded() -> None:
    api = _ReadApi([{"status": "running"}])

    with pytest.raises(OcrTimeoutError) as excinfo:
        await _client(api, max_retries=3, poll_interval_seconds=0.01).read_text(b"bytes")

    assert api.polls == 3
    assert excinfo.value.polls == 3
    assert excinfo.value.operation_location == RESULT_URL


def test_job_status_mirrors_service_values() -> None:
    assert {status.value for status in OcrJobStatus} == {
        "notStarted",
        "running",
        "succeeded",
        "failed",
    }


@pytest.mark.asyncio
async def test_unknown_job_status_is_a_job_error() -> None:
    api = _ReadApi([{"status": "timedOut"}])

    with pytest.raises(OcrJobError, match="Unreadable OCR status"):
        await _client(api).read_text(b"bytes")

    assert api.polls == 1


@pytest.mark.asyncio
async def test_no_text_returns_sentinel() -> None:
    api = _ReadApi([_succeeded([])])

    text = await _client(api).read_text(b"bytes")

    assert text == NO_TEXT_DETECTED
    assert api.polls == 1


@pytest.mark.asyncio
async def test_cancel_event_stops_polling() -> None:
    api = _ReadApi([{"status": "running"}])
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(asyncio.CancelledError):
        await _client(api, poll_interval_seconds=5.0).read_text(b"bytes", cancel_event=cancel)

    assert api.submissions == 1
    assert api.polls == 0


@pytest.mark.asyncio
async def test_missing_configuration_is_a_submission_error() -> None:
    client = ReadOcrClient(vision_settings(endpoint="", api_key=""))

    with pytest.raises(SubmissionError):
        await client.read_text(b"bytes")


def test_flatten_joins_word_fragments_without_spaces() -> None:
    result = AnalyzeResult.model_validate(
        {
            "readResults": [
                {"lines": [{"text": "モンキー D ルフィ", "words": [{"text": "モンキー"}, {"text": "D"}]}]},
                {"lines": [{"text": "fallback line", "words": []}, {"text": "  "}]},
            ]
        }
    )

    assert flatten_read_result(result) == "モンキーD\nfallback line"
    assert flatten_read_result(None) == NO_TEXT_DETECTED
