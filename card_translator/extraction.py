"""Structured card extraction over a chat-completions vision endpoint."""

from __future__ import annotations

import base64
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .card_types import CardRecord
from .errors import ExtractionError
from .normalize import normalize_card_payload
from .prompts import response_format, system_prompt, user_prompt
from .settings import OpenAISettings

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def upstream_error_message(response: httpx.Response) -> str:
    """Pull ``error.type: error.message`` out of an OpenAI-style error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        message = err.get("message") or ""
        err_type = err.get("type")
        return f"{err_type}: {message}" if err_type else message
    return response.text or response.reason_phrase


def _decode_json_text(text: str) -> Any:
    stripped = text.strip()
    fenced = _CODE_FENCE.match(stripped)
    if fenced:
        stripped = fenced.group(1)
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Model returned malformed JSON: {exc}") from exc


def parse_card_payload(content: Any) -> CardRecord:
    """Decode message content into a CardRecord.

    ``content`` is either a string holding JSON text or an already-decoded
    JSON object. Both shapes produce the same record.
    """
    if isinstance(content, str):
        payload = _decode_json_text(content)
        # Some backends double-encode: a JSON string whose value is JSON text.
        if isinstance(payload, str):
            payload = _decode_json_text(payload)
    elif isinstance(content, dict):
        payload = content
    else:
        raise ExtractionError(
            f"Unexpected message content of type {type(content).__name__}"
        )

    if not isinstance(payload, dict):
        raise ExtractionError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    try:
        return CardRecord.model_validate(normalize_card_payload(payload))
    except ValidationError as exc:
        raise ExtractionError(f"Response does not match card schema: {exc}") from exc


class CardExtractionClient:
    """Sends a card image to the vision model and returns a CardRecord."""

    def __init__(
        self,
        settings: OpenAISettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def build_request(self, jpeg_bytes: bytes) -> Dict[str, Any]:
        image_b64 = base64.b64encode(jpeg_bytes).decode("ascii")
        return {
            "model": self._settings.model,
            "messages": [
                {"role": "system", "content": system_prompt()},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt()},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                    ],
                },
            ],
            "max_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
            "response_format": response_format(),
        }

    async def extract(self, jpeg_bytes: bytes) -> CardRecord:
        """Extract card attributes from a (downscaled) JPEG."""
        if not self._settings.api_key:
            raise ExtractionError("OpenAI API key is not configured")

        body = self.build_request(jpeg_bytes)
        logger.debug(
            "Requesting card extraction: model=%s max_tokens=%s image_bytes=%d",
            self._settings.model,
            self._settings.max_tokens,
            len(jpeg_bytes),
        )
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.base_url,
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/chat/completions", json=body, headers=headers
                )
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Chat completion request failed: {exc}") from exc

        if response.is_error:
            raise ExtractionError(
                upstream_error_message(response), status_code=response.status_code
            )

        try:
            completion = response.json()
            content = completion["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExtractionError(
                "Chat completion response has no message content",
                status_code=response.status_code,
            ) from exc

        card = parse_card_payload(content)
        card = card.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        logger.info(
            "Extracted card %s (%s)",
            card.display_name or "unknown",
            card.set_code or "no set code",
        )
        return card
