"""Japanese to English text translation via Azure Translator."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .errors import TranslationError
from .settings import TranslatorSettings

logger = logging.getLogger(__name__)

NO_TEXT_TO_TRANSLATE = "No text to translate."
TRANSLATION_UNAVAILABLE = "Translation unavailable."


class TextTranslator:
    def __init__(
        self,
        settings: TranslatorSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def translate(self, text: str) -> str:
        """Translate ``text``; sentinels cover blank input and empty results."""
        if not text or not text.strip():
            return NO_TEXT_TO_TRANSLATE
        if not self._settings.api_key:
            raise TranslationError("Azure Translator key is not configured")

        params = {
            "api-version": "3.0",
            "from": self._settings.source_language,
            "to": self._settings.target_language,
        }
        headers = {
            "Ocp-Apim-Subscription-Key": self._settings.api_key,
            "Ocp-Apim-Subscription-Region": self._settings.region,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self._settings.endpoint}/translate",
                    params=params,
                    headers=headers,
                    json=[{"Text": text}],
                )
        except httpx.HTTPError as exc:
            raise TranslationError(f"Translation request failed: {exc}") from exc

        if response.is_error:
            raise TranslationError(
                _error_message(response), status_code=response.status_code
            )

        try:
            documents = response.json()
        except ValueError as exc:
            raise TranslationError(
                "Translator returned malformed JSON", status_code=response.status_code
            ) from exc

        translated = _first_translation(documents)
        if translated is None:
            logger.warning("Translator returned no translations for %d chars", len(text))
            return TRANSLATION_UNAVAILABLE
        return translated


def _first_translation(documents: object) -> Optional[str]:
    if not isinstance(documents, list) or not documents:
        return None
    first = documents[0]
    if not isinstance(first, dict):
        return None
    translations = first.get("translations") or []
    if not translations or not isinstance(translations[0], dict):
        return None
    return translations[0].get("text") or None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or response.reason_phrase
    return response.text or response.reason_phrase
