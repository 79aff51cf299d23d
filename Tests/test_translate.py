import logging
from typing import List

import httpx
import pytest

from card_translator.errors import TranslationError
from card_translator.settings import TranslatorSettings
from card_translator.translate import (
    NO_TEXT_TO_TRANSLATE,
    TRANSLATION_UNAVAILABLE,
    TextTranslator,
)


def _translator(handler) -> TextTranslator:
    return TextTranslator(
        TranslatorSettings(api_key="translator-key"),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_translate_calls_translator_api() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json=[{"translations": [{"text": "Monkey D. Luffy", "to": "en"}]}]
        )

    result = await _translator(handler).translate("モンキー・D・ルフィ")

    assert result == "Monkey D. Luffy"
    request = seen[0]
    assert request.url.path == "/translate"
    assert request.url.params["api-version"] == "3.0"
    assert request.url.params["from"] == "ja"
    assert request.url.params["to"] == "en"
    assert request.headers["Ocp-Apim-Subscription-Key"] == "translator-key"
    assert request.headers["Ocp-Apim-Subscription-Region"] == "uksouth"


@pytest.mark.asyncio
async def test_blank_text_skips_the_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("translator should not be called")

    assert await _translator(handler).translate("   ") == NO_TEXT_TO_TRANSLATE


@pytest.mark.asyncio
async def test_empty_translations_return_sentinel(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"translations": []}])

    with caplog.at_level(logging.WARNING):
        result = await _translator(handler).translate("テキスト")

    assert result == TRANSLATION_UNAVAILABLE
    assert "no translations" in caplog.text


@pytest.mark.asyncio
async def test_error_status_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"code": 401000, "message": "Bad key"}})

    with pytest.raises(TranslationError) as excinfo:
        await _translator(handler).translate("テキスト")

    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Bad key"


@pytest.mark.asyncio
async def test_missing_key_raises() -> None:
    translator = TextTranslator(TranslatorSettings(api_key=""))

    with pytest.raises(TranslationError):
        await translator.translate("テキスト")
