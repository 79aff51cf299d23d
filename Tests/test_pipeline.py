import asyncio
from typing import List, Optional, Tuple

import httpx
import pytest
from PIL import Image

from card_translator import pipeline as pipeline_module
from card_translator.card_types import (
    CardMetadata,
    CardRecord,
    ConfidenceScores,
    TranslatedImage,
)
from card_translator.errors import (
    DecodeError,
    ExtractionError,
    OverlayError,
    PipelineError,
    StorageError,
)
from card_translator.image_io import sniff_content_type
from card_translator.ocr import NO_TEXT_DETECTED
from card_translator.overlay import OverlayGenerator
from card_translator.pipeline import CardPipeline, original_filename
from card_translator.settings import StorageSettings
from card_translator.storage import AzureCardStorage, create_card_storage
from card_translator.translate import NO_TEXT_TO_TRANSLATE
from Tests.helpers import make_image_bytes, openai_settings

OVERLAY_PNG = make_image_bytes(fmt="PNG", color=(0, 0, 255))


class _StubExtractor:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[bytes] = []

    async def extract(self, jpeg_bytes: bytes) -> CardRecord:
        self.calls.append(jpeg_bytes)
        if self.error:
            raise self.error
        return CardRecord(name_en="Monkey D. Luffy", cost=4, power=6000)


class _StubOverlay:
    def __init__(self) -> None:
        self.calls: List[Tuple[bytes, str]] = []

    async def generate_translated_image(
        self, original_bytes: bytes, content_type: str, card: CardRecord
    ) -> TranslatedImage:
        self.calls.append((original_bytes, content_type))
        return TranslatedImage(data=OVERLAY_PNG)


class _StubStorage:
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.uploads: List[Tuple[str, str]] = []
        self.stored: List[CardRecord] = []

    def upload_image(self, data: bytes, filename: str, content_type: str) -> str:
        if self.fail_on == "upload":
            raise StorageError("upload failed")
        self.uploads.append((filename, content_type))
        return f"https://blob/{filename}"

    def store_metadata(self, card, original_url, translated_url) -> CardMetadata:
        if self.fail_on == "persist":
            raise StorageError("insert failed")
        self.stored.append(card)
        return CardMetadata(
            card_id="id-1",
            card_name=card.display_name or "Unknown",
            original_image_url=original_url,
            translated_image_url=translated_url,
        )

    def list_metadata(self):
        return []

    def get_metadata(self, card_id):
        return None


class _StubOcr:
    def __init__(self, text: str) -> None:
        self.text = text

    async def read_text(self, image_bytes, *, cancel_event=None) -> str:
        return self.text


class _StubTranslator:
    def __init__(self) -> None:
        self.calls: List[str] = []

    async def translate(self, text: str) -> str:
        self.calls.append(text)
        return "translated: " + text


@pytest.mark.asyncio
async def test_process_runs_every_stage() -> None:
    extractor, overlay, storage = _StubExtractor(), _StubOverlay(), _StubStorage()
    pipeline = CardPipeline(extractor, overlay, storage, max_long_edge=32)
    original = make_image_bytes((64, 48), fmt="PNG")

    result = await pipeline.process(original, "card.png")

    assert result.card.name_en == "Monkey D. Luffy"
    assert result.translated_image.data == OVERLAY_PNG
    assert result.metadata.original_image_url == "https://blob/original.png"
    assert result.metadata.translated_image_url == "https://blob/translated.png"
    assert storage.uploads == [("original.png", "image/png"), ("translated.png", "image/png")]
    # Extraction sees the downscaled JPEG, overlay sees the untouched original.
    assert extractor.calls[0][:2] == b"\xff\xd8"
    assert overlay.calls == [(original, "image/png")]


@pytest.mark.asyncio
async def test_overlay_failure_never_touches_storage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"type": "server_error", "message": "down"}})

    storage = _StubStorage()
    pipeline = CardPipeline(
        _StubExtractor(),
        OverlayGenerator(openai_settings(), transport=httpx.MockTransport(handler)),
        storage,
    )

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(make_image_bytes())

    assert excinfo.value.stage == "overlay"
    assert isinstance(excinfo.value.cause, OverlayError)
    assert excinfo.value.__cause__ is excinfo.value.cause
    assert storage.uploads == []
    assert storage.stored == []


@pytest.mark.asyncio
async def test_undecodable_input_fails_at_transcode() -> None:
    extractor = _StubExtractor()
    pipeline = CardPipeline(extractor, _StubOverlay(), _StubStorage())

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(b"not an image")

    assert excinfo.value.stage == "transcode"
    assert isinstance(excinfo.value.cause, DecodeError)
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_extraction_failure_skips_overlay() -> None:
    overlay = _StubOverlay()
    pipeline = CardPipeline(
        _StubExtractor(error=ExtractionError("bad json")), overlay, _StubStorage()
    )

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(make_image_bytes())

    assert excinfo.value.stage == "extract"
    assert overlay.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("stage", ["upload", "persist"])
async def test_storage_failures_name_their_stage(stage) -> None:
    pipeline = CardPipeline(_StubExtractor(), _StubOverlay(), _StubStorage(fail_on=stage))

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(make_image_bytes())

    assert excinfo.value.stage == stage
    assert isinstance(excinfo.value.cause, StorageError)


class _BlobClient:
    def __init__(self, name: str) -> None:
        self.url = f"https://example.blob.core.windows.net/onepiece-cards/{name}"


class _Container:
    container_name = "onepiece-cards"
    account_name = "example"

    def __init__(self) -> None:
        self.uploaded: List[str] = []

    def create_container(self) -> None:
        pass

    def upload_blob(self, name, data, overwrite=False, content_settings=None) -> None:
        self.uploaded.append(name)

    def get_blob_client(self, name: str) -> _BlobClient:
        return _BlobClient(name)


class _Table:
    table_name = "CardMetadata"

    def __init__(self) -> None:
        self.entities: List[dict] = []

    def create_table(self) -> None:
        pass

    def create_entity(self, entity) -> None:
        self.entities.append(entity)


@pytest.mark.asyncio
async def test_metadata_build_failure_is_a_persist_error(monkeypatch) -> None:
    def _missing(self, field_name):
        raise KeyError(field_name)

    monkeypatch.setattr(ConfidenceScores, "score_for", _missing)
    container, table = _Container(), _Table()
    pipeline = CardPipeline(
        _StubExtractor(), _StubOverlay(), AzureCardStorage(container, table)
    )

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(make_image_bytes())

    assert excinfo.value.stage == "persist"
    assert isinstance(excinfo.value.cause, StorageError)
    assert len(container.uploaded) == 2
    assert table.entities == []


def test_bad_confidence_field_fails_before_any_upload() -> None:
    settings = StorageSettings(
        connection_string=(
            "DefaultEndpointsProtocol=https;AccountName=example;"
            "AccountKey=Zm9vYmFy;EndpointSuffix=core.windows.net"
        ),
        confidence_field="rarity",
    )
    assert create_card_storage(settings) is not None

    with pytest.raises(ValueError, match="CARD_CONFIDENCE_FIELD"):
        StorageSettings(confidence_field="nmae")
    with pytest.raises(ValueError, match="nmae"):
        AzureCardStorage(_Container(), _Table(), confidence_field="nmae")


@pytest.mark.asyncio
async def test_process_sniffs_content_type_once(monkeypatch) -> None:
    calls: List[bytes] = []

    def _counting_sniff(data: bytes) -> str:
        calls.append(data)
        return sniff_content_type(data)

    monkeypatch.setattr(pipeline_module, "sniff_content_type", _counting_sniff)
    storage = _StubStorage()
    pipeline = CardPipeline(_StubExtractor(), _StubOverlay(), storage)
    original = make_image_bytes(fmt="PNG")

    await pipeline.process(original)

    assert calls == [original]
    assert storage.uploads[0] == ("original.png", "image/png")


@pytest.mark.asyncio
async def test_oversized_image_fails_at_transcode(monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    extractor = _StubExtractor()
    pipeline = CardPipeline(extractor, _StubOverlay(), _StubStorage())

    with pytest.raises(PipelineError) as excinfo:
        await pipeline.process(make_image_bytes((100, 100), fmt="PNG"))

    assert excinfo.value.stage == "transcode"
    assert isinstance(excinfo.value.cause, DecodeError)
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_analyze_skips_storage() -> None:
    pipeline = CardPipeline(_StubExtractor(), _StubOverlay())

    card, translated = await pipeline.analyze(make_image_bytes(fmt="JPEG"))

    assert card.power == 6000
    assert translated.content_type == "image/png"


@pytest.mark.asyncio
async def test_process_requires_storage() -> None:
    pipeline = CardPipeline(_StubExtractor(), _StubOverlay())

    with pytest.raises(PipelineError):
        await pipeline.process(make_image_bytes())


@pytest.mark.asyncio
async def test_process_many_keeps_order_and_isolates_failures() -> None:
    pipeline = CardPipeline(_StubExtractor(), _StubOverlay(), _StubStorage())
    images = [make_image_bytes(), b"broken", make_image_bytes(fmt="JPEG")]

    results = await pipeline.process_many(images, concurrency=2)

    assert len(results) == 3
    assert results[0].metadata.card_id == "id-1"
    assert isinstance(results[1], PipelineError)
    assert results[1].stage == "transcode"
    assert results[2].metadata.original_image_url == "https://blob/original.jpg"


@pytest.mark.asyncio
async def test_process_many_bounds_concurrency() -> None:
    active = 0
    peak = 0

    class _SlowExtractor(_StubExtractor):
        async def extract(self, jpeg_bytes: bytes) -> CardRecord:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await super().extract(jpeg_bytes)

    pipeline = CardPipeline(_SlowExtractor(), _StubOverlay(), _StubStorage())

    await pipeline.process_many([make_image_bytes()] * 6, concurrency=2)

    assert peak <= 2


@pytest.mark.asyncio
async def test_read_and_translate() -> None:
    translator = _StubTranslator()
    pipeline = CardPipeline(
        _StubExtractor(), _StubOverlay(), ocr=_StubOcr("ルフィ"), translator=translator
    )

    result = await pipeline.read_and_translate(b"image")
    untranslated = await pipeline.read_and_translate(b"image", translate=False)

    assert result.text == "ルフィ"
    assert result.translated_text == "translated: ルフィ"
    assert untranslated.translated_text is None
    assert translator.calls == ["ルフィ"]


@pytest.mark.asyncio
async def test_read_and_translate_skips_empty_ocr() -> None:
    translator = _StubTranslator()
    pipeline = CardPipeline(
        _StubExtractor(), _StubOverlay(), ocr=_StubOcr(NO_TEXT_DETECTED), translator=translator
    )

    result = await pipeline.read_and_translate(b"image")

    assert result.translated_text == NO_TEXT_TO_TRANSLATE
    assert translator.calls == []


def test_original_filename_uses_sniffed_type() -> None:
    assert original_filename("image/jpeg") == "original.jpg"
    assert original_filename("image/webp") == "original.webp"
    assert original_filename("application/octet-stream") == "original.bin"
