"""Card analysis pipeline: transcode, extract, overlay, upload, persist."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple, Union

from .card_types import CardProcessingResult, CardRecord, OcrTranslation, TranslatedImage
from .errors import CardTranslatorError, PipelineError
from .extraction import CardExtractionClient
from .image_io import sniff_content_type, transcode_to_jpeg
from .ocr import NO_TEXT_DETECTED, ReadOcrClient
from .overlay import OverlayGenerator
from .storage import CardStorage
from .translate import NO_TEXT_TO_TRANSLATE, TextTranslator

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}

TRANSLATED_FILENAME = "translated.png"


def original_filename(content_type: str) -> str:
    return f"original.{_EXTENSIONS.get(content_type, 'bin')}"


class CardPipeline:
    """Runs a card image through every stage, aborting on the first failure."""

    def __init__(
        self,
        extractor: CardExtractionClient,
        overlay: OverlayGenerator,
        storage: Optional[CardStorage] = None,
        *,
        max_long_edge: int = 1024,
        jpeg_quality: int = 85,
        ocr: Optional[ReadOcrClient] = None,
        translator: Optional[TextTranslator] = None,
    ) -> None:
        self.extractor = extractor
        self.overlay = overlay
        self.storage = storage
        self.max_long_edge = max_long_edge
        self.jpeg_quality = jpeg_quality
        self.ocr = ocr
        self.translator = translator

    async def analyze(self, image_bytes: bytes) -> Tuple[CardRecord, TranslatedImage]:
        """Extract the card and build its English overlay without touching storage."""
        card, translated, _ = await self._analyze(image_bytes)
        return card, translated

    async def _analyze(
        self, image_bytes: bytes
    ) -> Tuple[CardRecord, TranslatedImage, str]:
        stage = "transcode"
        try:
            content_type = sniff_content_type(image_bytes)
            jpeg = transcode_to_jpeg(
                image_bytes,
                max_long_edge=self.max_long_edge,
                jpeg_quality=self.jpeg_quality,
            )
            logger.info("Transcoded %d bytes to %d byte JPEG", len(image_bytes), len(jpeg))

            stage = "extract"
            card = await self.extractor.extract(jpeg)

            stage = "overlay"
            translated = await self.overlay.generate_translated_image(
                image_bytes, content_type, card
            )
            logger.info("Generated overlay for %s", card.display_name or "unknown card")
        except (CardTranslatorError, ValueError) as exc:
            logger.warning("Stage %s failed: %s", stage, exc)
            raise PipelineError(stage, exc) from exc
        return card, translated, content_type

    async def process(
        self, image_bytes: bytes, filename: Optional[str] = None
    ) -> CardProcessingResult:
        """Analyze one image, upload both images and persist its metadata."""
        if self.storage is None:
            raise PipelineError("upload", CardTranslatorError("Storage is not configured"))
        logger.info("Processing card image %s", filename or "<upload>")
        card, translated, content_type = await self._analyze(image_bytes)

        stage = "upload"
        try:
            original_url = await asyncio.to_thread(
                self.storage.upload_image,
                image_bytes,
                original_filename(content_type),
                content_type,
            )
            translated_url = await asyncio.to_thread(
                self.storage.upload_image,
                translated.data,
                TRANSLATED_FILENAME,
                translated.content_type,
            )

            stage = "persist"
            metadata = await asyncio.to_thread(
                self.storage.store_metadata, card, original_url, translated_url
            )
        except (CardTranslatorError, ValueError) as exc:
            logger.warning("Stage %s failed: %s", stage, exc)
            raise PipelineError(stage, exc) from exc

        logger.info("Stored card %s as %s", metadata.card_name, metadata.card_id)
        return CardProcessingResult(card=card, translated_image=translated, metadata=metadata)

    async def process_many(
        self, images: Sequence[bytes], concurrency: int = 4
    ) -> List[Union[CardProcessingResult, PipelineError]]:
        """Process independent images concurrently, keeping input order."""
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        semaphore = asyncio.Semaphore(concurrency)

        async def _one(data: bytes) -> Union[CardProcessingResult, PipelineError]:
            async with semaphore:
                try:
                    return await self.process(data)
                except PipelineError as exc:
                    return exc

        return list(await asyncio.gather(*(_one(data) for data in images)))

    async def read_and_translate(
        self,
        image_bytes: bytes,
        *,
        translate: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OcrTranslation:
        """OCR the image and optionally translate the recognised text."""
        if self.ocr is None:
            raise CardTranslatorError("OCR client is not configured")
        text = await self.ocr.read_text(image_bytes, cancel_event=cancel_event)
        if not translate:
            return OcrTranslation(text=text)
        if text == NO_TEXT_DETECTED:
            return OcrTranslation(text=text, translated_text=NO_TEXT_TO_TRANSLATE)
        if self.translator is None:
            raise CardTranslatorError("Translator is not configured")
        translated = await self.translator.translate(text)
        return OcrTranslation(text=text, translated_text=translated)
