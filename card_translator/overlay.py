"""English overlay generation through the image-edit endpoint."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional

import httpx

from .card_types import CardRecord, TranslatedImage
from .errors import DecodeError, OverlayError
from .extraction import upstream_error_message
from .image_io import build_text_mask, image_size
from .prompts import overlay_prompt
from .settings import OpenAISettings

logger = logging.getLogger(__name__)

IMAGE_SIZES = {
    "auto",
    "256x256",
    "512x512",
    "1024x1024",
    "1024x1536",
    "1536x1024",
}


class OverlayGenerator:
    """Asks the image-edit model to relabel a card in English."""

    def __init__(
        self,
        settings: OpenAISettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if settings.image_size not in IMAGE_SIZES:
            raise ValueError(
                f"Unsupported image size '{settings.image_size}'. "
                f"Choose from: {', '.join(sorted(IMAGE_SIZES))}."
            )
        self._settings = settings
        self._transport = transport

    def _mask_for(self, image_bytes: bytes, card: CardRecord) -> Optional[bytes]:
        if not self._settings.image_use_mask or not card.bbox_text_regions:
            return None
        try:
            size = image_size(image_bytes)
        except DecodeError:
            logger.warning("Could not size image for mask; sending without mask")
            return None
        return build_text_mask(size, card.bbox_text_regions)

    async def generate_overlay(
        self,
        original_bytes: bytes,
        content_type: str,
        card: CardRecord,
        *,
        mask_png: Optional[bytes] = None,
    ) -> bytes:
        """Return raw bytes of the English-relabeled card image."""
        if not self._settings.api_key:
            raise OverlayError("OpenAI API key is not configured")

        if mask_png is None:
            mask_png = self._mask_for(original_bytes, card)

        filename = "card.png" if content_type == "image/png" else "card.jpg"
        files = {"image": (filename, original_bytes, content_type)}
        if mask_png is not None:
            files["mask"] = ("mask.png", mask_png, "image/png")
        data = {
            "model": self._settings.image_model,
            "prompt": overlay_prompt(card.name_en),
            "size": self._settings.image_size,
        }
        logger.debug(
            "Requesting overlay: model=%s size=%s mask=%s",
            self._settings.image_model,
            self._settings.image_size,
            mask_png is not None,
        )
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.base_url,
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/images/edits",
                    data=data,
                    files=files,
                    headers={"Authorization": f"Bearer {self._settings.api_key}"},
                )
        except httpx.HTTPError as exc:
            raise OverlayError(f"Image edit request failed: {exc}") from exc

        if response.is_error:
            raise OverlayError(
                upstream_error_message(response), status_code=response.status_code
            )

        try:
            b64 = response.json()["data"][0]["b64_json"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise OverlayError(
                "No image data returned from image edit endpoint",
                status_code=response.status_code,
            ) from exc
        if not b64:
            raise OverlayError(
                "No image data returned from image edit endpoint",
                status_code=response.status_code,
            )
        try:
            return base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise OverlayError("Image edit endpoint returned invalid base64") from exc

    async def generate_translated_image(
        self, original_bytes: bytes, content_type: str, card: CardRecord
    ) -> TranslatedImage:
        data = await self.generate_overlay(original_bytes, content_type, card)
        return TranslatedImage(data=data, content_type="image/png")
