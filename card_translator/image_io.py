"""Image decoding, downscaling and mask helpers."""

from __future__ import annotations

from io import BytesIO
from typing import Iterable, Optional, Sequence, Tuple, cast

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from .card_types import BoundingBox
from .errors import DecodeError

_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def load_rgb_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an upright RGB PIL Image."""
    if not image_bytes:
        raise DecodeError("Empty image bytes")
    try:
        img = cast(Image.Image, Image.open(BytesIO(image_bytes)))
        img.load()
    except (
        UnidentifiedImageError,
        OSError,
        SyntaxError,
        Image.DecompressionBombError,
    ) as exc:
        raise DecodeError("Invalid image bytes") from exc

    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def sniff_content_type(image_bytes: bytes) -> str:
    """Return the MIME type of the encoded image."""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            fmt = img.format or ""
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise DecodeError("Invalid image bytes") from exc
    return _CONTENT_TYPES.get(fmt.upper(), "application/octet-stream")


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return ImageOps.exif_transpose(img).size
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise DecodeError("Invalid image bytes") from exc


def bounded_size(width: int, height: int, max_long_edge: int) -> Tuple[int, int]:
    """Scale (width, height) so the long edge fits, never upscaling."""
    scale = min(1.0, max_long_edge / float(max(width, height)))
    target_w = min(max_long_edge, max(1, int(round(width * scale))))
    target_h = min(max_long_edge, max(1, int(round(height * scale))))
    return target_w, target_h


def encode_jpeg(img: Image.Image, *, quality: int = 85) -> bytes:
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def transcode_to_jpeg(
    image_bytes: bytes, max_long_edge: int = 1024, jpeg_quality: int = 85
) -> bytes:
    """Decode any raster image, bound its longest edge and re-encode as JPEG.

    Images already within the bound keep their dimensions. Raises
    ``DecodeError`` when the input cannot be decoded.
    """
    if max_long_edge <= 0:
        raise ValueError("max_long_edge must be positive")
    if not 0 <= jpeg_quality <= 100:
        raise ValueError("jpeg_quality must be between 0 and 100")

    img = load_rgb_image(image_bytes)
    target = bounded_size(img.width, img.height, max_long_edge)
    if target != img.size:
        img = img.resize(target, Image.Resampling.LANCZOS)
    return encode_jpeg(img, quality=jpeg_quality)


def _region_to_pixels(
    region: BoundingBox, width: int, height: int
) -> Optional[Tuple[int, int, int, int]]:
    x1 = max(0, min(int(round(region.x * width)), width))
    y1 = max(0, min(int(round(region.y * height)), height))
    x2 = max(0, min(int(round((region.x + region.w) * width)), width))
    y2 = max(0, min(int(round((region.y + region.h) * height)), height))
    if x2 <= x1 or y2 <= y1:
        return None
    return (x1, y1, x2, y2)


def build_text_mask(
    size: Tuple[int, int],
    regions: Iterable[BoundingBox],
    *,
    labels: Optional[Sequence[str]] = None,
) -> bytes:
    """Return a PNG edit mask that is transparent inside the given text regions.

    Regions use normalized coordinates; anything outside the image is clipped.
    """
    width, height = size
    mask = Image.new("RGBA", (width, height), (0, 0, 0, 255))
    draw = ImageDraw.Draw(mask)
    wanted = {label.lower() for label in labels} if labels else None
    for region in regions:
        if wanted is not None and region.label.lower() not in wanted:
            continue
        box = _region_to_pixels(region, width, height)
        if box is None:
            continue
        x1, y1, x2, y2 = box
        draw.rectangle((x1, y1, x2 - 1, y2 - 1), fill=(0, 0, 0, 0))

    buf = BytesIO()
    mask.save(buf, format="PNG")
    return buf.getvalue()
