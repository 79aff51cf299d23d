"""Utility to try the card translation pipeline locally.

This script reads an image file from disk, extracts the card fields,
generates the English overlay and writes both to an output directory. To
invoke it, run::

    python test.py --input /path/to/card.jpg --output out_dir

Set ``OPENAI_API_KEY`` first. With ``--ocr`` the script runs the Azure
Vision OCR path instead and prints the recognised and translated text.
The script does not interact with Azure storage.
"""
import argparse
import asyncio
import json
import logging
from pathlib import Path

from card_translator.errors import CardTranslatorError
from card_translator.extraction import CardExtractionClient
from card_translator.ocr import ReadOcrClient
from card_translator.overlay import OverlayGenerator
from card_translator.pipeline import CardPipeline
from card_translator.settings import OpenAISettings, TranslatorSettings, VisionSettings
from card_translator.translate import TextTranslator


async def _run(data: bytes, output_dir: Path, use_ocr: bool) -> None:
    settings = OpenAISettings.from_env()
    pipeline = CardPipeline(
        CardExtractionClient(settings),
        OverlayGenerator(settings),
        max_long_edge=settings.max_long_edge,
        jpeg_quality=settings.jpeg_quality,
        ocr=ReadOcrClient(VisionSettings.from_env()),
        translator=TextTranslator(TranslatorSettings.from_env()),
    )
    if use_ocr:
        result = await pipeline.read_and_translate(data)
        print(result.text)
        print("---")
        print(result.translated_text)
        return

    card, translated = await pipeline.analyze(data)
    json_path = output_dir / "card.json"
    json_path.write_text(json.dumps(card.to_json_dict(), indent=2, ensure_ascii=False))
    print(f"Saved {json_path}")
    image_path = output_dir / "translated.png"
    image_path.write_bytes(translated.data)
    print(f"Saved {image_path}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Translate a card image locally")
    parser.add_argument("--input", required=True, help="Path to input image")
    parser.add_argument("--output", required=True, help="Directory to save outputs")
    parser.add_argument("--ocr", action="store_true", help="Run OCR + translation only")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    input_path = Path(args.input)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    data = input_path.read_bytes()
    try:
        asyncio.run(_run(data, output_dir, args.ocr))
    except CardTranslatorError as exc:
        print(f"Failed: {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
