import base64
import json
import logging
import os
from typing import Optional

import azure.functions as func

from card_translator.errors import (
    CardTranslatorError,
    DecodeError,
    OcrTimeoutError,
    PipelineError,
    StorageError,
    UpstreamError,
)
from card_translator.extraction import CardExtractionClient
from card_translator.ocr import ReadOcrClient
from card_translator.overlay import OverlayGenerator
from card_translator.pipeline import CardPipeline
from card_translator.settings import (
    OpenAISettings,
    StorageSettings,
    TranslatorSettings,
    VisionSettings,
)
from card_translator.storage import AzureCardStorage, create_card_storage
from card_translator.translate import TextTranslator

app = func.FunctionApp()

INPUT_CONTAINER_NAME = os.environ.get("INPUT_CONTAINER_NAME", "input")


def _resolve_auth_level(value: Optional[str], default: func.AuthLevel) -> func.AuthLevel:
    if not value:
        return default
    normalized = value.strip().upper()
    if normalized in {"ANONYMOUS", "FUNCTION", "ADMIN"}:
        return getattr(func.AuthLevel, normalized)
    logging.warning("Unknown auth level '%s'; defaulting to %s", value, default)
    return default


DEFAULT_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HTTP_AUTH_LEVEL"), func.AuthLevel.FUNCTION
)
HEALTH_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HEALTH_AUTH_LEVEL"), DEFAULT_AUTH_LEVEL
)


def _get_card_storage() -> Optional[AzureCardStorage]:
    """Return the card storage adapter if storage is configured."""
    try:
        settings = StorageSettings.from_env()
    except ValueError as exc:
        logging.error("Invalid storage settings: %s", exc)
        return None
    return create_card_storage(settings)


def _build_pipeline(storage: Optional[AzureCardStorage] = None) -> CardPipeline:
    openai_settings = OpenAISettings.from_env()
    return CardPipeline(
        CardExtractionClient(openai_settings),
        OverlayGenerator(openai_settings),
        storage,
        max_long_edge=openai_settings.max_long_edge,
        jpeg_quality=openai_settings.jpeg_quality,
        ocr=ReadOcrClient(VisionSettings.from_env()),
        translator=TextTranslator(TranslatorSettings.from_env()),
    )


def _json_response(payload: object, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        body=json.dumps(payload),
        status_code=status_code,
        mimetype="application/json",
    )


def _error_response(message: str, status_code: int, **extra: object) -> func.HttpResponse:
    payload = {"error": message}
    payload.update(extra)
    return _json_response(payload, status_code=status_code)


def _pipeline_error_response(exc: PipelineError) -> func.HttpResponse:
    cause = exc.cause
    if isinstance(cause, DecodeError):
        status_code = 422
    elif isinstance(cause, UpstreamError):
        status_code = 502
    else:
        status_code = 500
    logging.error("Card pipeline failed at %s: %s", exc.stage, cause)
    return _error_response(str(cause), status_code, stage=exc.stage)


def _parse_bool_param(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@app.function_name(name="ProcessBlob")
@app.blob_trigger(
    arg_name="inputBlob",
    path=f"{INPUT_CONTAINER_NAME}/{{name}}",
    connection="AzureWebJobsStorage",
)
async def process_blob(inputBlob: func.InputStream) -> None:
    """Blob trigger that translates card images uploaded to the input container."""
    if not inputBlob.name:
        logging.error("Blob name is missing, cannot process.")
        return

    logging.info("Processing blob: %s", inputBlob.name)

    storage = _get_card_storage()
    if storage is None:
        logging.critical(
            "Exiting: card storage could not be initialized. "
            "Check storage connection settings."
        )
        return

    try:
        blob_bytes = inputBlob.read()
    except OSError as exc:
        logging.error("Failed to read blob %s: %s", inputBlob.name, exc)
        return

    try:
        result = await _build_pipeline(storage).process(blob_bytes, inputBlob.name)
    except (PipelineError, ValueError) as exc:
        logging.error("Failed to process blob %s: %s", inputBlob.name, exc)
        return
    logging.info(
        "Processed blob %s as card %s", inputBlob.name, result.metadata.card_id
    )


@app.function_name(name="Health")
@app.route(route="health", methods=["GET"], auth_level=HEALTH_AUTH_LEVEL)
def health(req: func.HttpRequest) -> func.HttpResponse:
    """Simple health endpoint for Postman/smoke tests."""
    return func.HttpResponse("OK", status_code=200)


@app.function_name(name="ProcessCard")
@app.route(route="cards", methods=["POST"], auth_level=DEFAULT_AUTH_LEVEL)
async def process_card(req: func.HttpRequest) -> func.HttpResponse:
    """Analyze an uploaded card image and relabel it in English.

    Send the image bytes as the raw request body.

    Query params:
      - output=upload|return|image (default: upload)
    ``upload`` stores both images and the metadata row and returns the
    metadata. ``return`` responds with the card JSON and a base64 overlay.
    ``image`` responds with the overlay PNG itself.
    """
    output_mode = (req.params.get("output") or "upload").strip().lower()
    if output_mode in {"upload", "cloud"}:
        output_mode = "upload"
    elif output_mode in {"return", "json"}:
        output_mode = "return"
    elif output_mode in {"image", "png"}:
        output_mode = "image"
    else:
        return func.HttpResponse(
            "Unsupported output. Use 'upload', 'return', or 'image'.",
            status_code=400,
        )

    image_bytes = req.get_body() or b""
    if not image_bytes:
        return func.HttpResponse(
            "Provide image bytes in the request body.", status_code=400
        )

    storage = None
    if output_mode == "upload":
        storage = _get_card_storage()
        if storage is None:
            return func.HttpResponse(
                "Storage is not configured. Set AzureWebJobsStorage.",
                status_code=500,
            )

    try:
        pipeline = _build_pipeline(storage)
    except ValueError as exc:
        logging.error("Invalid pipeline settings: %s", exc)
        return _error_response(str(exc), 500)

    source_name = (
        (req.params.get("name") or "").strip() or req.headers.get("x-file-name") or None
    )

    try:
        if output_mode == "upload":
            result = await pipeline.process(image_bytes, source_name)
            payload = result.metadata.to_json_dict()
            payload["card"] = result.card.to_json_dict()
            return _json_response(payload)

        card, translated = await pipeline.analyze(image_bytes)
    except PipelineError as exc:
        return _pipeline_error_response(exc)

    if output_mode == "image":
        return func.HttpResponse(
            body=translated.data,
            status_code=200,
            mimetype=translated.content_type,
            headers={"Content-Disposition": "inline; filename=translated.png"},
        )

    return _json_response(
        {
            "card": card.to_json_dict(),
            "translated_image": {
                "mime": translated.content_type,
                "data": base64.b64encode(translated.data).decode("utf-8"),
            },
        }
    )


@app.function_name(name="ListCards")
@app.route(route="cards", methods=["GET"], auth_level=DEFAULT_AUTH_LEVEL)
def list_cards(req: func.HttpRequest) -> func.HttpResponse:
    """Return stored card metadata, newest first."""
    storage = _get_card_storage()
    if storage is None:
        return func.HttpResponse(
            "Storage is not configured. Set AzureWebJobsStorage.", status_code=500
        )
    try:
        items = storage.list_metadata()
    except StorageError as exc:
        logging.error("Failed to list cards: %s", exc)
        return _error_response(str(exc), 500)
    return _json_response(
        {"count": len(items), "items": [item.to_json_dict() for item in items]}
    )


@app.function_name(name="GetCard")
@app.route(route="cards/{card_id}", methods=["GET"], auth_level=DEFAULT_AUTH_LEVEL)
def get_card(req: func.HttpRequest) -> func.HttpResponse:
    card_id = (req.route_params.get("card_id") or "").strip()
    if not card_id:
        return func.HttpResponse("Provide a card id.", status_code=400)

    storage = _get_card_storage()
    if storage is None:
        return func.HttpResponse(
            "Storage is not configured. Set AzureWebJobsStorage.", status_code=500
        )
    try:
        item = storage.get_metadata(card_id)
    except StorageError as exc:
        logging.error("Failed to read card %s: %s", card_id, exc)
        return _error_response(str(exc), 500)
    if item is None:
        return _error_response(f"Card '{card_id}' not found.", 404)
    return _json_response(item.to_json_dict())


@app.function_name(name="ReadText")
@app.route(route="ocr", methods=["POST"], auth_level=DEFAULT_AUTH_LEVEL)
async def read_text(req: func.HttpRequest) -> func.HttpResponse:
    """Run OCR over the uploaded image and optionally translate the text.

    Query params:
      - translate=true|false (default: true)
    """
    image_bytes = req.get_body() or b""
    if not image_bytes:
        return func.HttpResponse(
            "Provide image bytes in the request body.", status_code=400
        )
    translate = _parse_bool_param(req.params.get("translate"), default=True)

    try:
        pipeline = _build_pipeline()
    except ValueError as exc:
        logging.error("Invalid pipeline settings: %s", exc)
        return _error_response(str(exc), 500)

    try:
        result = await pipeline.read_and_translate(image_bytes, translate=translate)
    except OcrTimeoutError as exc:
        logging.error("OCR timed out: %s", exc)
        return _error_response(str(exc), 504)
    except UpstreamError as exc:
        logging.error("OCR request failed: %s", exc)
        return _error_response(exc.message, 502, upstream_status=exc.status_code)
    except CardTranslatorError as exc:
        logging.error("OCR path is not available: %s", exc)
        return _error_response(str(exc), 500)

    payload = {"text": result.text}
    if translate:
        payload["translated_text"] = result.translated_text
    return _json_response(payload)
