"""Card analysis and translation helpers.

This package exposes the pipeline used by both the HTTP endpoints and the
blob trigger, along with the clients for each upstream service.
"""

from .card_types import (  # noqa: F401
    CardMetadata,
    CardProcessingResult,
    CardRecord,
    OcrTranslation,
    TranslatedImage,
)
from .errors import (  # noqa: F401
    CardTranslatorError,
    DecodeError,
    ExtractionError,
    OcrJobError,
    OcrTimeoutError,
    OverlayError,
    PipelineError,
    StorageError,
    SubmissionError,
    TranslationError,
    UpstreamError,
)
from .extraction import CardExtractionClient, parse_card_payload  # noqa: F401
from .image_io import transcode_to_jpeg  # noqa: F401
from .ocr import NO_TEXT_DETECTED, ReadOcrClient  # noqa: F401
from .overlay import OverlayGenerator  # noqa: F401
from .pipeline import CardPipeline  # noqa: F401
from .storage import AzureCardStorage, CardStorage, create_card_storage  # noqa: F401
from .translate import TextTranslator  # noqa: F401
