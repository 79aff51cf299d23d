"""Data structures for extracted cards, overlays and persisted metadata."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

DEFAULT_EXTRACTION_METHOD = "OpenAI Vision API (Optimized)"
CARD_PARTITION_KEY = "OnePiece"


class BoundingBox(BaseModel):
    """Normalized text region on the source image. Advisory only."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    label: str = ""
    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0


class ConfidenceScores(BaseModel):
    """Optional per-field-group certainty scores in [0, 1]."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    type: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    cost: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    color: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    effects: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    set_code: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    collector_number: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    rarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def score_for(self, field_name: str) -> Optional[float]:
        if field_name not in type(self).model_fields:
            raise KeyError(f"Unknown confidence field '{field_name}'")
        return getattr(self, field_name)


class CardRecord(BaseModel):
    """Structured attributes extracted from a single card image.

    Field names follow the JSON schema embedded in the extraction prompt.
    Anything the model could not read is ``None`` rather than an empty string.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name_jp: Optional[str] = None
    name_en: Optional[str] = None
    type: Optional[str] = None
    color: Optional[str] = None
    cost: Optional[int] = Field(default=None, ge=0)
    power: Optional[int] = Field(default=None, ge=0)
    attribute: Optional[str] = None
    traits: Optional[List[str]] = None
    effect_main_jp: Optional[str] = None
    effect_main_en: Optional[str] = None
    effect_counter_jp: Optional[str] = None
    effect_counter_en: Optional[str] = None
    effect_trigger_jp: Optional[str] = None
    effect_trigger_en: Optional[str] = None
    set_code: Optional[str] = None
    collector_number: Optional[str] = None
    rarity: Optional[str] = None
    artist: Optional[str] = None
    copyright_footer: Optional[str] = None
    notes: Optional[str] = None
    bbox_text_regions: Optional[List[BoundingBox]] = None
    confidences: ConfidenceScores = Field(default_factory=ConfidenceScores)
    extraction_method: str = Field(
        default=DEFAULT_EXTRACTION_METHOD, alias="extractionMethod"
    )
    timestamp: Optional[datetime] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any, info: ValidationInfo) -> Any:
        if info.field_name == "extraction_method":
            return value or DEFAULT_EXTRACTION_METHOD
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("traits", mode="before")
    @classmethod
    def _clean_traits(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("confidences", mode="before")
    @classmethod
    def _default_confidences(cls, value: Any) -> Any:
        return ConfidenceScores() if value is None else value

    @property
    def display_name(self) -> Optional[str]:
        return self.name_en or self.name_jp

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class TranslatedImage:
    """Overlay image bytes and their content type."""

    data: bytes
    content_type: str = "image/png"


@dataclass
class CardMetadata:
    """Persisted metadata row for a processed card."""

    card_id: str
    card_name: str
    original_image_url: str
    translated_image_url: str
    partition_key: str = CARD_PARTITION_KEY
    card_name_jp: str = ""
    card_name_en: str = ""
    card_type: str = ""
    color: str = ""
    cost: Optional[int] = None
    power: Optional[int] = None
    rarity: str = ""
    set_code: str = ""
    collector_number: str = ""
    analysis_date: Optional[datetime] = None
    analysis_method: str = ""
    confidence: Optional[float] = None
    storage_account: str = ""
    container_name: str = ""

    @classmethod
    def from_card(
        cls,
        card: CardRecord,
        *,
        card_id: str,
        original_image_url: str,
        translated_image_url: str,
        confidence_field: str = "name",
        storage_account: str = "",
        container_name: str = "",
    ) -> "CardMetadata":
        return cls(
            card_id=card_id,
            card_name=card.display_name or "Unknown",
            card_name_jp=card.name_jp or "",
            card_name_en=card.name_en or "",
            original_image_url=original_image_url,
            translated_image_url=translated_image_url,
            card_type=card.type or "",
            color=card.color or "",
            cost=card.cost,
            power=card.power,
            rarity=card.rarity or "",
            set_code=card.set_code or "",
            collector_number=card.collector_number or "",
            analysis_date=card.timestamp or datetime.now(timezone.utc),
            analysis_method=card.extraction_method,
            confidence=card.confidences.score_for(confidence_field),
            storage_account=storage_account,
            container_name=container_name,
        )

    def to_entity(self) -> Dict[str, Any]:
        entity: Dict[str, Any] = {
            "PartitionKey": self.partition_key,
            "RowKey": self.card_id,
            "CardName": self.card_name,
            "CardNameJapanese": self.card_name_jp,
            "CardNameEnglish": self.card_name_en,
            "OriginalImageUrl": self.original_image_url,
            "TranslatedImageUrl": self.translated_image_url,
            "CardType": self.card_type,
            "Color": self.color,
            "Rarity": self.rarity,
            "SetCode": self.set_code,
            "CollectorNumber": self.collector_number,
            "AnalysisDate": self.analysis_date,
            "AnalysisMethod": self.analysis_method,
            "StorageAccount": self.storage_account,
            "ContainerName": self.container_name,
        }
        # Table storage rejects None property values.
        for key, value in (
            ("Cost", self.cost),
            ("Power", self.power),
            ("Confidence", self.confidence),
        ):
            if value is not None:
                entity[key] = value
        return entity

    @classmethod
    def from_entity(cls, entity: Dict[str, Any]) -> "CardMetadata":
        cost = entity.get("Cost")
        power = entity.get("Power")
        confidence = entity.get("Confidence")
        return cls(
            card_id=str(entity.get("RowKey", "")),
            partition_key=str(entity.get("PartitionKey", CARD_PARTITION_KEY)),
            card_name=entity.get("CardName") or "Unknown",
            card_name_jp=entity.get("CardNameJapanese") or "",
            card_name_en=entity.get("CardNameEnglish") or "",
            original_image_url=entity.get("OriginalImageUrl") or "",
            translated_image_url=entity.get("TranslatedImageUrl") or "",
            card_type=entity.get("CardType") or "",
            color=entity.get("Color") or "",
            cost=int(cost) if cost is not None else None,
            power=int(power) if power is not None else None,
            rarity=entity.get("Rarity") or "",
            set_code=entity.get("SetCode") or "",
            collector_number=entity.get("CollectorNumber") or "",
            analysis_date=entity.get("AnalysisDate"),
            analysis_method=entity.get("AnalysisMethod") or "",
            confidence=float(confidence) if confidence is not None else None,
            storage_account=entity.get("StorageAccount") or "",
            container_name=entity.get("ContainerName") or "",
        )

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "id": self.card_id,
            "card_name": self.card_name,
            "card_name_jp": self.card_name_jp,
            "card_name_en": self.card_name_en,
            "original_image_url": self.original_image_url,
            "translated_image_url": self.translated_image_url,
            "card_type": self.card_type,
            "color": self.color,
            "cost": self.cost,
            "power": self.power,
            "rarity": self.rarity,
            "set_code": self.set_code,
            "collector_number": self.collector_number,
            "analysis_date": (
                self.analysis_date.isoformat() if self.analysis_date else None
            ),
            "analysis_method": self.analysis_method,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class CardProcessingResult:
    """The card, its overlay image and the persisted metadata handle."""

    card: CardRecord
    translated_image: TranslatedImage
    metadata: CardMetadata


@dataclass(frozen=True)
class OcrTranslation:
    """Text read by the OCR backend and its English translation."""

    text: str
    translated_text: Optional[str] = None
