"""Immutable configuration for the pipeline components, read from app settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .prompts import CONFIDENCE_FIELDS

TRUTHY = {"1", "true", "yes", "on"}


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return (environ.get(name) or default).strip()


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'") from exc


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _env(environ, name)
    if not raw:
        return default
    return raw.lower() in TRUTHY


@dataclass(frozen=True)
class OpenAISettings:
    """Chat-completion and image-edit settings."""

    api_key: str
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    max_tokens: int = 500
    temperature: float = 0.2
    timeout_seconds: float = 60.0
    image_model: str = "gpt-image-1"
    image_size: str = "auto"
    image_use_mask: bool = False
    max_long_edge: int = 1024
    jpeg_quality: int = 85

    def __post_init__(self) -> None:
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be between 0 and 100")
        if self.max_long_edge <= 0:
            raise ValueError("max_long_edge must be positive")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0 and 2")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OpenAISettings":
        env = os.environ if environ is None else environ
        return cls(
            api_key=_env(env, "OPENAI_API_KEY"),
            base_url=_env(env, "OPENAI_BASE_URL", cls.base_url).rstrip("/"),
            model=_env(env, "OPENAI_MODEL", cls.model),
            max_tokens=_env_int(env, "OPENAI_MAX_TOKENS", cls.max_tokens),
            temperature=_env_float(env, "OPENAI_TEMPERATURE", cls.temperature),
            timeout_seconds=_env_float(
                env, "OPENAI_TIMEOUT_SECONDS", cls.timeout_seconds
            ),
            image_model=_env(env, "OPENAI_IMAGE_MODEL", cls.image_model),
            image_size=_env(env, "OPENAI_IMAGE_SIZE", cls.image_size),
            image_use_mask=_env_bool(env, "OPENAI_IMAGE_USE_MASK", cls.image_use_mask),
            max_long_edge=_env_int(env, "CARD_MAX_LONG_EDGE", cls.max_long_edge),
            jpeg_quality=_env_int(env, "CARD_JPEG_QUALITY", cls.jpeg_quality),
        )


@dataclass(frozen=True)
class VisionSettings:
    """Azure AI Vision Read (OCR) settings."""

    endpoint: str
    api_key: str
    poll_interval_seconds: float = 1.0
    max_retries: int = 10
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries <= 0:
            raise ValueError("max_retries must be positive")
        if self.poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VisionSettings":
        env = os.environ if environ is None else environ
        return cls(
            endpoint=_env(env, "AZURE_VISION_ENDPOINT").rstrip("/"),
            api_key=_env(env, "AZURE_VISION_KEY"),
            poll_interval_seconds=_env_float(
                env, "OCR_POLL_INTERVAL_SECONDS", cls.poll_interval_seconds
            ),
            max_retries=_env_int(env, "OCR_MAX_RETRIES", cls.max_retries),
        )


@dataclass(frozen=True)
class TranslatorSettings:
    """Azure Translator settings."""

    api_key: str
    endpoint: str = "https://api.cognitive.microsofttranslator.com"
    region: str = "uksouth"
    source_language: str = "ja"
    target_language: str = "en"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "TranslatorSettings":
        env = os.environ if environ is None else environ
        return cls(
            api_key=_env(env, "AZURE_TRANSLATOR_KEY"),
            endpoint=_env(env, "AZURE_TRANSLATOR_ENDPOINT", cls.endpoint).rstrip("/"),
            region=_env(env, "AZURE_TRANSLATOR_REGION", cls.region),
        )


@dataclass(frozen=True)
class StorageSettings:
    """Blob container and metadata table settings."""

    auth_mode: str = "connection_string"
    connection_string: str = ""
    account_url: str = ""
    table_url: str = ""
    container_name: str = "onepiece-cards"
    table_name: str = "CardMetadata"
    account_name: str = ""
    confidence_field: str = "name"

    def __post_init__(self) -> None:
        if self.confidence_field not in CONFIDENCE_FIELDS:
            raise ValueError(
                f"CARD_CONFIDENCE_FIELD must be one of {', '.join(CONFIDENCE_FIELDS)}, "
                f"got '{self.confidence_field}'"
            )

    @property
    def uses_managed_identity(self) -> bool:
        return self.auth_mode in {"managed_identity", "aad"}

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageSettings":
        env = os.environ if environ is None else environ
        return cls(
            auth_mode=_env(env, "STORAGE_AUTH_MODE", cls.auth_mode).lower(),
            connection_string=_env(env, "AzureWebJobsStorage"),
            account_url=_env(env, "STORAGE_ACCOUNT_URL"),
            table_url=_env(env, "STORAGE_TABLE_URL"),
            container_name=_env(env, "CARD_CONTAINER_NAME", cls.container_name),
            table_name=_env(env, "CARD_TABLE_NAME", cls.table_name),
            account_name=_env(env, "STORAGE_ACCOUNT_NAME"),
            confidence_field=_env(env, "CARD_CONFIDENCE_FIELD", cls.confidence_field),
        )
