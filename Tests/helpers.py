"""Test helpers for sample images, model payloads and Azure Storage settings."""

import json
import os
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import pytest
from PIL import Image

from card_translator.settings import OpenAISettings, VisionSettings


ROOT = Path(__file__).resolve().parents[1]
LOCAL_SETTINGS = ROOT / "local.settings.json"
DEVSTORE_CONNECTION = (
    "DefaultEndpointsProtocol=http;"
    "AccountName=devstoreaccount1;"
    "AccountKey=Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw==;"
    "BlobEndpoint=http://127.0.0.1:10000/devstoreaccount1;"
    "QueueEndpoint=http://127.0.0.1:10001/devstoreaccount1;"
    "TableEndpoint=http://127.0.0.1:10002/devstoreaccount1;"
)

LUFFY_PAYLOAD: Dict[str, Any] = {
    "name_jp": "モンキー・D・ルフィ",
    "name_en": "Monkey D. Luffy",
    "type": "Leader",
    "color": "Red",
    "cost": 4,
    "power": 6000,
    "attribute": "Strike",
    "traits": ["Supernovas", "Straw Hat Crew"],
    "effect_main_jp": None,
    "effect_main_en": "[Activate: Main] Give up to 1 rested DON!! card to this Leader.",
    "effect_counter_jp": None,
    "effect_counter_en": None,
    "effect_trigger_jp": None,
    "effect_trigger_en": None,
    "set_code": "OP01",
    "collector_number": "001",
    "rarity": "L",
    "artist": None,
    "copyright_footer": None,
    "notes": None,
    "bbox_text_regions": [{"label": "name", "x": 0.1, "y": 0.8, "w": 0.8, "h": 0.1}],
    "confidences": {"name": 0.95, "rarity": 0.7},
}


def make_image_bytes(
    size: Tuple[int, int] = (64, 48),
    fmt: str = "PNG",
    color: Tuple[int, int, int] = (200, 30, 30),
) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def openai_settings(**overrides: Any) -> OpenAISettings:
    values: Dict[str, Any] = {
        "api_key": "sk-test",
        "base_url": "https://api.openai.test/v1",
    }
    values.update(overrides)
    return OpenAISettings(**values)


def vision_settings(**overrides: Any) -> VisionSettings:
    values: Dict[str, Any] = {
        "endpoint": "https://vision.test",
        "api_key": "vision-key",
        "poll_interval_seconds": 0.0,
        "max_retries": 10,
    }
    values.update(overrides)
    return VisionSettings(**values)


def chat_completion(content: Any) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def load_settings() -> dict:
    """Load values from local.settings.json."""
    if not LOCAL_SETTINGS.exists():
        return {}
    try:
        data = json.loads(LOCAL_SETTINGS.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError):
        return {}
    return data.get("Values", {})


def normalize_connection_string(connection: str) -> str:
    """Expand shorthand dev storage connection strings for Azurite."""
    if not connection:
        return connection
    if "usedevelopmentstorage=true" in connection.lower():
        return DEVSTORE_CONNECTION
    return connection


def get_storage_connection(monkeypatch: Optional[pytest.MonkeyPatch] = None) -> str:
    """Resolve AzureWebJobsStorage from env first, then local.settings.json."""
    env_connection = os.environ.get("AzureWebJobsStorage")
    if env_connection:
        connection = normalize_connection_string(env_connection)
        if monkeypatch:
            monkeypatch.setenv("AzureWebJobsStorage", connection)
        return connection

    values = load_settings()
    connection = values.get("AzureWebJobsStorage") or ""
    if not connection:
        pytest.skip("AzureWebJobsStorage not configured in env or local.settings.json")

    normalized = normalize_connection_string(connection)
    if monkeypatch:
        monkeypatch.setenv("AzureWebJobsStorage", normalized)
    return normalized
