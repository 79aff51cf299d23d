"""Static prompt text for card extraction and overlay generation.

The schema in ``USER_PROMPT`` must stay in lockstep with
:class:`card_translator.card_types.CardRecord`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

CARD_TYPES: Tuple[str, ...] = ("Event", "Character", "Leader", "Stage")
CARD_COLORS: Tuple[str, ...] = (
    "Red",
    "Green",
    "Blue",
    "Purple",
    "Black",
    "Yellow",
    "Dual",
    "Unknown",
)
CARD_ATTRIBUTES: Tuple[str, ...] = (
    "Slash",
    "Strike",
    "Special",
    "Ranged",
    "Wisdom",
    "Unknown",
)
CARD_RARITIES: Tuple[str, ...] = (
    "C",
    "U",
    "R",
    "SR",
    "L",
    "SEC",
    "P",
    "SP",
    "Unknown",
)

CONFIDENCE_FIELDS: Tuple[str, ...] = (
    "name",
    "type",
    "cost",
    "color",
    "effects",
    "set_code",
    "collector_number",
    "rarity",
)

_STRING_FIELDS: Tuple[str, ...] = (
    "name_jp",
    "name_en",
    "effect_main_jp",
    "effect_main_en",
    "effect_counter_jp",
    "effect_counter_en",
    "effect_trigger_jp",
    "effect_trigger_en",
    "set_code",
    "collector_number",
    "artist",
    "copyright_footer",
    "notes",
)

CARD_SCHEMA_FIELDS: Tuple[str, ...] = (
    "name_jp",
    "name_en",
    "type",
    "color",
    "cost",
    "power",
    "attribute",
    "traits",
    "effect_main_jp",
    "effect_main_en",
    "effect_counter_jp",
    "effect_counter_en",
    "effect_trigger_jp",
    "effect_trigger_en",
    "set_code",
    "collector_number",
    "rarity",
    "artist",
    "copyright_footer",
    "notes",
    "bbox_text_regions",
    "confidences",
)

SYSTEM_PROMPT = """\
You are an expert One Piece Card Game collector and analyst.
You read photographs of Japanese One Piece trading cards and transcribe every
printed detail exactly. For Japanese text you can read, give the exact
characters. For English fields, give the official English wording when you
know it, otherwise an accurate translation.
If a field cannot be read from the image, use null. Never guess set codes or
collector numbers. Lower the matching confidence score when you are unsure.
Respond with JSON only."""

USER_PROMPT = """\
Extract all visible details from the attached image and output ONLY a single valid JSON object conforming to the SCHEMA.
Keep line breaks in rules text as \\n; normalize whitespace; no extra keys, no comments, no markdown.
IMPORTANT: Return ONLY the JSON object, no additional text, no explanations.

SCHEMA:
{
  "name_jp": "string or null",
  "name_en": "string or null",
  "type": "Event or Character or Leader or Stage or null",
  "color": "Red or Green or Blue or Purple or Black or Yellow or Dual or Unknown or null",
  "cost": "number or null",
  "power": "number or null",
  "attribute": "Slash or Strike or Special or Ranged or Wisdom or Unknown or null",
  "traits": ["string"] or null,
  "effect_main_jp": "string or null",
  "effect_main_en": "string or null",
  "effect_counter_jp": "string or null",
  "effect_counter_en": "string or null",
  "effect_trigger_jp": "string or null",
  "effect_trigger_en": "string or null",
  "set_code": "string or null",
  "collector_number": "string or null",
  "rarity": "C or U or R or SR or L or SEC or P or SP or Unknown or null",
  "artist": "string or null",
  "copyright_footer": "string or null",
  "notes": "string or null",
  "bbox_text_regions": [
     {"label":"name","x":0,"y":0,"w":0,"h":0},
     {"label":"main_text","x":0,"y":0,"w":0,"h":0}
  ] or null,
  "confidences": {
    "name": "number or null",
    "type": "number or null",
    "cost": "number or null",
    "color": "number or null",
    "effects": "number or null",
    "set_code": "number or null",
    "collector_number": "number or null",
    "rarity": "number or null"
  }
}
Bounding boxes use coordinates normalized to 0..1 of the image width and height.
Confidence scores range from 0 to 1."""

OVERLAY_PROMPT = (
    "Replace all Japanese text in this trading card with accurate English equivalents. "
    "Preserve original layout, borders, art, icons, symbols, and costs. "
    "Use clean, readable typography and align text to existing boxes."
)


def system_prompt() -> str:
    return SYSTEM_PROMPT


def user_prompt() -> str:
    return USER_PROMPT


def overlay_prompt(card_name: Optional[str] = None) -> str:
    """Return the image-edit instruction, naming the card when it is known."""
    if card_name:
        return f'{OVERLAY_PROMPT} The card\'s English name is "{card_name}".'
    return OVERLAY_PROMPT


def _nullable(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"anyOf": [schema, {"type": "null"}]}


def _enum(values: Tuple[str, ...]) -> Dict[str, Any]:
    return _nullable({"type": "string", "enum": list(values)})


def card_json_schema() -> Dict[str, Any]:
    """JSON schema for the structured-output response mode."""
    properties: Dict[str, Any] = {name: _nullable({"type": "string"}) for name in _STRING_FIELDS}
    properties.update(
        {
            "type": _enum(CARD_TYPES),
            "color": _enum(CARD_COLORS),
            "attribute": _enum(CARD_ATTRIBUTES),
            "rarity": _enum(CARD_RARITIES),
            "cost": _nullable({"type": "integer"}),
            "power": _nullable({"type": "integer"}),
            "traits": _nullable({"type": "array", "items": {"type": "string"}}),
            "bbox_text_regions": _nullable(
                {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "x": {"type": "number"},
                            "y": {"type": "number"},
                            "w": {"type": "number"},
                            "h": {"type": "number"},
                        },
                        "required": ["label", "x", "y", "w", "h"],
                        "additionalProperties": False,
                    },
                }
            ),
            "confidences": {
                "type": "object",
                "properties": {
                    name: _nullable({"type": "number"}) for name in CONFIDENCE_FIELDS
                },
                "required": list(CONFIDENCE_FIELDS),
                "additionalProperties": False,
            },
        }
    )
    return {
        "type": "object",
        "properties": {name: properties[name] for name in CARD_SCHEMA_FIELDS},
        "required": list(CARD_SCHEMA_FIELDS),
        "additionalProperties": False,
    }


def response_format() -> Dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "onepiece_card",
            "strict": True,
            "schema": card_json_schema(),
        },
    }
