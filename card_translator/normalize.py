"""Canonicalization of enumerated card fields returned by the vision model."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional, Sequence

from rapidfuzz import fuzz, process
from unidecode import unidecode

from .prompts import CARD_ATTRIBUTES, CARD_COLORS, CARD_RARITIES, CARD_TYPES

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 80

_RARITY_ALIASES: Dict[str, str] = {
    "common": "C",
    "uncommon": "U",
    "rare": "R",
    "super rare": "SR",
    "leader": "L",
    "secret rare": "SEC",
    "secret": "SEC",
    "promo": "P",
    "promotion": "P",
    "special": "SP",
    "special card": "SP",
}


def _fold(value: str) -> str:
    # unidecode also maps full-width Latin (e.g. "ＳＲ") onto ASCII.
    folded = unidecode(value).lower()
    return re.sub(r"[^a-z0-9]+", " ", folded).strip()


def canonicalize_choice(
    value: Optional[str],
    choices: Sequence[str],
    *,
    fallback: Optional[str] = None,
    aliases: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Map a free-form value onto one of ``choices``.

    Exact matches after folding win, then aliases, then a fuzzy partial-ratio
    match scoring at least ``FUZZY_THRESHOLD``. Otherwise ``fallback``.
    """
    if value is None:
        return None
    folded = _fold(value)
    if not folded:
        return None

    for choice in choices:
        if _fold(choice) == folded:
            return choice

    if aliases and folded in aliases:
        return aliases[folded]

    # Short codes (rarities) fuzzy-match everything; only score longer words.
    if len(folded) > 3:
        folded_choices = {_fold(choice): choice for choice in choices if len(choice) > 3}
        match = process.extractOne(
            folded, list(folded_choices), scorer=fuzz.partial_ratio
        )
        if match and match[1] >= FUZZY_THRESHOLD:
            return folded_choices[match[0]]

    logger.warning("Unrecognized value '%s'; expected one of %s", value, choices)
    return fallback


def normalize_card_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a raw card payload with enumerated fields canonicalized."""
    normalized = dict(payload)
    specs = (
        ("type", CARD_TYPES, None, None),
        ("color", CARD_COLORS, "Unknown", None),
        ("attribute", CARD_ATTRIBUTES, "Unknown", None),
        ("rarity", CARD_RARITIES, "Unknown", _RARITY_ALIASES),
    )
    for field_name, choices, fallback, aliases in specs:
        value = normalized.get(field_name)
        if isinstance(value, str):
            normalized[field_name] = canonicalize_choice(
                value, choices, fallback=fallback, aliases=aliases
            )
    return normalized
