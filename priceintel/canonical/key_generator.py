"""Normalized market keys for deterministic position identity.

Key construction: description|unit|trade_category[|region], with "|" inside a
part replaced by "/"

Normalization rules:
- Text: Unicode NFKC, lowercase, whitespace collapsed, stripped
- Unit: common German spellings folded onto one form (Stück -> stk, m² -> m2)

The aggregator, the recommender and the pricebook workflow all use the same
key so that a catalog item, an extracted position and a lookup agree.
"""

from __future__ import annotations

import re
import unicodedata

KEY_SEPARATOR = "|"

_UNIT_ALIASES: dict[str, str] = {
    # Pieces
    "stk": "stk",
    "stk.": "stk",
    "st": "stk",
    "st.": "stk",
    "stück": "stk",
    "stck": "stk",
    "pcs": "stk",
    "ea": "stk",
    # Length
    "m": "m",
    "lfm": "m",
    "lfdm": "m",
    "lfd. m": "m",
    "lfd.m": "m",
    # Area
    "m2": "m2",
    "m²": "m2",
    "qm": "m2",
    # Volume
    "m3": "m3",
    "m³": "m3",
    "cbm": "m3",
    # Time
    "h": "h",
    "std": "h",
    "std.": "h",
    "stunde": "h",
    "stunden": "h",
    # Lump sum
    "psch": "psch",
    "psch.": "psch",
    "pauschal": "psch",
    "pausch": "psch",
    "pau": "psch",
}

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Normalize text to canonical form.

    Args:
        text: Input string

    Returns:
        Lower-cased, whitespace-collapsed string ("" for None)
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFKC", text)
    text = text.lower()
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def normalize_unit(unit: str | None) -> str:
    """Normalize a unit of measure.

    Known German and English spellings map onto stk, m, m2, m3, h, psch;
    anything else keeps its normalized text so that no unit is ever lost.
    """
    unit_text = normalize_text(unit)
    if not unit_text:
        return ""
    # NFKC folds superscripts (m² -> m2) before the alias lookup
    return _UNIT_ALIASES.get(unit_text, unit_text)


def market_key(
    description: str | None,
    unit: str | None,
    trade_category: str | None,
    region: str | None = None,
    partition_by_region: bool = False,
) -> str:
    """Build the normalized market key.

    Args:
        description: Position description or catalog title
        unit: Unit of measure
        trade_category: Trade (catalog branch)
        region: Optional region of the observation
        partition_by_region: Include region as a fourth key component

    Returns:
        Pipe-joined key string
    """
    parts = [normalize_text(description), normalize_unit(unit), normalize_text(trade_category)]
    if partition_by_region:
        parts.append(normalize_text(region))
    # A separator inside a part would let different tuples share one key
    return KEY_SEPARATOR.join(part.replace(KEY_SEPARATOR, "/") for part in parts)
