"""
Snapshot normalization for raw upstream payloads.

Upstream field names and shapes are not stable, quantities arrive as
strings and "0" marks an unavailable item. This module maps whatever
arrives onto a fixed per-category schema and produces a CanonicalSnapshot.
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

import structlog

from pipeline.exceptions import NormalizationError
from pipeline.models import CanonicalSnapshot, RawPayload, StockItem

logger = structlog.get_logger(__name__)

ABSENT_SENTINEL = "0"
PRIMARY_SOURCE = "stock"

_QUANTITY_PATTERN = re.compile(r"^\**\s*x?\s*(\d+)\s*\**$", re.IGNORECASE)
_ENTRY_PATTERN = re.compile(r"^(?P<name>.+?)\s*\**\s*x\s*(?P<quantity>\d+)\s*\**$", re.IGNORECASE)
_ENTRY_VALUE_KEYS = ("value", "quantity", "stock", "count")
_UNKNOWN_WEATHER = {"", "unknown", "none", "n/a"}


class CategorySchema(NamedTuple):
    """Where a category lives in the raw payload."""
    name: str
    source: str
    fields: Tuple[str, ...]


CATEGORY_SCHEMAS: Tuple[CategorySchema, ...] = (
    CategorySchema("gear", "stock", ("gear",)),
    CategorySchema("seeds", "stock", ("seeds", "seed")),
    CategorySchema("eggs", "egg", ("egg", "eggs")),
)


def is_absent_sentinel(raw_value: Any) -> bool:
    """
    True when an upstream quantity marks the item as unavailable.

    The rule is an exact string comparison against "0" made before any
    numeric coercion, so "00" or "0.0" are not treated as absent.
    """
    return str(raw_value) == ABSENT_SENTINEL


def coerce_quantity(raw_value: Any) -> int:
    """Coerce an upstream quantity (5, "5", "x5", "**x5**") to int."""
    if isinstance(raw_value, bool):
        raise NormalizationError(f"Invalid quantity: {raw_value!r}")
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float) and raw_value.is_integer():
        return int(raw_value)
    if isinstance(raw_value, str):
        match = _QUANTITY_PATTERN.match(raw_value.strip())
        if match:
            return int(match.group(1))
    raise NormalizationError(f"Invalid quantity: {raw_value!r}")


def _iter_entries(raw_category: Any, category: str) -> Iterable[Tuple[str, Any]]:
    """Yield (name, raw quantity) pairs from any supported category shape."""
    if isinstance(raw_category, dict):
        for name, value in raw_category.items():
            yield str(name), value
    elif isinstance(raw_category, list):
        for entry in raw_category:
            if isinstance(entry, dict):
                name = entry.get("name")
                if name is None:
                    raise NormalizationError(f"Entry without a name in category '{category}'")
                value = next((entry[key] for key in _ENTRY_VALUE_KEYS if key in entry), None)
                yield str(name), value
            elif isinstance(entry, str):
                match = _ENTRY_PATTERN.match(entry.strip())
                if match:
                    yield match.group("name").strip(), match.group("quantity")
                else:
                    # A bare name means the item is listed once
                    yield entry.strip(), 1
            else:
                raise NormalizationError(f"Unsupported entry in category '{category}': {entry!r}")
    elif raw_category is not None:
        raise NormalizationError(
            f"Unsupported shape for category '{category}': {type(raw_category).__name__}"
        )


def normalize_category(raw_category: Any, category: str) -> List[StockItem]:
    """
    Normalize one raw category into an ordered list of StockItem.

    Absent-sentinel and null entries are dropped. A name listed more than
    once keeps its first position with the quantities summed.
    """
    quantities: Dict[str, int] = {}

    for name, raw_value in _iter_entries(raw_category, category):
        if raw_value is None or is_absent_sentinel(raw_value):
            continue
        quantity = coerce_quantity(raw_value)
        if name in quantities:
            logger.debug("Repeated item merged", category=category, item=name)
            quantities[name] += quantity
        else:
            quantities[name] = quantity

    return [StockItem(name=name, quantity=quantity) for name, quantity in quantities.items()]


def _lookup(source: Dict[str, Any], fields: Tuple[str, ...]) -> Any:
    for field in fields:
        if field in source:
            return source[field]
    return None


def _normalize_weather(raw_weather: Any) -> Tuple[Optional[str], Optional[str]]:
    if not isinstance(raw_weather, dict):
        return None, None

    condition = raw_weather.get("weather")
    if isinstance(condition, dict):
        condition = condition.get("name") or condition.get("type")
    condition = str(condition).strip() if condition is not None else ""
    if condition.lower() in _UNKNOWN_WEATHER:
        condition = None

    temperature = _lookup(raw_weather, ("temp", "temperature"))
    if temperature is not None and str(temperature).strip() != "":
        temperature = str(temperature).strip()
    else:
        temperature = None

    return condition, temperature


def normalize(raw: RawPayload, observed_at: Optional[datetime] = None) -> CanonicalSnapshot:
    """
    Convert a raw upstream payload into a CanonicalSnapshot.

    Args:
        raw: Mapping of upstream source name to its decoded JSON response
        observed_at: Capture time, defaults to now (UTC)

    Returns:
        CanonicalSnapshot with every declared category present

    Raises:
        NormalizationError: primary data object missing or an entry is malformed
    """
    if not isinstance(raw, dict):
        raise NormalizationError("Raw payload is not an object")

    primary = raw.get(PRIMARY_SOURCE)
    if not isinstance(primary, dict):
        raise NormalizationError(f"Required '{PRIMARY_SOURCE}' data object is missing")

    categories: Dict[str, List[StockItem]] = {}
    for schema in CATEGORY_SCHEMAS:
        source = raw.get(schema.source)
        if not isinstance(source, dict):
            categories[schema.name] = []
            continue
        categories[schema.name] = normalize_category(_lookup(source, schema.fields), schema.name)

    weather, temperature = _normalize_weather(raw.get("weather"))
    categories["weather"] = [StockItem(name=weather, quantity=1)] if weather else []

    return CanonicalSnapshot(
        observed_at=observed_at or datetime.utcnow(),
        categories=categories,
        weather=weather,
        temperature=temperature,
    )
