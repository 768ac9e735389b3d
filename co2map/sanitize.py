"""
Coercion and validation of untrusted CSV values.

Coercion guarantees types: numbers are clamped and never NaN/inf, strings are
trimmed, truncated and stripped of markup.  Validation then checks the record
invariants and raises ``ValidationError`` for the first one that fails.
"""

from __future__ import annotations

import math
from html.parser import HTMLParser
from typing import Any, List, Optional

from .errors import ValidationError
from .rules import MAX_STRING_LENGTH, NUMBER_CLAMP, SPAIN_BOUNDS, YEAR_MAX, YEAR_MIN

# Elements whose text content is dropped along with the tags
_SKIPPED_ELEMENTS = {"script", "style", "iframe", "object", "template"}


class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=False)
        self.parts: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag.lower() in _SKIPPED_ELEMENTS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in _SKIPPED_ELEMENTS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self.parts.append(data)

    def handle_entityref(self, name: str) -> None:
        if not self._skip_depth:
            self.parts.append(f"&{name};")

    def handle_charref(self, name: str) -> None:
        if not self._skip_depth:
            self.parts.append(f"&#{name};")


def strip_markup(text: str) -> str:
    if "<" not in text:
        return text
    parser = _TextExtractor()
    parser.feed(text)
    parser.close()
    return "".join(parser.parts)


def parse_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def sanitize_number(value: Any) -> float:
    num = parse_number(value)
    if num is None or not math.isfinite(num):
        return 0.0
    return max(-NUMBER_CLAMP, min(NUMBER_CLAMP, num))


def sanitize_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()[:MAX_STRING_LENGTH]
    return strip_markup(trimmed).strip()


def validate_coordinates(lat: float, lng: float) -> bool:
    lat_min, lat_max = SPAIN_BOUNDS["lat"]
    lng_min, lng_max = SPAIN_BOUNDS["lng"]
    return lat_min <= lat <= lat_max and lng_min <= lng <= lng_max


def coerce_year(value: Any) -> int:
    year = sanitize_number(value)
    if not year.is_integer():
        raise ValidationError(f"year {value!r} is not a whole number", field="year", value=value)
    return int(year)


def validate_record(record) -> None:
    if not record.region:
        raise ValidationError("region is empty", field="region", value=record.region)
    if not YEAR_MIN <= record.year <= YEAR_MAX:
        raise ValidationError(
            f"year {record.year} outside [{YEAR_MIN}, {YEAR_MAX}]", field="year", value=record.year
        )
    if not math.isfinite(record.emissions) or record.emissions < 0:
        raise ValidationError(
            f"emissions {record.emissions} must be finite and >= 0",
            field="emissions",
            value=record.emissions,
        )
    if record.coordinates is not None and not validate_coordinates(*record.coordinates):
        raise ValidationError(
            f"coordinates {record.coordinates} outside Spain bounds",
            field="coordinates",
            value=record.coordinates,
        )
