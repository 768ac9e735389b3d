"""
Visual encoding of aggregates as map markers.

Ranges are recomputed from the current aggregate set on every pass; only
finite values take part.  The first selected metric drives color and size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from .aggregate import Aggregate
from .records import Coordinates
from .rules import (
    BASE_ZOOM,
    BUCKET_COLORS,
    BUCKET_HIGH,
    BUCKET_MEDIUM,
    MAX_RADIUS,
    MIN_RADIUS,
)


class EncodingRange(NamedTuple):
    metric: str
    min: Optional[float]
    max: Optional[float]

    @property
    def degenerate(self) -> bool:
        return self.min is None or self.max is None or self.min == self.max


@dataclass
class EncodedMarker:
    key: str
    coordinates: Optional[Coordinates]
    bucket: str
    color: str
    radius: float
    metrics: Dict[str, float] = field(default_factory=dict)
    count: int = 0
    region: Optional[str] = None


def compute_ranges(aggregates: Iterable[Aggregate], metrics: Sequence[str]) -> Dict[str, EncodingRange]:
    aggregates = list(aggregates)
    ranges: Dict[str, EncodingRange] = {}
    for metric in metrics:
        values = [
            agg.metrics[metric]
            for agg in aggregates
            if metric in agg.metrics and math.isfinite(agg.metrics[metric])
        ]
        if values:
            ranges[metric] = EncodingRange(metric, min(values), max(values))
        else:
            ranges[metric] = EncodingRange(metric, None, None)
    return ranges


def normalized_value(value: Optional[float], rng: EncodingRange) -> Optional[float]:
    if value is None or not math.isfinite(value) or rng.degenerate:
        return None
    return (value - rng.min) / (rng.max - rng.min)


def color_bucket(value: Optional[float], rng: EncodingRange) -> str:
    norm = normalized_value(value, rng)
    if norm is None:
        return "neutral"
    if norm >= BUCKET_HIGH:
        return "high"
    if norm > BUCKET_MEDIUM:
        return "medium"
    return "low"


def marker_radius(value: Optional[float], rng: EncodingRange, zoom: float = BASE_ZOOM) -> float:
    norm = normalized_value(value, rng)
    scale = zoom / BASE_ZOOM
    if norm is None:
        return MIN_RADIUS * scale
    return (MIN_RADIUS + norm * (MAX_RADIUS - MIN_RADIUS)) * scale


def encode(
    aggregates: Mapping[str, Aggregate],
    metrics: Sequence[str],
    zoom: float = BASE_ZOOM,
) -> List[EncodedMarker]:
    """Encode every aggregate against the range of the first selected metric."""
    if not metrics:
        raise ValueError("at least one metric must be selected")
    primary = metrics[0]
    rng = compute_ranges(aggregates.values(), metrics)[primary]

    markers = []
    for key in sorted(aggregates):
        agg = aggregates[key]
        value = agg.metrics.get(primary)
        bucket = color_bucket(value, rng)
        markers.append(EncodedMarker(
            key=key,
            coordinates=agg.coordinates,
            bucket=bucket,
            color=BUCKET_COLORS[bucket],
            radius=marker_radius(value, rng, zoom),
            metrics={m: agg.metrics[m] for m in metrics if m in agg.metrics},
            count=agg.count,
            region=agg.region,
        ))
    return markers
