"""
Grouped reduction of normalized records.

The engine is mode-agnostic: callers pass the grouping-key function.  The
batch path keys on ``region|year|sector`` so distinct emissions never merge;
the runtime path keys on geographic position so every record at one place
merges regardless of sector or year.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Sequence

from .geo import GeoKey, GeoResolver
from .records import Coordinates, NormalizedRecord
from .rules import EMISSIONS_METRIC, KEY_SEPARATOR

KeyFn = Callable[[NormalizedRecord], str]


@dataclass
class Aggregate:
    key: str
    metrics: Dict[str, float] = field(default_factory=dict)
    count: int = 0
    region: Optional[str] = None
    year: Optional[int] = None
    sector: Optional[str] = None
    coordinates: Optional[Coordinates] = None


def batch_key(record: NormalizedRecord) -> str:
    return KEY_SEPARATOR.join((record.region, str(record.year), record.sector))


def position_key(resolver: GeoResolver) -> KeyFn:
    def key_fn(record: NormalizedRecord) -> str:
        return resolver.resolve(record).key

    return key_fn


class AggregationEngine:
    def __init__(
        self,
        key_fn: KeyFn = batch_key,
        metric_names: Sequence[str] = (EMISSIONS_METRIC,),
        locate: Optional[Callable[[NormalizedRecord], GeoKey]] = None,
    ):
        if not metric_names:
            raise ValueError("at least one metric is required")
        self.key_fn = key_fn
        self.metric_names = tuple(metric_names)
        self.locate = locate
        self._aggregates: Dict[str, Aggregate] = {}

    def __len__(self) -> int:
        return len(self._aggregates)

    def add(self, record: NormalizedRecord) -> Aggregate:
        key = self.key_fn(record)
        entry = self._aggregates.get(key)
        if entry is None:
            # Located aggregates are placed and labelled by their key
            if self.locate:
                place = self.locate(record)
                coordinates, region = place.coordinates, place.region
            else:
                coordinates, region = record.coordinates, record.region
            entry = Aggregate(
                key=key,
                region=region,
                year=record.year,
                sector=record.sector,
                coordinates=coordinates,
            )
            self._aggregates[key] = entry

        for name in self.metric_names:
            value = record.metric(name)
            if value is None or not math.isfinite(value):
                continue
            entry.metrics[name] = entry.metrics.get(name, 0.0) + value
        entry.count += 1
        return entry

    def extend(self, records: Iterable[NormalizedRecord]) -> "AggregationEngine":
        for record in records:
            self.add(record)
        return self

    def merge(self, other: "AggregationEngine") -> "AggregationEngine":
        """Fold another engine's aggregates into this one."""
        for key, theirs in other._aggregates.items():
            ours = self._aggregates.get(key)
            if ours is None:
                ours = Aggregate(
                    key=key,
                    region=theirs.region,
                    year=theirs.year,
                    sector=theirs.sector,
                    coordinates=theirs.coordinates,
                )
                self._aggregates[key] = ours
            for name, value in theirs.metrics.items():
                ours.metrics[name] = ours.metrics.get(name, 0.0) + value
            ours.count += theirs.count
        return self

    def results(self) -> Dict[str, Aggregate]:
        return dict(self._aggregates)


def aggregate(
    records: Iterable[NormalizedRecord],
    key_fn: KeyFn = batch_key,
    metric_names: Sequence[str] = (EMISSIONS_METRIC,),
) -> Dict[str, Aggregate]:
    return AggregationEngine(key_fn, metric_names).extend(records).results()
