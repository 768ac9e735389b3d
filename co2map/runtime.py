"""Online pipeline: filter, aggregate by position and encode for the map."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import requests

from .aggregate import AggregationEngine, position_key
from .encode import EncodedMarker, EncodingRange, compute_ranges, encode
from .errors import SourceFetchError
from .geo import DEFAULT_RESOLVER, GeoResolver
from .normalize import load_dataset
from .records import NormalizedRecord, ParseResult
from .rules import BASE_ZOOM, EMISSIONS_METRIC
from .sanitize import sanitize_string

logger = logging.getLogger(__name__)


def humanize_label(label: str) -> str:
    """``"power:electricity-generation"`` -> ``"Power - Electricity Generation"``."""
    if not label:
        return label
    return " - ".join(
        " ".join(w[:1].upper() + w[1:].lower() for w in re.split(r"[-_]", part))
        for part in label.split(":")
    )


@dataclass
class FilterSelection:
    region: Optional[str] = None
    year: Optional[int] = None
    sector: Optional[str] = None
    category: Optional[str] = None
    metrics: List[str] = field(default_factory=lambda: [EMISSIONS_METRIC])

    def matches(self, record: NormalizedRecord) -> bool:
        if self.region and record.region != sanitize_string(self.region):
            return False
        if self.year is not None and record.year != self.year:
            return False
        if self.category and record.category != sanitize_string(self.category):
            return False
        if self.sector and record.sector != sanitize_string(self.sector):
            return False
        return True


@dataclass
class FilterOptions:
    regions: List[str]
    years: List[int]
    categories: List[str]
    sectors: List[str]
    labels: Dict[str, str]


def filter_options(records: Iterable[NormalizedRecord], category: Optional[str] = None) -> FilterOptions:
    records = list(records)
    categories = sorted({r.category for r in records if r.category})
    sectors = sorted({
        r.sector for r in records
        if r.sector and (not category or r.category == category)
    })
    return FilterOptions(
        regions=sorted({r.region for r in records}),
        years=sorted({r.year for r in records}),
        categories=categories,
        sectors=sectors,
        labels={value: humanize_label(value) for value in (*categories, *sectors)},
    )


def discover_metrics(records: Iterable[NormalizedRecord]) -> List[str]:
    """Emissions first, then every extra column holding a number."""
    found: Dict[str, None] = {}
    for record in records:
        for name, value in record.extra.items():
            if isinstance(value, float):
                found.setdefault(name, None)
    return [EMISSIONS_METRIC, *(name for name in found if name != EMISSIONS_METRIC)]


@dataclass
class RenderPayload:
    markers: List[EncodedMarker]
    ranges: Dict[str, EncodingRange]
    totals: Dict[str, float]
    record_count: int
    selection: FilterSelection


def build_render_payload(
    records: Sequence[NormalizedRecord],
    selection: FilterSelection,
    resolver: GeoResolver = DEFAULT_RESOLVER,
    zoom: float = BASE_ZOOM,
) -> RenderPayload:
    metrics = selection.metrics or [EMISSIONS_METRIC]
    selected = [r for r in records if selection.matches(r)]

    engine = AggregationEngine(
        key_fn=position_key(resolver),
        metric_names=metrics,
        locate=resolver.resolve,
    )
    aggregates = engine.extend(selected).results()

    totals = {m: sum(a.metrics.get(m, 0.0) for a in aggregates.values()) for m in metrics}
    return RenderPayload(
        markers=encode(aggregates, metrics, zoom),
        ranges=compute_ranges(aggregates.values(), metrics),
        totals=totals,
        record_count=len(selected),
        selection=selection,
    )


def fetch_dataset_bytes(source: str, timeout: int = 30) -> bytes:
    """Read a dataset from an http(s) URL or a local path."""
    if source.startswith(("http://", "https://")):
        try:
            resp = requests.get(source, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise SourceFetchError(f"Failed to load data from {source}: {exc}", source=source) from exc
        return resp.content

    path = Path(source)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise SourceFetchError(f"Failed to load data from {source}: {exc}", source=source) from exc


class DatasetSession:
    """
    The dataset currently on screen.

    Only one load can be pending: starting a new remote load cancels the one
    in flight, so a superseded load never replaces a newer dataset.
    """

    def __init__(self, resolver: GeoResolver = DEFAULT_RESOLVER):
        self.resolver = resolver
        self.current: Optional[ParseResult] = None
        self.source: Optional[str] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def loaded(self) -> bool:
        return self.current is not None

    @property
    def records(self) -> List[NormalizedRecord]:
        return self.current.records if self.current else []

    def load_bytes(self, raw: bytes, source: str = "upload") -> ParseResult:
        self._cancel_pending()
        result = load_dataset(raw)
        self._commit(result, source)
        return result

    async def load_url(self, source: str, timeout: int = 30) -> ParseResult:
        self._cancel_pending()
        task = asyncio.ensure_future(self._fetch_and_parse(source, timeout))
        self._pending = task
        try:
            result = await task
        except asyncio.CancelledError:
            if self._pending is not task:
                raise SourceFetchError(
                    f"Load of {source} was superseded by a newer request",
                    source=source,
                    retryable=False,
                ) from None
            raise
        finally:
            if self._pending is task:
                self._pending = None
        return result

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            logger.info("Cancelling superseded dataset load")
            self._pending.cancel()
        self._pending = None

    async def _fetch_and_parse(self, source: str, timeout: int) -> ParseResult:
        logger.info("Fetching dataset from %s", source)
        loop = asyncio.get_running_loop()
        # Cancelling the task abandons the worker thread; its bytes are never parsed
        raw = await loop.run_in_executor(None, fetch_dataset_bytes, source, timeout)
        result = load_dataset(raw)
        self._commit(result, source)
        return result

    def _commit(self, result: ParseResult, source: str) -> None:
        self.current = result
        self.source = source
        logger.info("Loaded %d records from %s", len(result.records), source)

    def render(self, selection: FilterSelection, zoom: float = BASE_ZOOM) -> RenderPayload:
        return build_render_payload(self.records, selection, self.resolver, zoom)
