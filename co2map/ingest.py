"""
Build the compact emissions dataset from a ClimateTRACE country package.

- download the country archive (zip) into the working directory
- stream every ``*_emissions_sources_v4_4_0.csv`` entry
- assign each point source to the nearest region centroid
- reduce all entries into one CSV keyed by region, year and sector

Usage::

    python -m co2map.ingest --output public/climatetrace_aggregated.csv
"""

from __future__ import annotations

import argparse
import csv
import io
import logging
import sys
import time
import zipfile
import zlib
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import requests

from . import config
from .aggregate import AggregationEngine, batch_key
from .errors import SchemaError, SourceFetchError, ValidationError
from .geo import DEFAULT_RESOLVER, GeoResolver
from .normalize import normalize_row, resolve_columns
from .rules import BATCH_HEADER, SOURCES_SUFFIX

logger = logging.getLogger(__name__)

# ClimateTRACE columns required to build a canonical row
CLIMATETRACE_COLUMNS = ("start_time", "sector", "subsector", "emissions_quantity", "lat", "lon")
CANONICAL_HEADERS = ["year", "sector", "emissions", "lat", "lng"]


def download_archive(
    url: str,
    dest: Path,
    timeout: int = 60,
    retries: int = 4,
    backoff_s: float = 1.25,
) -> Path:
    """Stream ``url`` to ``dest``, retrying transient network errors."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_suffix(dest.suffix + ".part")
    last_err: Optional[Exception] = None

    for attempt in range(1, retries + 1):
        try:
            with requests.get(url, stream=True, timeout=timeout) as resp:
                resp.raise_for_status()
                with open(tmp, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=1 << 16):
                        f.write(chunk)
            tmp.replace(dest)
            logger.info("Downloaded %s -> %s", url, dest)
            return dest
        except (requests.RequestException, OSError) as err:
            last_err = err
            if attempt == retries:
                break
            sleep_for = backoff_s * (2 ** (attempt - 1))
            logger.warning("retry %d/%d after network error for %s: %s", attempt, retries, url, err)
            time.sleep(sleep_for)

    tmp.unlink(missing_ok=True)
    raise SourceFetchError(
        f"Failed to fetch {url} after {retries} attempts: {last_err}", source=url, retryable=False
    )


def iter_source_entries(archive: zipfile.ZipFile, suffix: str = SOURCES_SUFFIX) -> List[zipfile.ZipInfo]:
    return [info for info in archive.infolist() if info.filename.endswith(suffix)]


def _year_from_timestamp(value: str) -> str:
    # start_time is ISO-8601, e.g. 2022-01-01T00:00:00Z
    return value.strip()[:4]


def climatetrace_row(row: Dict[str, str]) -> List[str]:
    """Map one ClimateTRACE source row onto ``CANONICAL_HEADERS``."""
    sector = f"{row.get('sector') or ''}:{row.get('subsector') or ''}"
    return [
        _year_from_timestamp(row.get("start_time") or ""),
        sector,
        row.get("emissions_quantity") or "",
        row.get("lat") or "",
        row.get("lon") or "",
    ]


def format_emissions(value: float) -> str:
    """Plain decimal text, never scientific notation."""
    if value.is_integer():
        return str(int(value))
    return format(Decimal(repr(value)), "f")


class BatchAggregator:
    """
    One shared aggregation across every archive entry.

    Each entry is reduced into its own engine first and merged only once it
    parsed completely, so a malformed entry contributes nothing.
    """

    def __init__(self, resolver: GeoResolver = DEFAULT_RESOLVER):
        self.resolver = resolver
        self.engine = AggregationEngine(batch_key)
        self.entries = 0
        self.failed_entries = 0
        self.rows = 0
        self.dropped = 0

    def _reduce(self, headers: Sequence[str], rows: Iterable[Sequence[str]]) -> Tuple[AggregationEngine, int, int]:
        """Reduce rows into a fresh engine; returns it with the row and drop counts."""
        columns = resolve_columns(headers)
        partial = AggregationEngine(batch_key)
        seen = dropped = 0
        for values in rows:
            seen += 1
            try:
                record = normalize_row(headers, values, columns, self.resolver.assign_region)
            except (SchemaError, ValidationError) as exc:
                dropped += 1
                logger.debug("Skipping row: %s", exc)
                continue
            partial.add(record)
        return partial, seen, dropped

    def _merge(self, partial: AggregationEngine, seen: int, dropped: int) -> None:
        self.engine.merge(partial)
        self.rows += seen
        self.dropped += dropped

    def feed_rows(self, headers: Sequence[str], rows: Iterable[Sequence[str]]) -> None:
        self._merge(*self._reduce(headers, rows))

    def feed_text(self, text: str) -> None:
        """Aggregate a CSV already in the canonical schema."""
        reader = csv.reader(io.StringIO(text.strip(), newline=""))
        headers = [h.strip() for h in next(reader, [])]
        self.feed_rows(headers, ([v.strip() for v in row] for row in reader if row))

    def feed_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> bool:
        self.entries += 1
        try:
            with archive.open(info) as raw:
                reader = csv.DictReader(io.TextIOWrapper(raw, encoding="utf-8-sig", newline=""))
                missing = [c for c in CLIMATETRACE_COLUMNS if c not in (reader.fieldnames or [])]
                if missing:
                    raise SchemaError(f"missing columns {missing}")
                reduced = self._reduce(CANONICAL_HEADERS, (climatetrace_row(r) for r in reader))
        # NotImplementedError: unsupported compression method; RuntimeError: encrypted entry
        except (csv.Error, SchemaError, UnicodeDecodeError, zipfile.BadZipFile, zlib.error, OSError,
                NotImplementedError, RuntimeError) as exc:
            self.failed_entries += 1
            logger.warning("Skipping malformed entry %s: %s", info.filename, exc)
            return False

        self._merge(*reduced)
        logger.info("Processed %s (%d aggregates so far)", info.filename, len(self.engine))
        return True

    def feed_archive(self, path: Path, suffix: str = SOURCES_SUFFIX) -> None:
        with zipfile.ZipFile(path) as archive:
            entries = iter_source_entries(archive, suffix)
            logger.info("Found %d source entries in %s", len(entries), path)
            for info in entries:
                self.feed_entry(archive, info)

    def iter_rows(self, sort: bool = False) -> Iterator[List[str]]:
        aggregates = self.engine.results()
        keys = sorted(aggregates) if sort else list(aggregates)
        for key in keys:
            agg = aggregates[key]
            yield [agg.region, str(agg.year), agg.sector, format_emissions(agg.metrics.get("emissions", 0.0))]

    def to_csv(self, sort: bool = False) -> str:
        out = io.StringIO(newline="")
        writer = csv.writer(out, lineterminator="\n")
        writer.writerow(BATCH_HEADER)
        writer.writerows(self.iter_rows(sort))
        return out.getvalue()

    def write_csv(self, path: Path, sort: bool = False) -> Path:
        """Write atomically: temp file in the same directory, then rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(self.to_csv(sort), encoding="utf-8")
        tmp.replace(path)
        logger.info("Wrote %d aggregated rows to %s", len(self.engine), path)
        return path


def run(
    archive_url: str = config.ARCHIVE_URL,
    work_dir: Path = config.WORK_DIR,
    output_path: Path = config.OUTPUT_CSV,
    download: bool = True,
    sort: bool = False,
) -> BatchAggregator:
    archive_path = Path(work_dir) / config.ARCHIVE_NAME
    if download:
        download_archive(
            archive_url,
            archive_path,
            timeout=config.DOWNLOAD_TIMEOUT,
            retries=config.DOWNLOAD_RETRIES,
        )
    elif not archive_path.exists():
        raise SourceFetchError(f"Archive {archive_path} not found", source=str(archive_path), retryable=False)

    aggregator = BatchAggregator()
    try:
        aggregator.feed_archive(archive_path)
    except zipfile.BadZipFile as exc:
        raise SourceFetchError(f"{archive_path} is not a zip archive: {exc}", source=str(archive_path)) from exc

    aggregator.write_csv(Path(output_path), sort=sort)
    logger.info(
        "Done: %d entries (%d skipped), %d rows (%d dropped), %d aggregates",
        aggregator.entries,
        aggregator.failed_entries,
        aggregator.rows,
        aggregator.dropped,
        len(aggregator.engine),
    )
    return aggregator


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Aggregate a ClimateTRACE country package by region, year and sector")
    parser.add_argument("--url", default=config.ARCHIVE_URL, help="Country package (zip) to download")
    parser.add_argument("--work-dir", type=Path, default=config.WORK_DIR, help="Folder for the downloaded archive")
    parser.add_argument("--output", type=Path, default=config.OUTPUT_CSV, help="Aggregated CSV to write")
    parser.add_argument("--no-download", action="store_true", help="Reuse the archive already in --work-dir")
    parser.add_argument("--sort", action="store_true", help="Sort output rows by key for reproducible diffs")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format=config.LOG_FORMAT,
    )

    try:
        run(args.url, args.work_dir, args.output, download=not args.no_download, sort=args.sort)
    except SourceFetchError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
