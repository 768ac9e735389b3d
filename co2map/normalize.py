"""
Schema normalization of emission CSV files.

Responsibilities:
- encoding detection + decoding to text
- input ceilings (size, rows, columns) enforced before any record is built
- header alias resolution onto the canonical record shape
- row length enforcement
- per-row reporting of dropped rows
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from charset_normalizer import from_bytes

from .errors import EmptyResultError, LimitExceededError, SchemaError, ValidationError
from .records import ExtraValue, NormalizedRecord, ParseReport, ParseResult, RowIssue
from .rules import (
    FIELD_ALIASES,
    MAX_CSV_COLUMNS,
    MAX_CSV_ROWS,
    MAX_FILE_SIZE,
    NORMALIZED_DELIMITER,
)
from .sanitize import (
    coerce_year,
    parse_number,
    sanitize_number,
    sanitize_string,
    validate_coordinates,
    validate_record,
)

logger = logging.getLogger(__name__)

ColumnMap = Dict[str, List[int]]
RegionResolver = Callable[[NormalizedRecord], str]


def check_size(raw: bytes) -> None:
    if len(raw) > MAX_FILE_SIZE:
        raise LimitExceededError(
            f"Input is too large: {len(raw)} bytes (maximum {MAX_FILE_SIZE} bytes)",
            limit="size",
            actual=len(raw),
            maximum=MAX_FILE_SIZE,
        )


def decode_csv_bytes(raw: bytes) -> Tuple[str, Dict[str, Any]]:
    """
    Decode uploaded bytes to text.

    Rules:
    - Detect encoding best-effort via charset-normalizer.
    - A UTF-8 BOM is consumed rather than kept as part of the first header.
    - If decode fails, fall back to UTF-8 with replacement characters and report it.
    - Newlines are normalized to LF.
    """
    detected = None
    match = from_bytes(raw).best()
    if match is not None:
        detected = match.encoding

    decode_used = detected or "utf-8"
    if raw.startswith(b"\xef\xbb\xbf") and decode_used.lower().replace("-", "_") in ("utf_8", "utf8"):
        decode_used = "utf-8-sig"

    decode_fallback = False
    try:
        text = raw.decode(decode_used)
    except (UnicodeDecodeError, LookupError):
        try:
            text = raw.decode("utf-8-sig")
            decode_used = "utf-8-sig"
        except UnicodeDecodeError:
            # Last resort: decode with replacement so parsing can continue deterministically
            text = raw.decode("utf-8", errors="replace")
            decode_used = "utf-8"
        decode_fallback = True

    text = text.replace("\r\n", "\n").replace("\r", "\n")

    return text, {
        "detected": detected,
        "decode_used": decode_used,
        "decode_fallback": decode_fallback,
    }


def _detect_delimiter(text: str) -> str:
    header_line = text.split("\n", 1)[0]
    if NORMALIZED_DELIMITER in header_line:
        return NORMALIZED_DELIMITER
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=[",", ";", "\t", "|"])
        return dialect.delimiter
    except csv.Error:
        return NORMALIZED_DELIMITER


def read_table(text: str) -> Tuple[List[str], List[Tuple[int, List[str]]]]:
    """
    Split CSV text into sanitized headers and numbered data rows.

    Blank lines are ignored.  Column and row ceilings are checked here, before
    a single record is normalized.
    """
    reader = csv.reader(io.StringIO(text.strip("\n"), newline=""), delimiter=_detect_delimiter(text))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return [], []

    headers = [sanitize_string(h) for h in rows[0]]
    if len(headers) > MAX_CSV_COLUMNS:
        raise LimitExceededError(
            f"CSV file has too many columns: {len(headers)} (maximum {MAX_CSV_COLUMNS})",
            limit="columns",
            actual=len(headers),
            maximum=MAX_CSV_COLUMNS,
        )

    data = rows[1:]
    if len(data) > MAX_CSV_ROWS:
        raise LimitExceededError(
            f"CSV file has too many rows: {len(data)} (maximum {MAX_CSV_ROWS})",
            limit="rows",
            actual=len(data),
            maximum=MAX_CSV_ROWS,
        )

    # Row numbers are 1-based and count the header as row 1
    return headers, [(i + 2, [v.strip() for v in row]) for i, row in enumerate(data)]


def resolve_columns(headers: Sequence[str]) -> ColumnMap:
    """Map each canonical field to the indices of its aliases, in priority order."""
    positions: Dict[str, int] = {}
    for i, header in enumerate(headers):
        positions.setdefault(header, i)

    return {
        canonical: [positions[alias] for alias in aliases if alias in positions]
        for canonical, aliases in FIELD_ALIASES.items()
    }


def _first_non_empty(values: Sequence[str], indices: Sequence[int]) -> str:
    for i in indices:
        if values[i] != "":
            return values[i]
    return ""


def _extra_value(value: str) -> ExtraValue:
    if parse_number(value) is not None:
        return sanitize_number(value)
    return sanitize_string(value)


def normalize_row(
    headers: Sequence[str],
    values: Sequence[str],
    columns: Optional[ColumnMap] = None,
    region_resolver: Optional[RegionResolver] = None,
) -> NormalizedRecord:
    """
    Turn one raw row into a validated record.

    Raises ``SchemaError`` when the field count is wrong and ``ValidationError``
    when the coerced record breaks an invariant.  ``region_resolver`` lets the
    batch path assign a region before validation.
    """
    if len(values) != len(headers):
        raise SchemaError(
            f"row has {len(values)} fields, header has {len(headers)}",
            expected=len(headers),
            found=len(values),
        )
    if columns is None:
        columns = resolve_columns(headers)

    def pick(canonical: str) -> str:
        return _first_non_empty(values, columns[canonical])

    lat = parse_number(pick("lat"))
    lng = parse_number(pick("lng"))
    coordinates = None
    if lat is not None and lng is not None:
        lat, lng = sanitize_number(lat), sanitize_number(lng)
        if validate_coordinates(lat, lng):
            coordinates = (lat, lng)

    used = {i for indices in columns.values() for i in indices}
    extra = {
        header: _extra_value(value)
        for i, (header, value) in enumerate(zip(headers, values))
        if i not in used and header
    }

    record = NormalizedRecord(
        region=sanitize_string(pick("region")),
        year=coerce_year(pick("year")),
        sector=sanitize_string(pick("sector")),
        emissions=sanitize_number(pick("emissions")),
        coordinates=coordinates,
        extra=extra,
    )
    if region_resolver is not None:
        record = replace(record, region=region_resolver(record))

    validate_record(record)
    return record


def parse_rows(
    headers: Sequence[str],
    rows: Sequence[Tuple[int, Sequence[str]]],
    report: Optional[ParseReport] = None,
    region_resolver: Optional[RegionResolver] = None,
) -> ParseResult:
    report = report or ParseReport()
    report.columns = len(headers)
    columns = resolve_columns(headers)
    records: List[NormalizedRecord] = []

    for line_no, values in rows:
        report.rows += 1
        try:
            records.append(normalize_row(headers, values, columns, region_resolver))
        except SchemaError as exc:
            report.schema_errors += 1
            report.warnings.append(RowIssue(
                row=line_no,
                issue="row_width_mismatch",
                value=str(exc.found),
                action="skipped",
            ))
            logger.debug("Skipping row %d: %s", line_no, exc)
        except ValidationError as exc:
            report.validation_errors += 1
            report.warnings.append(RowIssue(
                row=line_no,
                column=exc.field,
                issue=f"invalid_{exc.field}" if exc.field else "invalid_record",
                value=None if exc.value is None else str(exc.value),
                action="skipped",
            ))
            logger.debug("Skipping row %d: %s", line_no, exc)

    report.accepted = len(records)
    if report.dropped:
        logger.warning("Dropped %d of %d rows (%d schema, %d validation)",
                       report.dropped, report.rows, report.schema_errors, report.validation_errors)
    logger.info("Parsed %d records from %d rows", report.accepted, report.rows)
    return ParseResult(records=records, report=report)


def parse_csv_text(text: str, region_resolver: Optional[RegionResolver] = None) -> ParseResult:
    headers, rows = read_table(text)
    return parse_rows(headers, rows, region_resolver=region_resolver)


def parse_csv_bytes(raw: bytes) -> ParseResult:
    check_size(raw)
    text, encoding = decode_csv_bytes(raw)
    headers, rows = read_table(text)
    return parse_rows(headers, rows, report=ParseReport(encoding=encoding))


def load_dataset(raw: bytes) -> ParseResult:
    """Parse uploaded bytes, refusing a result with no valid record."""
    result = parse_csv_bytes(raw)
    if not result.records:
        raise EmptyResultError(
            f"No valid data found ({result.report.dropped} of {result.report.rows} rows dropped)",
            report=result.report,
        )
    return result
