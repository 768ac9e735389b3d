from dataclasses import asdict
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from . import config
from .errors import EmptyResultError, LimitExceededError, SourceFetchError
from .models import (
    DatasetResponse,
    ErrorResponse,
    FilterOptionsModel,
    HealthResponse,
    ParseReportModel,
    RenderResponse,
)
from .records import ParseReport
from .rules import EMISSIONS_METRIC, MAX_FILE_SIZE
from .runtime import DatasetSession, FilterSelection, discover_metrics, filter_options

app = FastAPI(
    title="co2map",
    description="Aggregation and map encoding of CO2 emission records for Spain",
    version="0.1.0",
)
app.state.session = DatasetSession()


def get_session(request: Request) -> DatasetSession:
    return request.app.state.session


def report_model(report: ParseReport) -> ParseReportModel:
    return ParseReportModel(
        summary={
            "rows": report.rows,
            "columns": report.columns,
            "accepted": report.accepted,
            "dropped": report.dropped,
            "schema_errors": report.schema_errors,
            "validation_errors": report.validation_errors,
        },
        encoding=report.encoding,
        warnings=[w.as_dict() for w in report.warnings],
    )


def dataset_response(session: DatasetSession) -> DatasetResponse:
    records = session.records
    return DatasetResponse(
        source=session.source or "",
        records=len(records),
        report=report_model(session.current.report),
        options=asdict(filter_options(records)),
        metrics=discover_metrics(records),
    )


def _error(status: int, error: str, exc: Exception, **extra) -> JSONResponse:
    body = ErrorResponse(error=error, detail=str(exc), **extra)
    return JSONResponse(status_code=status, content=body.model_dump())


@app.exception_handler(LimitExceededError)
async def limit_exceeded(request: Request, exc: LimitExceededError):
    return _error(413, "limit_exceeded", exc)


@app.exception_handler(EmptyResultError)
async def empty_result(request: Request, exc: EmptyResultError):
    report = report_model(exc.report) if exc.report is not None else None
    return _error(422, "no_data", exc, report=report)


@app.exception_handler(SourceFetchError)
async def source_fetch_failed(request: Request, exc: SourceFetchError):
    status = 502 if exc.retryable else 409
    return _error(status, "source_fetch_failed", exc, retryable=exc.retryable)


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.post("/datasets", response_model=DatasetResponse)
async def upload_dataset(
    file: UploadFile = File(...),
    session: DatasetSession = Depends(get_session),
):
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=422, detail="Only CSV files are supported")

    # Read one byte past the ceiling so oversized uploads fail without buffering them whole
    raw = await file.read(MAX_FILE_SIZE + 1)
    session.load_bytes(raw, source=file.filename)
    return dataset_response(session)


@app.post("/datasets/default", response_model=DatasetResponse)
async def load_default_dataset(session: DatasetSession = Depends(get_session)):
    await session.load_url(config.DEFAULT_DATASET, timeout=config.FETCH_TIMEOUT)
    return dataset_response(session)


def _require_dataset(session: DatasetSession) -> None:
    if not session.loaded:
        raise HTTPException(status_code=409, detail="No dataset loaded")


@app.get("/options", response_model=FilterOptionsModel)
def options(
    category: Optional[str] = None,
    session: DatasetSession = Depends(get_session),
):
    _require_dataset(session)
    return asdict(filter_options(session.records, category))


@app.get("/render", response_model=RenderResponse)
def render(
    region: Optional[str] = None,
    year: Optional[int] = None,
    sector: Optional[str] = None,
    category: Optional[str] = None,
    metrics: List[str] = Query(default=[EMISSIONS_METRIC]),
    zoom: float = Query(default=6, gt=0),
    session: DatasetSession = Depends(get_session),
):
    _require_dataset(session)
    selection = FilterSelection(region=region, year=year, sector=sector, category=category, metrics=metrics)
    payload = session.render(selection, zoom)
    return {
        "selection": asdict(payload.selection),
        "record_count": payload.record_count,
        "markers": [asdict(m) for m in payload.markers],
        "ranges": [r._asdict() for r in payload.ranges.values()],
        "totals": payload.totals,
    }
