from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field


class ReportSummary(BaseModel):
    rows: int = 0
    columns: int = 0
    accepted: int = 0
    dropped: int = 0
    schema_errors: int = 0
    validation_errors: int = 0


class ReportItem(BaseModel):
    row: Optional[int] = None
    column: Optional[str] = None
    issue: str
    value: Optional[str] = None
    action: str


class ParseReportModel(BaseModel):
    summary: ReportSummary
    encoding: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[ReportItem] = Field(default_factory=list)


class FilterOptionsModel(BaseModel):
    regions: List[str] = Field(default_factory=list)
    years: List[int] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    sectors: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


class DatasetResponse(BaseModel):
    source: str
    records: int
    report: ParseReportModel
    options: FilterOptionsModel
    metrics: List[str] = Field(default_factory=list, examples=[["emissions"]])


class SelectionModel(BaseModel):
    region: Optional[str] = None
    year: Optional[int] = None
    sector: Optional[str] = None
    category: Optional[str] = None
    metrics: List[str] = Field(default_factory=lambda: ["emissions"])


class RangeModel(BaseModel):
    metric: str
    min: Optional[float] = None
    max: Optional[float] = None


class MarkerModel(BaseModel):
    key: str
    coordinates: Optional[Tuple[float, float]] = None
    region: Optional[str] = None
    bucket: str
    color: str
    radius: float
    count: int
    metrics: Dict[str, float] = Field(default_factory=dict)


class RenderResponse(BaseModel):
    selection: SelectionModel
    record_count: int
    markers: List[MarkerModel] = Field(default_factory=list)
    ranges: List[RangeModel] = Field(default_factory=list)
    totals: Dict[str, float] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool = False
    report: Optional[ParseReportModel] = None


class HealthResponse(BaseModel):
    ok: bool = True
