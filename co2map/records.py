from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .rules import EMISSIONS_METRIC

ExtraValue = Union[float, str]
Coordinates = Tuple[float, float]


@dataclass(frozen=True)
class NormalizedRecord:
    region: str
    year: int
    sector: str
    emissions: float
    coordinates: Optional[Coordinates] = None
    extra: Mapping[str, ExtraValue] = field(default_factory=dict)

    @property
    def category(self) -> str:
        """Leading part of a ``category:subsector`` sector value."""
        return self.sector.split(":", 1)[0]

    def metric(self, name: str) -> Optional[float]:
        if name == EMISSIONS_METRIC:
            return self.emissions
        value = self.extra.get(name)
        if isinstance(value, float):
            return value
        return None


@dataclass
class RowIssue:
    row: Optional[int]
    issue: str
    action: str
    column: Optional[str] = None
    value: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "row": self.row,
            "column": self.column,
            "issue": self.issue,
            "value": self.value,
            "action": self.action,
        }


@dataclass
class ParseReport:
    rows: int = 0
    columns: int = 0
    accepted: int = 0
    schema_errors: int = 0
    validation_errors: int = 0
    encoding: Dict[str, Any] = field(default_factory=dict)
    warnings: List[RowIssue] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return self.schema_errors + self.validation_errors


@dataclass
class ParseResult:
    records: List[NormalizedRecord]
    report: ParseReport
