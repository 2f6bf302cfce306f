from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .values import cell_text

__all__ = [
    "ColumnConfig",
    "Dataset",
    "FilterCondition",
    "FilterKind",
    "Row",
    "RowFlags",
    "SortDirection",
    "SortSpec",
    "FLAG_COLUMNS",
]

FLAG_COLUMNS = ("is_sapsan", "is_value_error", "is_address_error", "is_fee_adjusted")


class SortDirection(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


class FilterKind(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"


@dataclass(frozen=True)
class SortSpec:
    column: str
    direction: SortDirection = SortDirection.ASCENDING

    def reversed(self) -> "SortSpec":
        if self.direction is SortDirection.ASCENDING:
            return SortSpec(self.column, SortDirection.DESCENDING)
        return SortSpec(self.column, SortDirection.ASCENDING)


@dataclass(frozen=True)
class FilterCondition:
    kind: FilterKind
    value: str


@dataclass
class ColumnConfig:
    source_id: str
    display_name: str
    visible: bool = True


@dataclass
class RowFlags:
    """Data-quality markers derived during transformation.

    ``is_fee_adjusted`` records that the toll/parking fee was already moved
    into the extra-payment column.
    """

    is_sapsan: bool = False
    is_value_error: bool = False
    is_address_error: bool = False
    is_fee_adjusted: bool = False

    def as_dict(self) -> Dict[str, bool]:
        return {name: bool(getattr(self, name)) for name in FLAG_COLUMNS}


@dataclass
class Row:
    values: Dict[str, object]
    flags: RowFlags = field(default_factory=RowFlags)

    def get(self, column: Optional[str], default: object = None) -> object:
        if column is None:
            return default
        return self.values.get(column, default)

    def copy(self) -> "Row":
        return Row(dict(self.values), RowFlags(**self.flags.as_dict()))


@dataclass
class Dataset:
    headers: List[str]
    rows: List[Row] = field(default_factory=list)
    initial_sort: Optional[SortSpec] = None

    def __post_init__(self) -> None:
        if len(set(self.headers)) != len(self.headers):
            raise ValueError("Названия колонок должны быть уникальными")
        for row in self.rows:
            for header in self.headers:
                row.values.setdefault(header, None)

    @classmethod
    def from_records(cls, headers: List[str], records: List[Dict[str, object]]) -> "Dataset":
        return cls(list(headers), [Row(dict(record)) for record in records])

    def copy(self) -> "Dataset":
        return Dataset(list(self.headers), [row.copy() for row in self.rows], self.initial_sort)

    def column(self, header: str) -> List[object]:
        return [row.values.get(header) for row in self.rows]

    def to_frame(
        self,
        include_flags: bool = False,
        rows: Optional[Sequence[Row]] = None,
        as_text: bool = False,
    ) -> pd.DataFrame:
        """Table of ``rows`` (all rows by default); ``as_text`` renders cells for display."""
        records = []
        for row in self.rows if rows is None else rows:
            record = {
                header: cell_text(row.values.get(header)) if as_text else row.values.get(header)
                for header in self.headers
            }
            if include_flags:
                record.update(row.flags.as_dict())
            records.append(record)
        columns = list(self.headers) + (list(FLAG_COLUMNS) if include_flags else [])
        return pd.DataFrame(records, columns=columns)
