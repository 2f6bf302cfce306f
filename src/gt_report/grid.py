from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .codec import is_numeric_column, is_time_column
from .models import Dataset, FilterCondition, FilterKind, Row, SortDirection, SortSpec
from .values import cell_text, datetime_sort_key, normalize_header_name, parse_number, to_number

__all__ = ["GridEngine", "row_passes", "MULTILINE_COLUMNS"]

logger = logging.getLogger(__name__)

MULTILINE_COLUMNS = ("комментарий", "адрес")

ARROW_MOVES = {
    "ArrowUp": (-1, 0),
    "ArrowDown": (1, 0),
    "ArrowLeft": (0, -1),
    "ArrowRight": (0, 1),
}


def _matches(value: object, condition: FilterCondition, numeric: bool) -> bool:
    text = cell_text(value).strip().lower()
    target = condition.value.strip().lower()
    kind = condition.kind

    if kind is FilterKind.CONTAINS:
        return target in text
    if kind is FilterKind.STARTS_WITH:
        return text.startswith(target)
    if kind is FilterKind.ENDS_WITH:
        return text.endswith(target)
    if kind is FilterKind.EQUALS:
        selected = {part.strip().lower() for part in condition.value.split("|")}
        return text == target or text in selected
    if kind is FilterKind.GREATER_THAN:
        return to_number(value) > to_number(condition.value) if numeric else text > target
    if kind is FilterKind.LESS_THAN:
        return to_number(value) < to_number(condition.value) if numeric else text < target
    return True


def row_passes(row: Row, filters: Dict[str, FilterCondition]) -> bool:
    return all(
        _matches(row.get(column), condition, is_numeric_column(column))
        for column, condition in filters.items()
    )


class GridEngine:
    """Sort, filter and inline editing over an annotated Dataset.

    The derived view is recomputed from the full row set on every call;
    filtering never removes rows from the dataset.
    """

    def __init__(
        self,
        dataset: Dataset,
        on_change: Optional[Callable[[Dataset], None]] = None,
    ) -> None:
        self.dataset = dataset
        self.sort: Optional[SortSpec] = dataset.initial_sort
        self.filters: Dict[str, FilterCondition] = {}
        self.on_change = on_change
        self.cursor: tuple[int, int] = (0, 0)
        self.editing = False
        self.draft = ""

    # sort / filter

    def apply_sort(self, column: str) -> SortSpec:
        if self.sort is not None and self.sort.column == column:
            self.sort = self.sort.reversed()
        else:
            self.sort = SortSpec(column, SortDirection.ASCENDING)
        return self.sort

    def _sort_key(self, column: str) -> Callable[[Row], object]:
        if is_time_column(column):
            return lambda row: datetime_sort_key(row.get(column))
        if is_numeric_column(column):
            return lambda row: to_number(row.get(column))
        return lambda row: cell_text(row.get(column)).casefold()

    def sorted_rows(self) -> List[Row]:
        if self.sort is None:
            return list(self.dataset.rows)
        return sorted(
            self.dataset.rows,
            key=self._sort_key(self.sort.column),
            reverse=self.sort.direction is SortDirection.DESCENDING,
        )

    def apply_filter(self, column: str, condition: FilterCondition) -> None:
        """Set the filter for ``column``; an empty value removes it."""
        if not condition.value.strip():
            self.filters.pop(column, None)
        else:
            self.filters[column] = condition
        self.focus(*self.cursor)

    def clear_filter(self, column: Optional[str] = None) -> None:
        if column is None:
            self.filters.clear()
        else:
            self.filters.pop(column, None)
        self.focus(*self.cursor)

    def view(self) -> List[Row]:
        return [row for row in self.sorted_rows() if row_passes(row, self.filters)]

    def unique_values(self, column: str) -> List[str]:
        """Distinct display values of a column for the multi-select filter."""
        return sorted({cell_text(row.get(column)) for row in self.dataset.rows}, key=str.casefold)

    # editing

    def edit_cell(self, row: Row, column: str, value: object) -> None:
        """Overwrite one cell in place; flags stay as they are."""
        if column not in self.dataset.headers:
            raise KeyError(column)
        if is_numeric_column(column) and isinstance(value, str):
            parsed = parse_number(value)
            if parsed is not None:
                value = int(parsed) if parsed.is_integer() else parsed
        row.values[column] = value
        logger.debug("Cell '%s' edited", column)
        if self.on_change is not None:
            self.on_change(self.dataset)

    # keyboard navigation

    @property
    def active_column(self) -> Optional[str]:
        if not self.dataset.headers:
            return None
        return self.dataset.headers[self.cursor[1]]

    def focus(self, row_index: int, column_index: int) -> None:
        max_row = max(len(self.view()) - 1, 0)
        max_column = max(len(self.dataset.headers) - 1, 0)
        self.cursor = (min(max(row_index, 0), max_row), min(max(column_index, 0), max_column))

    def start_edit(self) -> None:
        view = self.view()
        if self.cursor[0] >= len(view) or self.active_column is None:
            return
        self.editing = True
        self.draft = cell_text(view[self.cursor[0]].get(self.active_column))

    def _commit(self) -> None:
        view = self.view()
        column = self.active_column
        if self.cursor[0] < len(view) and column is not None:
            self.edit_cell(view[self.cursor[0]], column, self.draft)
        self.editing = False
        self.draft = ""

    def _is_multiline(self, column: Optional[str]) -> bool:
        normalized = normalize_header_name(column or "")
        return any(token in normalized for token in MULTILINE_COLUMNS)

    def handle_key(self, key: str, ctrl: bool = False, shift: bool = False) -> Optional[str]:
        """Process one key press and return the action it triggered, if any."""
        if ctrl and shift and key.lower() == "l":
            return "open_filter"

        if key == "Escape":
            if self.editing:
                self.editing = False
                self.draft = ""
                return "discard"
            return None

        if key == "Enter":
            if not self.editing:
                self.start_edit()
                return "start_edit" if self.editing else None
            if self._is_multiline(self.active_column) and not ctrl:
                self.draft += "\n"
                return None
            self._commit()
            return "commit"

        if key in ARROW_MOVES and not self.editing:
            delta_row, delta_column = ARROW_MOVES[key]
            self.focus(self.cursor[0] + delta_row, self.cursor[1] + delta_column)
            return "move"

        return None
