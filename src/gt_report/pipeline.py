"""Row transformation pipeline.

Turns an uploaded order log into the annotated dataset shown in the preview:

1. projection onto the configured columns;
2. chronological sort by the order time;
3. per-row scrubbing, executor inference and toll/parking fee reconciliation;
4. partner-fleet attribution from the partner files;
5. rendering of date values.

No step raises on bad row data: anomalies end up in :class:`RowFlags`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_SETTINGS, ReportSettings
from .heuristics import (
    detect_city,
    detect_sapsan_cash,
    find_toll_and_parking_fees,
    has_unconfirmed_fee_mention,
    infer_executor,
    minimum_fare,
    strip_phone_numbers,
)
from .models import ColumnConfig, Dataset, Row, SortDirection, SortSpec
from .values import (
    cell_text,
    datetime_sort_key,
    find_header,
    format_datetime,
    is_blank,
    normalize_header_name,
    to_number,
)

__all__ = [
    "PipelineOptions",
    "PipelineColumns",
    "resolve_columns",
    "project",
    "sort_chronologically",
    "transform_row",
    "build_partner_mapping",
    "attribute_partners",
    "format_values",
    "transform_dataset",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    slv_mode: bool = True
    sapsan_handling: bool = True
    partner_attribution: bool = True


@dataclass(frozen=True)
class PipelineColumns:
    order_time: Optional[str] = None
    comment: Optional[str] = None
    address: Optional[str] = None
    cost: Optional[str] = None
    extra_payment: Optional[str] = None
    executor: Optional[str] = None
    customer: Optional[str] = None
    client: Optional[str] = None
    order_number: Optional[str] = None
    partner_fleet: Optional[str] = None

    @property
    def can_reconcile_fees(self) -> bool:
        return all((self.comment, self.address, self.cost, self.extra_payment))


def resolve_columns(headers: Sequence[str]) -> PipelineColumns:
    return PipelineColumns(
        order_time=find_header(headers, "время заказа"),
        comment=find_header(headers, "комментарий"),
        address=find_header(headers, "адрес"),
        cost=find_header(headers, "стоимость"),
        extra_payment=find_header(headers, "доплата"),
        executor=find_header(headers, "исполнитель"),
        customer=find_header(headers, "заказчик"),
        client=find_header(headers, "клиент", exact=True),
        order_number=find_header(headers, "номер заказа"),
        partner_fleet=find_header(headers, "парк партнер"),
    )


def project(dataset: Dataset, columns: Sequence[ColumnConfig]) -> Dataset:
    """Rename and reorder columns; hidden entries are dropped."""
    visible: List[ColumnConfig] = []
    seen: set[str] = set()
    for config in columns:
        if not config.visible:
            continue
        if config.display_name in seen:
            logger.warning("Duplicate column name '%s' skipped", config.display_name)
            continue
        seen.add(config.display_name)
        visible.append(config)

    headers = [config.display_name for config in visible]
    rows = []
    for row in dataset.rows:
        values = {config.display_name: row.values.get(config.source_id) for config in visible}
        rows.append(Row(values, row.copy().flags))
    return Dataset(headers, rows)


def sort_chronologically(rows: List[Row], time_column: str) -> List[Row]:
    return sorted(rows, key=lambda row: datetime_sort_key(row.values.get(time_column)))


def _as_amount(value: float) -> float | int:
    return int(value) if float(value).is_integer() else round(value, 2)


def _reconcile_fees(row: Row, columns: PipelineColumns, settings: ReportSettings) -> None:
    comment = cell_text(row.get(columns.comment))
    fees = find_toll_and_parking_fees(comment)

    if not fees:
        if has_unconfirmed_fee_mention(comment):
            row.flags.is_value_error = True
        return

    address = cell_text(row.get(columns.address))
    city = detect_city(address)
    if city is None:
        row.flags.is_value_error = True
        row.flags.is_address_error = True
        return

    current_cost = to_number(row.get(columns.cost))
    if current_cost <= minimum_fare(city, address, settings):
        row.flags.is_value_error = True
        return

    total_fee = sum(fee.amount for fee in fees)
    extra_payment = to_number(row.get(columns.extra_payment))
    row.values[columns.cost] = _as_amount(current_cost - total_fee)
    row.values[columns.extra_payment] = _as_amount(extra_payment + total_fee)
    row.flags.is_fee_adjusted = True


def transform_row(
    row: Row,
    columns: PipelineColumns,
    options: PipelineOptions = PipelineOptions(),
    settings: ReportSettings = DEFAULT_SETTINGS,
) -> Row:
    """Apply the per-row business rules in place and return the row."""
    if columns.client:
        row.values[columns.client] = ""

    if columns.comment and not is_blank(row.get(columns.comment)):
        row.values[columns.comment] = strip_phone_numbers(cell_text(row.get(columns.comment)))

    comment = cell_text(row.get(columns.comment))

    if options.sapsan_handling and columns.comment:
        if row.flags.is_sapsan or detect_sapsan_cash(comment, settings):
            row.flags.is_sapsan = True
            if columns.customer:
                row.values[columns.customer] = settings.sapsan_customer
            return row

    if columns.executor and columns.comment and is_blank(row.get(columns.executor)):
        executor = infer_executor(comment)
        if executor:
            row.values[columns.executor] = executor

    already_checked = row.flags.is_value_error or row.flags.is_fee_adjusted
    if columns.can_reconcile_fees and not row.flags.is_sapsan and not already_checked:
        _reconcile_fees(row, columns, settings)

    return row


def _order_key(value: object) -> str:
    return cell_text(value).strip()


def build_partner_mapping(sources: Iterable[Dataset]) -> Dict[str, str]:
    """Index partner files by order number; later files win on collisions."""
    mapping: Dict[str, str] = {}
    for source in sources:
        order_column = find_header(source.headers, "номер заказа")
        partner_column = find_header(source.headers, "партнер", exact=True) or find_header(
            source.headers, "партнер"
        )
        if order_column is None or partner_column is None:
            logger.warning("Partner file without order/partner columns skipped: %s", source.headers)
            continue
        for row in source.rows:
            order = _order_key(row.get(order_column))
            partner = cell_text(row.get(partner_column)).strip()
            if order and partner:
                mapping[order] = partner
    return mapping


def attribute_partners(rows: Iterable[Row], columns: PipelineColumns, mapping: Dict[str, str]) -> int:
    if not columns.partner_fleet or not columns.order_number:
        logger.warning("No partner fleet / order number column, partner attribution skipped")
        return 0
    matched = 0
    for row in rows:
        partner = mapping.get(_order_key(row.get(columns.order_number)), "")
        row.values[columns.partner_fleet] = partner
        if partner:
            matched += 1
    return matched


def format_values(rows: Iterable[Row]) -> None:
    for row in rows:
        for header, value in row.values.items():
            if isinstance(value, datetime):
                row.values[header] = format_datetime(value)


def _is_order_time(header: str) -> bool:
    return "время заказа" in normalize_header_name(header)


def transform_dataset(
    dataset: Dataset,
    columns: Sequence[ColumnConfig],
    partner_sources: Sequence[Dataset] = (),
    options: PipelineOptions = PipelineOptions(),
    settings: ReportSettings = DEFAULT_SETTINGS,
) -> Dataset:
    """Run the whole pipeline and return a new annotated Dataset."""
    result = project(dataset, columns)

    if not options.slv_mode:
        format_values(result.rows)
        return result

    roles = resolve_columns(result.headers)
    time_column = next((header for header in result.headers if _is_order_time(header)), None)
    if time_column is not None:
        result.rows = sort_chronologically(result.rows, time_column)
        result.initial_sort = SortSpec(time_column, SortDirection.ASCENDING)

    for row in result.rows:
        transform_row(row, roles, options, settings)

    if options.partner_attribution and partner_sources:
        mapping = build_partner_mapping(partner_sources)
        matched = attribute_partners(result.rows, roles, mapping)
        logger.info("Partner fleet found for %d of %d rows", matched, len(result.rows))

    format_values(result.rows)

    logger.info(
        "Processed %d rows: %d Sapsan, %d value errors, %d fee adjustments",
        len(result.rows),
        sum(row.flags.is_sapsan for row in result.rows),
        sum(row.flags.is_value_error for row in result.rows),
        sum(row.flags.is_fee_adjusted for row in result.rows),
    )
    return result
