"""Per-partner export of the annotated dataset.

Rows get a commission and payout, are grouped by partner fleet, and each
group is written to its own workbook; all workbooks are zipped together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from openpyxl.utils import get_column_letter

from .codec import FooterRow, build_archive, safe_file_name, unique_name, write_workbook
from .config import DEFAULT_SETTINGS, ReportSettings
from .heuristics import detect_city
from .models import Dataset
from .values import (
    cell_text,
    find_header,
    format_date,
    normalize_header_name,
    parse_datetime,
    to_number,
)

__all__ = [
    "EXPORT_HEADERS",
    "COMMISSION_HEADER",
    "PAYOUT_HEADER",
    "DateRange",
    "ExportGroup",
    "ExportResult",
    "find_date_range",
    "report_period_title",
    "build_export_frame",
    "group_by_partner",
    "commission_header",
    "build_group_workbook",
    "export_by_partner",
    "export_general",
]

logger = logging.getLogger(__name__)

COMMISSION_HEADER = "Комиссия"
PAYOUT_HEADER = "К выплате"
EXPORT_HEADERS = [
    "Номер заказа",
    "Время заказа",
    "Стоимость",
    COMMISSION_HEADER,
    "Доплата",
    PAYOUT_HEADER,
    "Адрес",
    "Исполнитель",
    "Автомобиль",
    "Комментарий",
]
COMPUTED_HEADERS = {COMMISSION_HEADER, PAYOUT_HEADER}

PARK_COLUMN = "_park"
CITY_COLUMN = "_city"
SAPSAN_COLUMN = "is_sapsan"
VALUE_ERROR_COLUMN = "is_value_error"

VALUE_ERROR_FILL = "FFFFE6E6"
SAPSAN_FILL = "FFE6FFE6"
PLACEHOLDER_VALUES = {"", "-", "—"}


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass
class ExportGroup:
    name: str
    frame: pd.DataFrame
    commission_header: str


@dataclass
class ExportResult:
    file_name: str
    payload: bytes
    members: List[str] = field(default_factory=list)


def find_date_range(dataset: Dataset) -> Optional[DateRange]:
    time_column = next(
        (header for header in dataset.headers if "время заказа" in normalize_header_name(header)),
        None,
    )
    if time_column is None:
        return None
    dates = [parse_datetime(value) for value in dataset.column(time_column)]
    dates = [value.replace(tzinfo=None) for value in dates if value is not None]
    if not dates:
        return None
    return DateRange(min(dates), max(dates))


def report_period_title(dataset: Dataset) -> str:
    period = find_date_range(dataset)
    if period is None:
        return "Нет информации о периоде"
    return f"Отчёт за период {format_date(period.start)} - {format_date(period.end)}"


def _park_name(value: object, settings: ReportSettings) -> str:
    text = cell_text(value).strip()
    return settings.no_park_label if text in PLACEHOLDER_VALUES else text


def build_export_frame(dataset: Dataset, settings: ReportSettings = DEFAULT_SETTINGS) -> pd.DataFrame:
    """Project the dataset onto the export layout and compute commission and payout."""
    sources = {
        target: find_header(dataset.headers, target)
        for target in EXPORT_HEADERS
        if target not in COMPUTED_HEADERS
    }
    address_column = find_header(dataset.headers, "адрес")
    park_column = find_header(dataset.headers, "парк партнер")

    records = []
    for row in dataset.rows:
        record: Dict[str, object] = {
            target: (row.get(source) if source else None) for target, source in sources.items()
        }
        city = detect_city(cell_text(row.get(address_column)))
        record[CITY_COLUMN] = city.value if city is not None else None
        record[PARK_COLUMN] = _park_name(row.get(park_column), settings)
        record[SAPSAN_COLUMN] = row.flags.is_sapsan
        record[VALUE_ERROR_COLUMN] = row.flags.is_value_error
        records.append(record)

    columns = [header for header in EXPORT_HEADERS if header not in COMPUTED_HEADERS]
    frame = pd.DataFrame(
        records, columns=columns + [CITY_COLUMN, PARK_COLUMN, SAPSAN_COLUMN, VALUE_ERROR_COLUMN]
    )

    cost = frame["Стоимость"].map(to_number).astype(float)
    extra_payment = frame["Доплата"].map(to_number).astype(float)
    rate = frame[CITY_COLUMN].map(settings.commission_rate).astype(float)
    commission = cost * rate
    frame[COMMISSION_HEADER] = commission.round(2)
    frame[PAYOUT_HEADER] = (cost - commission + extra_payment).round(2)
    frame["Стоимость"] = cost
    frame["Доплата"] = extra_payment
    return frame


def commission_header(frame: pd.DataFrame, settings: ReportSettings = DEFAULT_SETTINGS) -> str:
    cities = set(frame[CITY_COLUMN].tolist())
    if len(cities) != 1:
        return COMMISSION_HEADER
    city = cities.pop()
    if city is None or (isinstance(city, float) and np.isnan(city)):
        return COMMISSION_HEADER
    return f"{COMMISSION_HEADER} {settings.commission_rate(city) * 100:g}%"


def group_by_partner(frame: pd.DataFrame, settings: ReportSettings = DEFAULT_SETTINGS) -> List[ExportGroup]:
    groups: List[ExportGroup] = []
    for name, group in frame.groupby(PARK_COLUMN, sort=False, dropna=False):
        group = group.reset_index(drop=True)
        groups.append(ExportGroup(str(name), group, commission_header(group, settings)))
    return groups


def _fill_for(is_sapsan: bool, is_value_error: bool) -> Optional[str]:
    if is_value_error:
        return VALUE_ERROR_FILL
    if is_sapsan:
        return SAPSAN_FILL
    return None


def _row_fills(frame: pd.DataFrame) -> List[Optional[str]]:
    return [
        _fill_for(bool(is_sapsan), bool(is_value_error))
        for is_sapsan, is_value_error in zip(frame[SAPSAN_COLUMN], frame[VALUE_ERROR_COLUMN])
    ]


def _footer(row_count: int, payout_letter: str) -> List[FooterRow]:
    total_row = row_count + 2
    total = f"=SUM({payout_letter}2:{payout_letter}{row_count + 1})" if row_count else 0
    return [
        FooterRow("Итого", total, bold=True),
        FooterRow("Наличные", 0),
        FooterRow("Штрафы", 0),
        FooterRow(
            "Итого к выплате",
            f"={payout_letter}{total_row}-{payout_letter}{total_row + 1}-{payout_letter}{total_row + 2}",
            bold=True,
        ),
    ]


def build_group_workbook(group: ExportGroup) -> bytes:
    headers = [group.commission_header if header == COMMISSION_HEADER else header for header in EXPORT_HEADERS]
    renamed = group.frame.rename(columns={COMMISSION_HEADER: group.commission_header})
    records = renamed[headers].to_dict(orient="records")
    payout_letter = get_column_letter(headers.index(PAYOUT_HEADER) + 1)
    return write_workbook(
        headers,
        records,
        row_fills=_row_fills(group.frame),
        footer=_footer(len(records), payout_letter),
        footer_value_column=PAYOUT_HEADER,
    )


def _period_suffix(period: Optional[DateRange]) -> str:
    if period is None:
        return ""
    return f"за_период_{format_date(period.start)}_{format_date(period.end)}"


def export_by_partner(dataset: Dataset, settings: ReportSettings = DEFAULT_SETTINGS) -> ExportResult:
    """Build the zip archive with one workbook per partner fleet."""
    period = find_date_range(dataset)
    suffix = _period_suffix(period)
    groups = group_by_partner(build_export_frame(dataset, settings), settings)

    files: Dict[str, bytes] = {}
    stems: set[str] = set()
    for group in groups:
        base = f"отчёт_{suffix}_по_{group.name}" if suffix else f"отчёт_по_{group.name}"
        safe = safe_file_name(base)
        stem = unique_name(safe, stems)
        if stem != safe:
            logger.warning("Park '%s' renamed to '%s' in the archive", group.name, stem)
        stems.add(stem)
        files[f"{stem}.xlsx"] = build_group_workbook(group)

    archive_name = f"отчёты_по_паркам_{suffix}.zip" if suffix else "отчёты.zip"
    logger.info("Exported %d partner workbooks into %s", len(files), archive_name)
    return ExportResult(archive_name, build_archive(files), list(files))


def export_general(dataset: Dataset, file_name: str = "processed-report") -> ExportResult:
    """Single workbook with the whole annotated dataset, without partner split."""
    records = [row.values for row in dataset.rows]
    fills = [_fill_for(row.flags.is_sapsan, row.flags.is_value_error) for row in dataset.rows]
    payload = write_workbook(dataset.headers, records, row_fills=fills)
    logger.info("Exported general workbook with %d rows", len(records))
    return ExportResult(f"{file_name}.xlsx", payload, [f"{file_name}.xlsx"])
