from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Collection, Dict, List, Mapping, Optional, Sequence, Set

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .config import DEFAULT_SETTINGS, ReportSettings
from .models import Dataset
from .values import (
    ISO_DATE_PATTERN,
    is_blank,
    normalize_header_name,
    parse_datetime,
    parse_number,
)

__all__ = [
    "CodecError",
    "FooterRow",
    "decode_upload",
    "decode_csv_bytes",
    "normalize_time_cell",
    "is_time_column",
    "is_numeric_column",
    "write_workbook",
    "build_archive",
    "safe_file_name",
    "unique_name",
    "XLSX_MIME",
    "ZIP_MIME",
]

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = {"xlsx", "xlsm", "xls"}
CYRILLIC_PATTERN = re.compile(r"[а-яА-ЯёЁ]")
UNSAFE_FILE_CHARS = re.compile(r"[\\/*?:\[\]]")
EXCEL_EPOCH = datetime(1970, 1, 1)
EXCEL_EPOCH_SERIAL = 25569
SERIAL_DATE_THRESHOLD = 10000

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ZIP_MIME = "application/zip"

COLUMN_WIDTHS = {
    "Номер заказа": 130,
    "Время заказа": 230,
    "Стоимость": 160,
    "Сумма клиента": 150,
    "Комиссия": 160,
    "К выплате": 160,
    "Заказчик": 270,
    "Адрес": 680,
    "Исполнитель": 270,
    "Автомобиль": 270,
    "Комментарий": 680,
    "Клиент": 270,
    "Парк партнёр": 270,
    "Доплата": 160,
}
NUMERIC_COLUMNS = ("стоимость", "сумма клиента", "доплата", "комиссия", "к выплате")
IDENTIFIER_COLUMNS = ("номер заказа",)

FINANCIAL_FORMAT = "#,##0.00"
DATETIME_FORMAT = "DD.MM.YYYY HH:mm"
IDENTIFIER_FORMAT = "0"

HEADER_FILL = "FFDDEBF7"
EVEN_ROW_FILL = "FFF2F2F2"
ODD_ROW_FILL = "FFFFFFFF"

THIN = Side(style="thin")
CELL_BORDER = Border(top=THIN, left=THIN, bottom=THIN, right=THIN)
CENTERED = Alignment(vertical="center", horizontal="center", wrap_text=True)


class CodecError(ValueError):
    pass


def is_time_column(header: str) -> bool:
    return "время" in normalize_header_name(header)


def is_numeric_column(header: str) -> bool:
    normalized = normalize_header_name(header)
    return any(token in normalized for token in NUMERIC_COLUMNS)


def is_identifier_column(header: str) -> bool:
    normalized = normalize_header_name(header)
    return any(token in normalized for token in IDENTIFIER_COLUMNS)


def _get_file_extension(file_obj: io.IOBase) -> str:
    name = getattr(file_obj, "name", "") or ""
    if not isinstance(name, str) or "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def _read_bytes(file_obj: io.IOBase) -> bytes:
    position: Optional[int] = None
    if hasattr(file_obj, "tell") and hasattr(file_obj, "seek"):
        try:
            position = file_obj.tell()
            file_obj.seek(0)
        except (OSError, io.UnsupportedOperation):
            position = None
    raw = file_obj.read()
    if position is not None:
        try:
            file_obj.seek(position)
        except (OSError, io.UnsupportedOperation):
            pass
    if isinstance(raw, str):
        return raw.encode("utf-8")
    return raw


def decode_csv_bytes(raw: bytes) -> str:
    """Decode CSV bytes as Windows-1251, falling back to UTF-8.

    Bytes that are valid UTF-8 and contain Cyrillic text are taken as UTF-8;
    otherwise Windows-1251 is used unless it yields no Cyrillic characters.
    """
    try:
        utf8_text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        utf8_text = None
    if utf8_text is not None and CYRILLIC_PATTERN.search(utf8_text):
        return utf8_text

    cp1251_text = raw.decode("cp1251", errors="replace")
    if CYRILLIC_PATTERN.search(cp1251_text) or utf8_text is None:
        return cp1251_text
    return utf8_text


def _moscow_shift(value: datetime, settings: ReportSettings) -> datetime:
    offset = timedelta(hours=settings.moscow_offset_hours)
    if value.tzinfo is not None:
        value = value.astimezone(timezone(offset)).replace(tzinfo=None)
    return value - offset


def normalize_time_cell(value: object, settings: ReportSettings = DEFAULT_SETTINGS) -> object:
    """Turn a decoded "время" cell into a Moscow-shifted datetime when it holds a date."""
    if isinstance(value, pd.Timestamp):
        return _moscow_shift(value.to_pydatetime(), settings)
    if isinstance(value, datetime):
        return _moscow_shift(value, settings)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > SERIAL_DATE_THRESHOLD:
        try:
            converted = EXCEL_EPOCH + timedelta(days=float(value) - EXCEL_EPOCH_SERIAL)
        except OverflowError:
            return value
        return _moscow_shift(converted, settings)
    if isinstance(value, str) and ISO_DATE_PATTERN.search(value):
        parsed = parse_datetime(value.strip())
        return _moscow_shift(parsed, settings) if parsed is not None else value
    return value


def unique_name(name: str, taken: Collection[str]) -> str:
    """Return ``name`` or the first free ``name (N)`` variant, N starting at 2."""
    if name not in taken:
        return name
    counter = 2
    while f"{name} ({counter})" in taken:
        counter += 1
    return f"{name} ({counter})"


def _unique_headers(raw_headers: Sequence[object]) -> List[Optional[str]]:
    headers: List[Optional[str]] = []
    taken: Set[str] = {str(raw).strip() for raw in raw_headers if not is_blank(raw)}
    used: Set[str] = set()
    for raw in raw_headers:
        if is_blank(raw):
            headers.append(None)
            continue
        header = str(raw).strip()
        if header in used:
            header = unique_name(header, taken)
            taken.add(header)
        used.add(header)
        headers.append(header)
    return headers


def _clean_cell(value: object) -> object:
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _frame_to_dataset(frame: pd.DataFrame, settings: ReportSettings) -> Dataset:
    if frame.empty:
        raise CodecError("Файл не содержит данных")

    raw_rows = frame.values.tolist()
    headers = _unique_headers(raw_rows[0])
    if not any(headers):
        raise CodecError("В файле не найдена строка заголовков")

    time_columns = {header for header in headers if header and is_time_column(header)}
    records: List[Dict[str, object]] = []
    for raw_row in raw_rows[1:]:
        if all(is_blank(cell) for cell in raw_row):
            continue
        record: Dict[str, object] = {}
        for header, cell in zip(headers, raw_row):
            if header is None:
                continue
            value = _clean_cell(cell)
            if header in time_columns and value is not None:
                value = normalize_time_cell(value, settings)
            record[header] = value
        records.append(record)

    try:
        return Dataset.from_records([header for header in headers if header], records)
    except ValueError as exc:
        raise CodecError(str(exc)) from exc


def _read_excel(raw: bytes, settings: ReportSettings) -> Dataset:
    try:
        frame = pd.read_excel(io.BytesIO(raw), sheet_name=0, header=None, dtype=object)
    except Exception as exc:
        raise CodecError(f"Не удалось прочитать данные из Excel-файла: {exc}") from exc
    return _frame_to_dataset(frame, settings)


def _read_csv(raw: bytes, settings: ReportSettings) -> Dataset:
    text = decode_csv_bytes(raw)
    if not text.strip():
        raise CodecError("Файл CSV пуст")
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=settings.csv_delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise CodecError(f"Ошибка парсинга CSV: {exc}") from exc
    if len(frame.index) < 2:
        raise CodecError("CSV файл не содержит данных")
    return _frame_to_dataset(frame, settings)


def decode_upload(file_obj: io.IOBase, settings: ReportSettings = DEFAULT_SETTINGS) -> Dataset:
    """Decode an uploaded ``.xlsx``/``.xls``/``.csv`` file into a Dataset.

    Only the first sheet is read and its first row is taken as headers.
    """
    raw = _read_bytes(file_obj)
    if not raw:
        raise CodecError("Файл пуст")

    extension = _get_file_extension(file_obj)
    if extension in EXCEL_EXTENSIONS:
        dataset = _read_excel(raw, settings)
    elif extension == "csv":
        dataset = _read_csv(raw, settings)
    else:
        try:
            dataset = _read_excel(raw, settings)
        except CodecError:
            dataset = _read_csv(raw, settings)

    logger.info(
        "Decoded %s: %d columns, %d rows",
        getattr(file_obj, "name", "upload"),
        len(dataset.headers),
        len(dataset.rows),
    )
    return dataset


class FooterRow:
    """A labelled row appended after the data (totals, manual adjustments)."""

    def __init__(self, label: str, value: object, bold: bool = False) -> None:
        self.label = label
        self.value = value
        self.bold = bold


def _column_width(header: str) -> float:
    for key, width in COLUMN_WIDTHS.items():
        if key in header:
            return width / 12
    return 20


def _export_value(header: str, value: object) -> object:
    if is_blank(value):
        return 0 if is_numeric_column(header) else "-"
    if is_time_column(header) and isinstance(value, str):
        parsed = parse_datetime(value)
        return parsed if parsed is not None else value
    if is_numeric_column(header) and isinstance(value, str):
        parsed_number = parse_number(value)
        return parsed_number if parsed_number is not None else value
    if is_identifier_column(header) and isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _number_format(header: str) -> Optional[str]:
    if is_numeric_column(header):
        return FINANCIAL_FORMAT
    if is_time_column(header):
        return DATETIME_FORMAT
    if is_identifier_column(header):
        return IDENTIFIER_FORMAT
    return None


def write_workbook(
    headers: Sequence[str],
    rows: Sequence[Mapping[str, object]],
    row_fills: Optional[Sequence[Optional[str]]] = None,
    footer: Sequence[FooterRow] = (),
    footer_value_column: Optional[str] = None,
    sheet_title: str = "Отчёт",
) -> bytes:
    """Serialize rows into a styled ``.xlsx`` workbook and return its bytes.

    ``row_fills`` holds an ARGB colour per data row, ``None`` meaning the
    default alternating fill.
    """
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title

    worksheet.append(list(headers))
    for cell in worksheet[1]:
        cell.fill = PatternFill("solid", fgColor=HEADER_FILL)
        cell.font = Font(name="Arial", size=12, bold=True)
        cell.alignment = CENTERED
        cell.border = CELL_BORDER

    formats = [_number_format(header) for header in headers]
    for index, row in enumerate(rows):
        excel_row = index + 2
        worksheet.append([_export_value(header, row.get(header)) for header in headers])
        fill = row_fills[index] if row_fills is not None else None
        if fill is None:
            fill = EVEN_ROW_FILL if excel_row % 2 == 0 else ODD_ROW_FILL
        for cell, number_format in zip(worksheet[excel_row], formats):
            cell.fill = PatternFill("solid", fgColor=fill)
            cell.alignment = CENTERED
            cell.border = CELL_BORDER
            if number_format:
                cell.number_format = number_format

    if footer:
        value_index = list(headers).index(footer_value_column) + 1 if footer_value_column else 2
        for offset, entry in enumerate(footer):
            excel_row = len(rows) + 2 + offset
            label_cell = worksheet.cell(row=excel_row, column=1, value=entry.label)
            value_cell = worksheet.cell(row=excel_row, column=value_index, value=entry.value)
            value_cell.number_format = FINANCIAL_FORMAT
            for cell in (label_cell, value_cell):
                cell.border = CELL_BORDER
                cell.alignment = CENTERED
                cell.font = Font(name="Arial", bold=entry.bold)

    for index, header in enumerate(headers, start=1):
        worksheet.column_dimensions[get_column_letter(index)].width = _column_width(header)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def safe_file_name(name: str) -> str:
    return UNSAFE_FILE_CHARS.sub("_", name)


def build_archive(files: Mapping[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, payload in files.items():
            archive.writestr(name, payload)
    return buffer.getvalue()
