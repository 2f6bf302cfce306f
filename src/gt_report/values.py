from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Iterable, Optional

import numpy as np
import pandas as pd

__all__ = [
    "DISPLAY_DATETIME_FORMAT",
    "is_blank",
    "normalize_header_name",
    "find_header",
    "parse_number",
    "to_number",
    "parse_datetime",
    "format_datetime",
    "format_date",
    "cell_text",
    "datetime_sort_key",
]

DISPLAY_DATETIME_FORMAT = "%d.%m.%Y %H:%M"

SPACE_PATTERN = re.compile(r"[\s\u00A0\u202F]")
ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")

DOTTED_FORMATS = ("%d.%m.%Y %H:%M", "%d.%m.%Y %H:%M:%S", "%d.%m.%Y")


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and np.isnan(value):
        return True
    if value is pd.NaT:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def normalize_header_name(name: object) -> str:
    """Lowercase header with invisible characters dropped and "ё" folded into "е"."""
    cleaned = unicodedata.normalize("NFC", str(name or ""))
    cleaned = cleaned.replace("\u00A0", " ").replace("\u202F", " ")
    cleaned = cleaned.replace("\u200B", "").replace("\u200C", "").replace("\u200D", "")
    cleaned = cleaned.replace("\ufeff", "")
    cleaned = cleaned.strip().lower()
    return cleaned.replace("ё", "е")


def find_header(headers: Iterable[str], keyword: str, exact: bool = False) -> Optional[str]:
    """Return the first header containing ``keyword`` (or equal to it when ``exact``)."""
    needle = normalize_header_name(keyword)
    for header in headers:
        normalized = normalize_header_name(header)
        if (normalized == needle) if exact else (needle in normalized):
            return header
    return None


def _normalize_numeric(value: str) -> str:
    cleaned = SPACE_PATTERN.sub("", value)
    cleaned = cleaned.replace("\u2212", "-")
    cleaned = cleaned.replace(",", ".")
    cleaned = cleaned.replace('"', "")
    lowered = cleaned.lower()
    for token in ("руб", "₽", "rub"):
        lowered = lowered.replace(token, "")
    return lowered.strip()


def parse_number(value: object) -> Optional[float]:
    """Return the numeric value of a cell, or ``None`` when it is not a number."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    cleaned = _normalize_numeric(str(value))
    if cleaned in {"", "-", "--"}:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def to_number(value: object) -> float:
    parsed = parse_number(value)
    return 0.0 if parsed is None else parsed


def parse_datetime(value: object) -> Optional[datetime]:
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    for fmt in DOTTED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    if ISO_DATE_PATTERN.match(text):
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def format_datetime(value: datetime) -> str:
    return value.strftime(DISPLAY_DATETIME_FORMAT)


def format_date(value: datetime) -> str:
    return value.strftime("%d.%m.%Y")


def cell_text(value: object) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


EPOCH = datetime(1970, 1, 1)


def datetime_sort_key(value: object) -> datetime:
    """Naive datetime used for ordering; unparseable values sort as the epoch."""
    parsed = parse_datetime(value)
    if parsed is None:
        return EPOCH
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
