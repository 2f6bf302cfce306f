"""Classification of free-text comment and address fields.

Every heuristic is an ordered list of rules evaluated first-match-wins, so the
precedence of the dispatcher shorthand codes is explicit and each rule can be
tested on its own. All functions are pure; they only log diagnostics.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Sequence

from .config import DEFAULT_SETTINGS, ReportSettings

__all__ = [
    "City",
    "Fee",
    "FeeKind",
    "ExecutorRule",
    "EXECUTOR_RULES",
    "strip_phone_numbers",
    "infer_executor",
    "detect_sapsan_cash",
    "find_toll_and_parking_fees",
    "has_unconfirmed_fee_mention",
    "detect_city",
    "split_route_points",
    "moscow_minimum_fare",
    "minimum_fare",
]

logger = logging.getLogger(__name__)

WHITESPACE_PATTERN = re.compile(r"\s+")

PREFIXED_PHONE_PATTERN = re.compile(
    r"(\+7|7|8)\d{10}"
    r"|(\+7|7|8)[\s\-]?\(?\d{3}\)?[\s\-]?\d{3}[\s\-]?\d{2}[\s\-]?\d{2}"
)
LOCAL_PHONE_PATTERN = re.compile(
    r"9\d{9}"
    r"|\(?\d{3}\)?[\s\-]?\d{3}[\s\-]?\d{2}[\s\-]?\d{2}"
)

TOLL_PATTERNS: Sequence[tuple[Pattern[str], int]] = (
    (re.compile(r"(платные? дороги?|платка|зсд)[^\d]*(\d+)\s*вкл", re.IGNORECASE), 2),
    (re.compile(r"зсд/\+\s*(\d+)\s*зсд\s*вкл", re.IGNORECASE), 1),
)
PARKING_PATTERNS: Sequence[tuple[Pattern[str], int]] = (
    (re.compile(r"(платные? парковки?|парковка)[^\d]*(\d+)\s*вкл", re.IGNORECASE), 2),
)
FEE_KEYWORD_PATTERN = re.compile(
    r"(платные? дороги?|платка|зсд|платные? парковки?|парковка)", re.IGNORECASE
)

ROUTE_MARKER_PATTERN = re.compile(r"[AА]\)|[BВ]\)")


class City(str, Enum):
    SPB = "spb"
    MSK = "msk"


class FeeKind(str, Enum):
    TOLL = "toll"
    PARKING = "parking"


@dataclass(frozen=True)
class Fee:
    kind: FeeKind
    amount: int


@dataclass(frozen=True)
class ExecutorRule:
    name: str
    patterns: tuple[Pattern[str], ...]
    exceptions: tuple[Pattern[str], ...] = ()

    def matches(self, comment: str) -> bool:
        if any(exception.search(comment) for exception in self.exceptions):
            return False
        return any(pattern.search(comment) for pattern in self.patterns)


def _compile_all(*sources: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


EXECUTOR_RULES: tuple[ExecutorRule, ...] = (
    ExecutorRule("Асонов", _compile_all(r"асонов")),
    ExecutorRule(
        "Яндекс",
        _compile_all(
            r"я$", r"як$", r"яким$", r"яков$",
            r"\dя$", r"\dяк$", r"\dяким$", r"\dяков$",
            r"я\d{3}$", r"\dя\d{3}$",
            r"/я$", r"/як$", r"/яким$", r"/яков$", r"/яков", r"/яким",
            r"\sя$", r"\sяк$", r"\sяким$", r"\sяков$",
            r"я[^а-яё]*$", r"як[^а-яё]*$", r"яким[^а-яё]*$",
        ),
        exceptions=_compile_all(r"ния$", r"парадная\s*\d*$"),
    ),
    ExecutorRule(
        "Вили",
        _compile_all(r"влад\d{3}$", r"/в$", r"в$", r"/в\s*$", r"\dв\d{3}$", r"\d/в", r"\dв$"),
        exceptions=(re.compile(r"ов$"),),
    ),
)


def strip_phone_numbers(text: Optional[str]) -> str:
    """Remove Russian phone numbers and collapse whitespace.

    Numbers with a ``+7``/``7``/``8`` prefix are removed first; only when none
    were found is the local mobile/grouped form tried.
    """
    if not text:
        return ""
    result, removed = PREFIXED_PHONE_PATTERN.subn("", text)
    if not removed:
        result, removed = LOCAL_PHONE_PATTERN.subn("", text)
    if removed:
        logger.debug("Removed %d phone number(s) from comment", removed)
    return WHITESPACE_PATTERN.sub(" ", result).strip()


def infer_executor(comment: Optional[str]) -> Optional[str]:
    normalized = (comment or "").strip().lower()
    if not normalized:
        return None
    for rule in EXECUTOR_RULES:
        if rule.matches(normalized):
            return rule.name
    return None


def detect_sapsan_cash(comment: Optional[str], settings: ReportSettings = DEFAULT_SETTINGS) -> bool:
    return settings.sapsan_keyword in (comment or "").lower()


def _first_amount(comment: str, patterns: Sequence[tuple[Pattern[str], int]]) -> Optional[tuple[int, str]]:
    for pattern, group in patterns:
        match = pattern.search(comment)
        if not match:
            continue
        try:
            return int(match.group(group)), match.group(0)
        except (TypeError, ValueError):
            continue
    return None


def find_toll_and_parking_fees(comment: Optional[str]) -> List[Fee]:
    """Return at most one toll and at most one parking fee confirmed with "вкл"."""
    if not comment:
        return []

    fees: List[Fee] = []
    for kind, patterns in ((FeeKind.TOLL, TOLL_PATTERNS), (FeeKind.PARKING, PARKING_PATTERNS)):
        found = _first_amount(comment, patterns)
        if found is None:
            continue
        amount, fragment = found
        logger.debug("[%s] found '%s' (amount: %d)", kind.value, fragment, amount)
        fees.append(Fee(kind, amount))
    return fees


def has_unconfirmed_fee_mention(comment: Optional[str]) -> bool:
    """True when a toll/parking keyword is present but no confirmed amount could be parsed.

    This covers both a missing "вкл" marker and "вкл" without a preceding number.
    """
    if not comment or not FEE_KEYWORD_PATTERN.search(comment):
        return False
    if "вкл" not in comment.lower():
        return True
    return not find_toll_and_parking_fees(comment)


CITY_RULES: tuple[tuple[tuple[str, ...], City], ...] = (
    (("москва",), City.MSK),
    (("санкт-петербург", "спб"), City.SPB),
)


def detect_city(address: Optional[str]) -> Optional[City]:
    lowered = (address or "").lower()
    if not lowered:
        return None
    for markers, city in CITY_RULES:
        if any(marker in lowered for marker in markers):
            return city
    return None


def split_route_points(address: str) -> tuple[str, str]:
    """Split "A) ... B) ..." into the two route points, trailing ';' trimmed."""
    parts = ROUTE_MARKER_PATTERN.split(address or "")
    point_a = parts[1].strip() if len(parts) > 1 else ""
    point_b = parts[2].strip() if len(parts) > 2 else ""
    return point_a.rstrip(";").strip(), point_b.rstrip(";").strip()


def moscow_minimum_fare(address: Optional[str], settings: ReportSettings = DEFAULT_SETTINGS) -> int:
    point_a, point_b = (point.lower() for point in split_route_points(address or ""))

    if "аэропорт" in point_a and "аэропорт" in point_b:
        return settings.msk_airport_to_airport_min_fare
    if "домодедово" in point_a or "домодедово" in point_b:
        return settings.msk_domodedovo_min_fare
    if "жуковский" in point_a or "жуковский" in point_b:
        return settings.msk_zhukovsky_min_fare
    return settings.msk_min_fare


def minimum_fare(city: City, address: Optional[str], settings: ReportSettings = DEFAULT_SETTINGS) -> int:
    if city is City.SPB:
        return settings.spb_min_fare
    return moscow_minimum_fare(address, settings)
