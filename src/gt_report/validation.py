from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .heuristics import City
from .models import ColumnConfig, Dataset
from .values import cell_text, find_header, normalize_header_name

__all__ = [
    "UploadValidationError",
    "SLV_HEADERS",
    "CITY_NAMES",
    "default_columns",
    "combine_datasets",
    "has_city_addresses",
    "validate_main_upload",
    "validate_partner_upload",
]

logger = logging.getLogger(__name__)

SLV_HEADERS = (
    "Номер заказа",
    "Время заказа",
    "Текущий статус",
    "Стоимость",
    "Сумма клиента",
    "Организация",
    "Адрес",
    "Исполнитель",
    "Автомобиль",
    "Комментарий",
    "Клиент",
    "Парк партнёр",
    "Доплата",
)

DISPLAY_RENAMES = {"Организация": "Заказчик"}

CITY_NAMES = {
    City.SPB: "санкт-петербург",
    City.MSK: "москва",
}


class UploadValidationError(ValueError):
    pass


def default_columns(headers: Sequence[str], slv_mode: bool = True) -> List[ColumnConfig]:
    """Initial column mapping offered after a main file is accepted."""
    if not slv_mode:
        return [ColumnConfig(header, header) for header in headers]

    columns: List[ColumnConfig] = []
    for name in SLV_HEADERS:
        source = find_header(headers, name)
        columns.append(ColumnConfig(source or name, DISPLAY_RENAMES.get(name, name)))
    return columns


def combine_datasets(first: Dataset, second: Optional[Dataset]) -> Dataset:
    """Concatenate the two city files; headers come from the first one."""
    if second is None:
        return first.copy()
    rows = [row.copy() for row in first.rows] + [row.copy() for row in second.rows]
    return Dataset(list(first.headers), rows)


def has_city_addresses(dataset: Dataset, city: City) -> bool:
    address_columns = [header for header in dataset.headers if "адрес" in normalize_header_name(header)]
    needle = CITY_NAMES[city]
    for column in address_columns:
        if any(needle in cell_text(row.get(column)).lower() for row in dataset.rows):
            return True
    return False


def validate_main_upload(dataset: Dataset, city: City) -> Dataset:
    if not has_city_addresses(dataset, city):
        message = f"В файле не найдены адреса с указанием города {CITY_NAMES[city]}"
        logger.warning("Main file rejected: %s", message)
        raise UploadValidationError(message)
    return dataset


def validate_partner_upload(dataset: Dataset, city: Optional[City] = None) -> Dataset:
    """Check a partner file; ``city`` additionally requires matching addresses."""
    if find_header(dataset.headers, "партнер") is None:
        message = 'В файле партнёра отсутствует колонка "Партнер"'
        logger.warning("Partner file rejected: %s", message)
        raise UploadValidationError(message)
    if find_header(dataset.headers, "номер заказа") is None:
        message = 'В файле партнёра отсутствует колонка "Номер заказа"'
        logger.warning("Partner file rejected: %s", message)
        raise UploadValidationError(message)
    if city is not None:
        validate_main_upload(dataset, city)
    return dataset
