from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

import yaml

__all__ = [
    "ConfigError",
    "ReportSettings",
    "DEFAULT_SETTINGS",
    "load_settings",
]


class ConfigError(ValueError):
    pass


def _default_commission_rates() -> dict[str, float]:
    return {"spb": 0.23, "msk": 0.27}


@dataclass(frozen=True)
class ReportSettings:
    """Business constants of the report.

    Every value can be overridden from a YAML file, see :func:`load_settings`.
    """

    spb_min_fare: int = 2250
    msk_min_fare: int = 3200
    msk_domodedovo_min_fare: int = 4100
    msk_zhukovsky_min_fare: int = 4500
    msk_airport_to_airport_min_fare: int = 6000
    commission_rates: Mapping[str, float] = field(default_factory=_default_commission_rates)
    moscow_offset_hours: int = 3
    sapsan_keyword: str = "сапсан наличные"
    sapsan_customer: str = "Сапсан"
    no_park_label: str = "без парка"
    csv_delimiter: str = ";"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        object.__setattr__(self, "commission_rates", MappingProxyType(dict(self.commission_rates)))

    def commission_rate(self, city: Optional[str]) -> float:
        if city is None:
            return 0.0
        return float(self.commission_rates.get(str(city), 0.0))


DEFAULT_SETTINGS = ReportSettings()


def _coerce(name: str, expected: Any, value: Any) -> Any:
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"Параметр '{name}' должен быть логическим значением")
        return value
    if isinstance(expected, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Параметр '{name}' должен быть целым числом")
        return value
    if isinstance(expected, str):
        if not isinstance(value, str):
            raise ConfigError(f"Параметр '{name}' должен быть строкой")
        return value
    if isinstance(expected, Mapping):
        if not isinstance(value, dict):
            raise ConfigError(f"Параметр '{name}' должен быть словарём")
        merged = dict(expected)
        for key, rate in value.items():
            if isinstance(rate, bool) or not isinstance(rate, (int, float)):
                raise ConfigError(f"Ставка '{key}' в '{name}' должна быть числом")
            merged[str(key)] = float(rate)
        return merged
    return value


def load_settings(path: str | Path | None = None) -> ReportSettings:
    """Return settings, overriding defaults with the YAML file at ``path``."""
    if path is None:
        return DEFAULT_SETTINGS

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Файл настроек не найден: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Не удалось разобрать файл настроек: {exc}") from exc

    if raw is None:
        return DEFAULT_SETTINGS
    if not isinstance(raw, dict):
        raise ConfigError("Файл настроек должен содержать словарь параметров")

    known = {item.name: getattr(DEFAULT_SETTINGS, item.name) for item in fields(ReportSettings)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"Неизвестные параметры: {', '.join(unknown)}")

    overrides = {name: _coerce(name, known[name], value) for name, value in raw.items()}
    return replace(DEFAULT_SETTINGS, **overrides)
