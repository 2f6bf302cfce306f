from __future__ import annotations

import pytest

from gt_report.config import ReportSettings
from gt_report.heuristics import (
    City,
    EXECUTOR_RULES,
    Fee,
    FeeKind,
    detect_city,
    detect_sapsan_cash,
    find_toll_and_parking_fees,
    has_unconfirmed_fee_mention,
    infer_executor,
    minimum_fare,
    moscow_minimum_fare,
    split_route_points,
    strip_phone_numbers,
)


def test_strip_phone_numbers_removes_prefixed_grouped_number():
    text = "Позвонить +7 (921) 123-45-67 у подъезда"

    assert strip_phone_numbers(text) == "Позвонить у подъезда"


def test_strip_phone_numbers_removes_plain_prefixed_number():
    assert strip_phone_numbers("89211234567 встреча") == "встреча"


def test_strip_phone_numbers_removes_local_mobile_number():
    assert strip_phone_numbers("тел 9211234567 ждать") == "тел ждать"


def test_strip_phone_numbers_skips_local_pass_when_prefixed_found():
    text = "+7 921 123 45 67 и 495 123 45 67"

    assert strip_phone_numbers(text) == "и 495 123 45 67"


def test_strip_phone_numbers_collapses_whitespace_and_handles_empty():
    assert strip_phone_numbers("  встреча   у   входа ") == "встреча у входа"
    assert strip_phone_numbers("") == ""
    assert strip_phone_numbers(None) == ""


@pytest.mark.parametrize(
    "comment, expected",
    [
        ("Заказ передан Асонову", "Асонов"),
        ("Встреча у выхода 5 /я", "Яндекс"),
        ("Багаж 2 места 1я", "Яндекс"),
        ("Ожидание 15 мин в", "Вили"),
        ("Рейс SU 1234 влад123", "Вили"),
        ("Позвонить за 10 минут, парадная 3", None),
        ("Проводы иванов", None),
        ("Оплата картой", None),
        ("", None),
    ],
)
def test_infer_executor(comment, expected):
    assert infer_executor(comment) == expected


def test_infer_executor_asonov_has_priority_over_suffix_codes():
    assert infer_executor("асонов /я") == "Асонов"


def test_executor_rules_are_ordered():
    assert [rule.name for rule in EXECUTOR_RULES] == ["Асонов", "Яндекс", "Вили"]


def test_detect_sapsan_cash_is_case_insensitive():
    assert detect_sapsan_cash("Оплата: САПСАН наличные")
    assert not detect_sapsan_cash("Сапсан безнал")
    assert not detect_sapsan_cash(None)


def test_detect_sapsan_cash_uses_configured_keyword():
    settings = ReportSettings(sapsan_keyword="наличка")

    assert detect_sapsan_cash("Наличка у водителя", settings)


def test_find_toll_fee():
    assert find_toll_and_parking_fees("платные дороги 300 вкл") == [Fee(FeeKind.TOLL, 300)]


def test_find_zsd_plus_notation():
    assert find_toll_and_parking_fees("зсд/+450 зсд вкл") == [Fee(FeeKind.TOLL, 450)]


def test_find_toll_and_parking_fees_together():
    fees = find_toll_and_parking_fees("Платка 200 вкл, парковка 150 вкл")

    assert fees == [Fee(FeeKind.TOLL, 200), Fee(FeeKind.PARKING, 150)]


def test_find_fees_takes_only_first_toll_match():
    fees = find_toll_and_parking_fees("платка 100 вкл, зсд 200 вкл")

    assert fees == [Fee(FeeKind.TOLL, 100)]


def test_find_fees_requires_confirmation_marker():
    assert find_toll_and_parking_fees("платные дороги 300") == []
    assert find_toll_and_parking_fees("парковка вкл") == []
    assert find_toll_and_parking_fees(None) == []


@pytest.mark.parametrize(
    "comment, expected",
    [
        ("парковка вкл", True),
        ("платные дороги 300", True),
        ("ЗСД оплачивал сам", True),
        ("платные дороги 300 вкл", False),
        ("просто комментарий", False),
        ("", False),
    ],
)
def test_has_unconfirmed_fee_mention(comment, expected):
    assert has_unconfirmed_fee_mention(comment) is expected


@pytest.mark.parametrize(
    "address, expected",
    [
        ("г Москва, Тверская 1", City.MSK),
        ("Санкт-Петербург, Невский 1", City.SPB),
        ("СПб, Лиговский 10", City.SPB),
        ("A) Москва; B) Санкт-Петербург", City.MSK),
        ("Казань, Баумана 5", None),
        (None, None),
    ],
)
def test_detect_city(address, expected):
    assert detect_city(address) == expected


def test_split_route_points_trims_semicolons():
    assert split_route_points("A) Москва, Арбат 1; B) Шереметьево;") == ("Москва, Арбат 1", "Шереметьево")
    assert split_route_points("без маршрута") == ("", "")


@pytest.mark.parametrize(
    "address, expected",
    [
        ("A) Аэропорт Шереметьево; B) Аэропорт Внуково;", 6000),
        ("A) Москва, Тверская 1; B) Домодедово аэропорт;", 4100),
        ("A) Жуковский, Мичурина 1; B) Москва, Арбат 2;", 4500),
        ("A) Москва, Арбат 1; B) Москва, Тверская 2;", 3200),
        ("Москва без точек маршрута", 3200),
    ],
)
def test_moscow_minimum_fare(address, expected):
    assert moscow_minimum_fare(address) == expected


def test_minimum_fare_uses_spb_base():
    assert minimum_fare(City.SPB, "A) Домодедово; B) Москва") == 2250
    assert minimum_fare(City.MSK, "A) Домодедово; B) Москва") == 4100


def test_minimum_fare_reads_tiers_from_settings():
    settings = ReportSettings(spb_min_fare=2500, msk_min_fare=3500)

    assert minimum_fare(City.SPB, "", settings) == 2500
    assert minimum_fare(City.MSK, "A) Москва; B) Москва", settings) == 3500
