from __future__ import annotations

import io
import zipfile
from datetime import datetime

import pytest
from openpyxl import load_workbook

from gt_report.config import ReportSettings
from gt_report.export import (
    COMMISSION_HEADER,
    PAYOUT_HEADER,
    build_export_frame,
    commission_header,
    export_by_partner,
    export_general,
    find_date_range,
    group_by_partner,
    report_period_title,
)
from gt_report.models import Dataset, Row, RowFlags


HEADERS = [
    "Номер заказа",
    "Время заказа",
    "Стоимость",
    "Заказчик",
    "Адрес",
    "Исполнитель",
    "Автомобиль",
    "Комментарий",
    "Парк партнёр",
    "Доплата",
]


def make_row(number, time, cost, address, park, extra=0, **flags):
    values = {
        "Номер заказа": number,
        "Время заказа": time,
        "Стоимость": cost,
        "Адрес": address,
        "Парк партнёр": park,
        "Доплата": extra,
    }
    return Row(values, RowFlags(**flags))


def make_dataset(*rows):
    return Dataset(list(HEADERS), list(rows))


def read_workbook(payload):
    return load_workbook(io.BytesIO(payload)).active


def test_build_export_frame_computes_commission_and_payout():
    dataset = make_dataset(
        make_row(1, "01.03.2024 09:00", 1000, "Санкт-Петербург", "ParkA", extra=100),
        make_row(2, "01.03.2024 10:00", "2 000", "Москва", "ParkA"),
        make_row(3, "01.03.2024 11:00", 500, "Казань", "ParkB"),
    )

    frame = build_export_frame(dataset)

    assert frame[COMMISSION_HEADER].tolist() == [230.0, 540.0, 0.0]
    assert frame[PAYOUT_HEADER].tolist() == [870.0, 1460.0, 500.0]
    assert frame["Стоимость"].tolist() == [1000.0, 2000.0, 500.0]


def test_commission_rate_comes_from_settings():
    settings = ReportSettings(commission_rates={"spb": 0.1, "msk": 0.27})
    dataset = make_dataset(make_row(1, None, 1000, "СПб", "ParkA"))

    frame = build_export_frame(dataset, settings)

    assert frame[COMMISSION_HEADER].tolist() == [100.0]
    assert commission_header(frame, settings) == "Комиссия 10%"


@pytest.mark.parametrize(
    "addresses, expected",
    [
        (["Санкт-Петербург", "СПб"], "Комиссия 23%"),
        (["Москва"], "Комиссия 27%"),
        (["Москва", "Санкт-Петербург"], "Комиссия"),
        (["Казань"], "Комиссия"),
    ],
)
def test_commission_header(addresses, expected):
    dataset = make_dataset(*[make_row(i, None, 100, address, "ParkA") for i, address in enumerate(addresses)])

    assert commission_header(build_export_frame(dataset)) == expected


def test_group_by_partner_keeps_first_seen_order_and_no_park_bucket():
    dataset = make_dataset(
        make_row(1, None, 100, "Москва", "ParkB"),
        make_row(2, None, 100, "Москва", ""),
        make_row(3, None, 100, "Москва", "ParkA"),
        make_row(4, None, 100, "Москва", None),
        make_row(5, None, 100, "Москва", "ParkB"),
        make_row(6, None, 100, "Москва", "-"),
    )

    groups = group_by_partner(build_export_frame(dataset))

    assert [group.name for group in groups] == ["ParkB", "без парка", "ParkA"]
    assert [len(group.frame) for group in groups] == [2, 3, 1]


def test_find_date_range_and_period_title():
    dataset = make_dataset(
        make_row(1, "02.03.2024 10:00", 100, "Москва", "ParkA"),
        make_row(2, "01.03.2024 09:00", 100, "Москва", "ParkA"),
        make_row(3, "нет даты", 100, "Москва", "ParkA"),
    )

    period = find_date_range(dataset)

    assert period.start == datetime(2024, 3, 1, 9, 0)
    assert period.end == datetime(2024, 3, 2, 10, 0)
    assert report_period_title(dataset) == "Отчёт за период 01.03.2024 - 02.03.2024"


def test_period_title_without_dates():
    dataset = Dataset.from_records(["Адрес"], [{"Адрес": "Москва"}])

    assert find_date_range(dataset) is None
    assert report_period_title(dataset) == "Нет информации о периоде"


def test_export_by_partner_builds_archive_per_park():
    dataset = make_dataset(
        make_row(1, "01.03.2024 09:00", 1000, "Санкт-Петербург", "ParkA", is_value_error=True),
        make_row(2, "02.03.2024 10:00", 2000, "Санкт-Петербург", "ParkA"),
        make_row(3, "02.03.2024 11:00", 3000, "Москва", None, is_sapsan=True),
    )

    result = export_by_partner(dataset)

    assert result.file_name == "отчёты_по_паркам_за_период_01.03.2024_02.03.2024.zip"
    assert result.members == [
        "отчёт_за_период_01.03.2024_02.03.2024_по_ParkA.xlsx",
        "отчёт_за_период_01.03.2024_02.03.2024_по_без парка.xlsx",
    ]
    with zipfile.ZipFile(io.BytesIO(result.payload)) as archive:
        assert archive.namelist() == result.members
        park_a = read_workbook(archive.read(result.members[0]))
        no_park = read_workbook(archive.read(result.members[1]))

    assert [cell.value for cell in park_a[1]] == [
        "Номер заказа",
        "Время заказа",
        "Стоимость",
        "Комиссия 23%",
        "Доплата",
        "К выплате",
        "Адрес",
        "Исполнитель",
        "Автомобиль",
        "Комментарий",
    ]
    assert park_a["B2"].value == datetime(2024, 3, 1, 9, 0)
    assert park_a["D3"].value == 460
    assert park_a["F3"].value == 1540
    assert park_a["H2"].value == "-"
    assert park_a["A2"].fill.fgColor.rgb == "FFFFE6E6"
    assert park_a["A3"].fill.fgColor.rgb == "FFFFFFFF"
    assert no_park["A2"].fill.fgColor.rgb == "FFE6FFE6"
    assert no_park["D1"].value == "Комиссия 27%"


def test_export_footer_rows():
    dataset = make_dataset(
        make_row(1, None, 1000, "Москва", "ParkA"),
        make_row(2, None, 2000, "Москва", "ParkA"),
    )

    result = export_by_partner(dataset)

    assert result.file_name == "отчёты.zip"
    assert result.members == ["отчёт_по_ParkA.xlsx"]
    with zipfile.ZipFile(io.BytesIO(result.payload)) as archive:
        sheet = read_workbook(archive.read(result.members[0]))

    assert [sheet.cell(row=row, column=1).value for row in range(4, 8)] == [
        "Итого",
        "Наличные",
        "Штрафы",
        "Итого к выплате",
    ]
    assert sheet["F4"].value == "=SUM(F2:F3)"
    assert sheet["F5"].value == 0
    assert sheet["F6"].value == 0
    assert sheet["F7"].value == "=F4-F5-F6"
    assert sheet["F4"].font.bold


def test_export_by_partner_with_empty_dataset():
    result = export_by_partner(make_dataset())

    assert result.members == []
    with zipfile.ZipFile(io.BytesIO(result.payload)) as archive:
        assert archive.namelist() == []


def test_export_general_keeps_all_columns_and_placeholders():
    dataset = make_dataset(
        make_row("1001", "01.03.2024 09:00", None, "Москва", "ParkA", extra=None, is_value_error=True),
    )

    result = export_general(dataset)

    assert result.file_name == "processed-report.xlsx"
    sheet = read_workbook(result.payload)
    assert [cell.value for cell in sheet[1]] == HEADERS
    assert sheet["A2"].value == 1001
    assert sheet["A2"].number_format == "0"
    assert sheet["C2"].value == 0
    assert sheet["C2"].number_format == "#,##0.00"
    assert sheet["D2"].value == "-"
    assert sheet["B2"].number_format == "DD.MM.YYYY HH:mm"
    assert sheet["A2"].fill.fgColor.rgb == "FFFFE6E6"
    assert sheet["A1"].fill.fgColor.rgb == "FFDDEBF7"


def test_parks_with_colliding_file_names_keep_separate_workbooks():
    dataset = make_dataset(
        make_row(1, None, 1000, "Москва", "A/B"),
        make_row(2, None, 2000, "Москва", "A_B"),
        make_row(3, None, 3000, "Москва", "A:B"),
    )

    result = export_by_partner(dataset)

    assert result.members == [
        "отчёт_по_A_B.xlsx",
        "отчёт_по_A_B (2).xlsx",
        "отчёт_по_A_B (3).xlsx",
    ]
    with zipfile.ZipFile(io.BytesIO(result.payload)) as archive:
        assert archive.namelist() == result.members
        costs = [read_workbook(archive.read(name))["C2"].value for name in result.members]
    assert costs == [1000, 2000, 3000]
