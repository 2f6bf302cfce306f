from __future__ import annotations

from datetime import datetime

import pytest

from gt_report.models import FLAG_COLUMNS, Dataset, Row, RowFlags


def test_dataset_rejects_duplicate_headers():
    with pytest.raises(ValueError, match="уникальными"):
        Dataset(["Адрес", "Адрес"])


def test_dataset_fills_missing_cells():
    dataset = Dataset.from_records(["Адрес", "Стоимость"], [{"Адрес": "Москва"}])

    assert dataset.rows[0].values == {"Адрес": "Москва", "Стоимость": None}


def test_to_frame_with_flags_and_display_text():
    dataset = Dataset(
        ["Время заказа", "Стоимость"],
        [
            Row({"Время заказа": datetime(2024, 3, 1, 9, 0), "Стоимость": 2600.0}, RowFlags(is_sapsan=True)),
            Row({"Время заказа": None, "Стоимость": 100}, RowFlags(is_value_error=True)),
        ],
    )

    frame = dataset.to_frame(include_flags=True, rows=dataset.rows[:1], as_text=True)

    assert list(frame.columns) == ["Время заказа", "Стоимость", *FLAG_COLUMNS]
    assert frame.iloc[0].tolist()[:2] == ["01.03.2024 09:00", "2600"]
    assert bool(frame.iloc[0]["is_sapsan"])
    assert len(frame) == 1


def test_to_frame_keeps_raw_values_by_default():
    dataset = Dataset.from_records(["Стоимость"], [{"Стоимость": 2600.5}, {"Стоимость": None}])

    frame = dataset.to_frame()

    assert list(frame.columns) == ["Стоимость"]
    assert frame["Стоимость"].iloc[0] == 2600.5
