from __future__ import annotations

import pytest

from gt_report.heuristics import City
from gt_report.models import ColumnConfig, Dataset
from gt_report.state import SLV_STEPS, ProcessingInProgressError, ReportSession, UploadStep


def make_session():
    return ReportSession({"other_app_key": 1})


def dataset():
    return Dataset.from_records(["Адрес"], [{"Адрес": "Москва"}])


def test_upload_steps_know_city_and_role():
    assert [step.city for step in SLV_STEPS] == [City.SPB, City.SPB, City.MSK, City.MSK]
    assert [step.is_partner for step in SLV_STEPS] == [False, True, False, True]


def test_store_upload_advances_wizard():
    session = make_session()
    assert session.slv_mode
    assert session.current_step is UploadStep.MAIN_SPB

    for step in SLV_STEPS[:-1]:
        session.store_upload(step, dataset())
    assert session.current_step is UploadStep.PARTNER_MSK
    assert not session.all_files_uploaded()

    session.store_upload(UploadStep.PARTNER_MSK, dataset())
    assert session.current_step is UploadStep.PARTNER_MSK
    assert session.all_files_uploaded()


def test_single_file_mode_needs_one_upload():
    session = make_session()
    session.slv_mode = False

    session.store_upload(UploadStep.MAIN_SPB, dataset())

    assert session.all_files_uploaded()
    assert session.upload(UploadStep.MAIN_MSK) is None


def test_handoff_is_read_once():
    session = make_session()
    processed = dataset()

    session.handoff("processed", processed)

    assert session.take("processed") is processed
    assert session.take("processed") is None


def test_reset_keeps_foreign_keys():
    store = {"other_app_key": 1}
    session = ReportSession(store)
    session.columns = [ColumnConfig("A", "A")]
    session.persist(dataset())

    session.reset()

    assert store == {"other_app_key": 1}
    assert session.columns == []
    assert session.dataset is None


def test_processing_guard_rejects_reentry():
    session = make_session()

    with session.processing():
        assert session.is_processing
        with pytest.raises(ProcessingInProgressError):
            with session.processing():
                pass

    assert not session.is_processing


def test_processing_flag_is_cleared_after_failure():
    session = make_session()

    with pytest.raises(ValueError):
        with session.processing():
            raise ValueError("boom")

    assert not session.is_processing


def test_latest_dataset_picks_up_new_processing_result():
    session = make_session()
    first, second = dataset(), dataset()
    session.handoff("processed", first)
    assert session.latest_dataset() is first

    session.handoff("processed", second)

    assert session.latest_dataset() is second
    assert session.dataset is second
    assert session.latest_dataset() is second


def test_source_datasets_combine_city_files_with_partners():
    session = make_session()
    partner = Dataset.from_records(["Номер заказа", "Партнер"], [{"Номер заказа": 1, "Партнер": "ParkA"}])
    session.store_upload(UploadStep.MAIN_SPB, Dataset.from_records(["Адрес"], [{"Адрес": "СПб"}]))
    session.store_upload(UploadStep.PARTNER_SPB, partner)
    session.store_upload(UploadStep.MAIN_MSK, dataset())

    main, partners = session.source_datasets()

    assert [row.values["Адрес"] for row in main.rows] == ["СПб", "Москва"]
    assert partners == [partner]


def test_reopen_for_editing_feeds_processed_table_back():
    session = make_session()
    assert not session.reopen_for_editing()

    processed = Dataset.from_records(["Заказчик", "Адрес"], [{"Заказчик": "Сапсан", "Адрес": "Москва"}])
    session.handoff("processed", processed)

    assert session.reopen_for_editing()
    assert session.all_files_uploaded()
    assert session.columns == [ColumnConfig("Заказчик", "Заказчик"), ColumnConfig("Адрес", "Адрес")]
    main, partners = session.source_datasets()
    assert main.rows[0].values == processed.rows[0].values
    assert main.rows[0] is not processed.rows[0]
    assert partners == []

    session.reset()
    assert session.reopened is None
