from __future__ import annotations

import os
import sys
from pathlib import Path

import pandas as pd
import streamlit as st
from streamlit.delta_generator import DeltaGenerator

ROOT_DIR = Path(__file__).resolve().parent
SRC_DIR = ROOT_DIR / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

from gt_report.codec import XLSX_MIME, ZIP_MIME, CodecError, decode_upload
from gt_report.config import ConfigError, load_settings
from gt_report.export import export_by_partner, export_general, report_period_title
from gt_report.grid import GridEngine
from gt_report.log import setup_logging
from gt_report.models import ColumnConfig, FilterCondition, FilterKind, SortDirection, SortSpec
from gt_report.pipeline import PipelineOptions, transform_dataset
from gt_report.state import SLV_STEPS, ProcessingInProgressError, ReportSession, UploadStep
from gt_report.validation import (
    UploadValidationError,
    default_columns,
    validate_main_upload,
    validate_partner_upload,
)

STEP_TITLES = {
    UploadStep.MAIN_SPB: "Основной файл Санкт-Петербург",
    UploadStep.PARTNER_SPB: "Файл партнёра Санкт-Петербург",
    UploadStep.MAIN_MSK: "Основной файл Москва",
    UploadStep.PARTNER_MSK: "Файл партнёра Москва",
}

FILTER_LABELS = {
    FilterKind.CONTAINS: "Содержит",
    FilterKind.EQUALS: "Равно / выбор значений",
    FilterKind.STARTS_WITH: "Начинается с",
    FilterKind.ENDS_WITH: "Заканчивается на",
    FilterKind.GREATER_THAN: "Больше",
    FilterKind.LESS_THAN: "Меньше",
}

GRID_SORT_KEY = "grid_sort"
GRID_FILTERS_KEY = "grid_filters"
MODULE_KEY = "module"


def get_settings():
    try:
        return load_settings(os.environ.get("GT_REPORT_CONFIG"))
    except ConfigError as exc:
        st.error(f"Ошибка в файле настроек: {exc}")
        st.stop()


def create_download_button(label: str, payload: bytes, filename: str, mime: str) -> None:
    st.download_button(label=label, data=payload, file_name=filename, mime=mime)


def render_upload_module(session: ReportSession, settings) -> None:
    slv_mode = st.toggle("Режим СЛВ", value=session.slv_mode)
    if slv_mode != session.slv_mode:
        session.reset()
        session.slv_mode = slv_mode

    steps = SLV_STEPS if session.slv_mode else [UploadStep.MAIN_SPB]
    for number, step in enumerate(steps, start=1):
        done = session.upload(step) is not None
        marker = "✅" if done else ("➡️" if step == session.current_step else "⬜")
        title = STEP_TITLES[step] if session.slv_mode else "Основной файл"
        st.markdown(f"**{marker} Шаг {number}. {title}**")

    if session.reopened is not None:
        st.info("Редактирование обработанной таблицы. Чтобы загрузить новые файлы, нажмите «Начать заново».")
    if session.all_files_uploaded():
        render_column_mapper(session, settings)
        return

    step = session.current_step
    if step.is_partner:
        st.caption('Файл должен содержать колонки "Номер заказа" и "Партнер".')
    uploaded = st.file_uploader(
        "Загрузите XLSX, XLS или CSV",
        type=["xlsx", "xls", "csv"],
        key=f"upload_{step.value}",
    )
    if uploaded is None:
        st.info("Добавьте файл, чтобы перейти к следующему шагу.")
        return

    try:
        dataset = decode_upload(uploaded, settings)
        if session.slv_mode and step.is_partner:
            validate_partner_upload(dataset)
        elif session.slv_mode:
            validate_main_upload(dataset, step.city)
    except (CodecError, UploadValidationError) as exc:
        st.error(f"{uploaded.name}: {exc}")
        return

    session.store_upload(step, dataset)
    if not step.is_partner:
        session.columns = default_columns(dataset.headers, session.slv_mode)
    st.rerun()


def render_column_mapper(session: ReportSession, settings) -> None:
    st.subheader("Колонки отчёта")
    st.caption("Переименуйте, скройте или переставьте колонки (порядок задаёт колонка «Позиция»).")

    frame = pd.DataFrame(
        [
            {"Позиция": index + 1, "Источник": column.source_id, "Название": column.display_name, "Показывать": column.visible}
            for index, column in enumerate(session.columns)
        ]
    )
    edited = st.data_editor(
        frame,
        hide_index=True,
        use_container_width=True,
        disabled=["Источник"],
        key="column_editor",
    )
    edited = edited.sort_values("Позиция", kind="stable")
    columns = [
        ColumnConfig(str(record["Источник"]), str(record["Название"]).strip(), bool(record["Показывать"]))
        for record in edited.to_dict(orient="records")
    ]

    if st.button("Обработать", type="primary", disabled=session.is_processing):
        data, partners = session.source_datasets()
        if data is None:
            st.warning("Нет загруженного основного файла.")
            return

        options = PipelineOptions(slv_mode=session.slv_mode)
        try:
            with session.processing():
                with st.spinner("Обработка..."):
                    processed = transform_dataset(data, columns, partners, options, settings)
        except ProcessingInProgressError as exc:
            st.warning(str(exc))
            return
        except Exception as exc:  # pragma: no cover - пользователь видит ошибку
            st.error(f"Произошла ошибка при обработке данных: {exc}")
            return

        session.columns = columns
        session.handoff("processed", processed)
        st.session_state.pop(GRID_SORT_KEY, None)
        st.session_state.pop(GRID_FILTERS_KEY, None)
        st.success("Данные обработаны, перейдите к предпросмотру.")


def _grid_engine(session: ReportSession) -> GridEngine | None:
    dataset = session.latest_dataset()
    if dataset is None:
        return None

    engine = GridEngine(dataset, on_change=session.persist)
    sort = st.session_state.get(GRID_SORT_KEY)
    if sort is not None:
        engine.sort = SortSpec(sort[0], SortDirection(sort[1]))
    for column, (kind, value) in st.session_state.get(GRID_FILTERS_KEY, {}).items():
        engine.apply_filter(column, FilterCondition(FilterKind(kind), value))
    return engine


def _remember_grid(engine: GridEngine) -> None:
    if engine.sort is not None:
        st.session_state[GRID_SORT_KEY] = (engine.sort.column, engine.sort.direction.value)
    st.session_state[GRID_FILTERS_KEY] = {
        column: (condition.kind.value, condition.value) for column, condition in engine.filters.items()
    }


def render_grid_controls(engine: GridEngine, sidebar: DeltaGenerator) -> None:
    headers = engine.dataset.headers

    sidebar.subheader("Сортировка")
    sort_column = sidebar.selectbox("Колонка", headers, key="sort_column")
    if sidebar.button("Сортировать / сменить направление"):
        engine.apply_sort(sort_column)
    if engine.sort is not None:
        arrow = "↑" if engine.sort.direction is SortDirection.ASCENDING else "↓"
        sidebar.caption(f"{engine.sort.column} {arrow}")

    sidebar.subheader("Фильтр")
    filter_column = sidebar.selectbox("Колонка фильтра", headers, key="filter_column")
    kind = sidebar.selectbox(
        "Условие", list(FilterKind), format_func=lambda item: FILTER_LABELS[item], key="filter_kind"
    )
    if kind is FilterKind.EQUALS:
        selected = sidebar.multiselect("Значения", engine.unique_values(filter_column), key="filter_values")
        value = "|".join(selected)
    else:
        value = sidebar.text_input("Значение", key="filter_value")
    apply_col, clear_col = sidebar.columns(2)
    if apply_col.button("Применить"):
        engine.apply_filter(filter_column, FilterCondition(kind, value))
    if clear_col.button("Сбросить"):
        engine.clear_filter()
    for column, condition in engine.filters.items():
        sidebar.caption(f"{column}: {FILTER_LABELS[condition.kind]} «{condition.value}»")

    _remember_grid(engine)


def _highlight(row: pd.Series) -> list[str]:
    if row.get("is_value_error"):
        return ["background-color: #ffe6e6"] * len(row)
    if row.get("is_sapsan"):
        return ["background-color: #e6ffe6"] * len(row)
    return [""] * len(row)


def _reopen_for_editing(session: ReportSession) -> None:
    if session.reopen_for_editing():
        st.session_state[MODULE_KEY] = "Загрузка"


def render_preview_module(session: ReportSession, sidebar: DeltaGenerator) -> None:
    engine = _grid_engine(session)
    if engine is None:
        st.info("Сначала загрузите и обработайте файлы.")
        return

    render_grid_controls(engine, sidebar)
    st.caption(report_period_title(engine.dataset))

    view = engine.view()
    headers = engine.dataset.headers
    frame = engine.dataset.to_frame(include_flags=True, rows=view, as_text=True)
    st.markdown(f"Строк: **{len(view)}** из {len(engine.dataset.rows)}")
    st.button("Вернуться к редактированию", on_click=_reopen_for_editing, args=(session,))

    if st.toggle("Режим редактирования", key="edit_mode"):
        edited = st.data_editor(
            frame[headers],
            use_container_width=True,
            hide_index=True,
            num_rows="fixed",
            key="grid_editor",
        )
        if st.button("Сохранить изменения"):
            changes = 0
            for index, row in enumerate(view):
                for header in headers:
                    new_value = edited.iat[index, headers.index(header)]
                    new_text = "" if new_value is None else str(new_value)
                    if new_text != frame.iat[index, headers.index(header)]:
                        engine.edit_cell(row, header, new_value)
                        changes += 1
            st.success(f"Изменено ячеек: {changes}")
    else:
        st.dataframe(frame.style.apply(_highlight, axis=1), use_container_width=True, hide_index=True)


def render_export_module(session: ReportSession, settings) -> None:
    dataset = session.latest_dataset()
    if dataset is None:
        st.info("Нет обработанных данных для экспорта.")
        return

    st.subheader(report_period_title(dataset))
    try:
        with session.processing():
            with st.spinner("Формирование архива с отчётами..."):
                by_partner = export_by_partner(dataset, settings)
                general = export_general(dataset)
    except ProcessingInProgressError as exc:
        st.warning(str(exc))
        return
    except Exception as exc:  # pragma: no cover - пользователь видит ошибку
        st.error(f"Произошла ошибка при экспорте данных: {exc}")
        return

    st.markdown("**Файлы в архиве:**")
    st.markdown("\n".join(f"* {name}" for name in by_partner.members) or "_Нет строк для экспорта._")
    create_download_button("Экспортировать в Excel по паркам", by_partner.payload, by_partner.file_name, ZIP_MIME)
    create_download_button("Экспорт в Excel (общий)", general.payload, general.file_name, XLSX_MIME)


st.set_page_config(page_title="GT-Report Parser", layout="wide")

settings = get_settings()
setup_logging(settings.log_level)

session = ReportSession(st.session_state)
sidebar = st.sidebar
module = sidebar.radio("Шаг", ["Загрузка", "Предпросмотр", "Экспорт"], key=MODULE_KEY)

if module == "Загрузка":
    sidebar.header("Правила загрузки")
    sidebar.markdown(
        """
        * Принимаются файлы XLSX/XLS и CSV (разделитель `;`, Windows-1251 или UTF-8).
        * Основной файл должен содержать колонку «Адрес» с городом загрузки.
        * Файл партнёра должен содержать колонки «Номер заказа» и «Партнер».
        """
    )
    if sidebar.button("Начать заново"):
        session.reset()
        st.rerun()
    st.title("GT-Report — Загрузка")
    render_upload_module(session, settings)
elif module == "Предпросмотр":
    sidebar.header("Таблица")
    st.title("GT-Report — Предпросмотр")
    render_preview_module(session, sidebar)
else:
    st.title("GT-Report — Экспорт")
    render_export_module(session, settings)
