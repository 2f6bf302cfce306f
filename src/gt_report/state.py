from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, MutableMapping, Optional, Tuple

from .heuristics import City
from .models import ColumnConfig, Dataset
from .validation import combine_datasets, default_columns

__all__ = [
    "ProcessingInProgressError",
    "UploadStep",
    "SLV_STEPS",
    "ReportSession",
]

logger = logging.getLogger(__name__)

STATE_PREFIX = "gt_report."


class ProcessingInProgressError(RuntimeError):
    pass


class UploadStep(str, Enum):
    MAIN_SPB = "main-spb"
    PARTNER_SPB = "partner-spb"
    MAIN_MSK = "main-msk"
    PARTNER_MSK = "partner-msk"

    @property
    def city(self) -> City:
        return City.SPB if self in (UploadStep.MAIN_SPB, UploadStep.PARTNER_SPB) else City.MSK

    @property
    def is_partner(self) -> bool:
        return self in (UploadStep.PARTNER_SPB, UploadStep.PARTNER_MSK)


SLV_STEPS: List[UploadStep] = [
    UploadStep.MAIN_SPB,
    UploadStep.PARTNER_SPB,
    UploadStep.MAIN_MSK,
    UploadStep.PARTNER_MSK,
]


class ReportSession:
    """Wizard state kept in a mapping (``st.session_state`` or a plain dict).

    Values handed from one stage to the next go through :meth:`handoff` and
    are read once with :meth:`take`.
    """

    def __init__(self, store: MutableMapping[str, Any]) -> None:
        self._store = store

    def _get(self, key: str, default: Any = None) -> Any:
        return self._store.get(STATE_PREFIX + key, default)

    def _set(self, key: str, value: Any) -> None:
        self._store[STATE_PREFIX + key] = value

    # wizard

    @property
    def slv_mode(self) -> bool:
        return bool(self._get("slv_mode", True))

    @slv_mode.setter
    def slv_mode(self, value: bool) -> None:
        self._set("slv_mode", bool(value))

    @property
    def current_step(self) -> UploadStep:
        return UploadStep(self._get("current_step", UploadStep.MAIN_SPB.value))

    @current_step.setter
    def current_step(self, step: UploadStep) -> None:
        self._set("current_step", step.value)

    @property
    def uploads(self) -> Dict[str, Dataset]:
        uploads = self._get("uploads")
        if uploads is None:
            uploads = {}
            self._set("uploads", uploads)
        return uploads

    def store_upload(self, step: UploadStep, dataset: Dataset) -> None:
        self.uploads[step.value] = dataset
        steps = SLV_STEPS if self.slv_mode else [UploadStep.MAIN_SPB]
        position = steps.index(step) if step in steps else len(steps) - 1
        if position + 1 < len(steps):
            self.current_step = steps[position + 1]

    def upload(self, step: UploadStep) -> Optional[Dataset]:
        return self.uploads.get(step.value)

    def all_files_uploaded(self) -> bool:
        if self.reopened is not None:
            return True
        steps = SLV_STEPS if self.slv_mode else [UploadStep.MAIN_SPB]
        return all(step.value in self.uploads for step in steps)

    @property
    def columns(self) -> List[ColumnConfig]:
        return list(self._get("columns", []))

    @columns.setter
    def columns(self, value: List[ColumnConfig]) -> None:
        self._set("columns", list(value))

    @property
    def dataset(self) -> Optional[Dataset]:
        return self._get("dataset")

    def persist(self, dataset: Dataset) -> None:
        self._set("dataset", dataset)

    def latest_dataset(self) -> Optional[Dataset]:
        """Persist a dataset handed off by processing, then return the current one."""
        processed = self.take("processed")
        if processed is not None:
            self.persist(processed)
        return self.dataset

    @property
    def reopened(self) -> Optional[Dataset]:
        return self._get("reopened")

    def reopen_for_editing(self) -> bool:
        """Make the processed table the source of the column editor again."""
        dataset = self.latest_dataset()
        if dataset is None:
            return False
        self._set("reopened", dataset.copy())
        self.columns = default_columns(dataset.headers, slv_mode=False)
        return True

    def source_datasets(self) -> Tuple[Optional[Dataset], List[Dataset]]:
        """Main dataset and partner files to feed into the pipeline."""
        reopened = self.reopened
        if reopened is not None:
            return reopened, []
        main = self.upload(UploadStep.MAIN_SPB)
        if not self.slv_mode or main is None:
            return main, []
        partners = [
            dataset
            for dataset in (self.upload(UploadStep.PARTNER_SPB), self.upload(UploadStep.PARTNER_MSK))
            if dataset is not None
        ]
        return combine_datasets(main, self.upload(UploadStep.MAIN_MSK)), partners

    def reset(self) -> None:
        for key in [key for key in self._store if str(key).startswith(STATE_PREFIX)]:
            del self._store[key]

    # stage handoff

    def handoff(self, key: str, value: Any) -> None:
        self._set(f"handoff.{key}", value)

    def take(self, key: str) -> Any:
        return self._store.pop(STATE_PREFIX + f"handoff.{key}", None)

    # processing guard

    @property
    def is_processing(self) -> bool:
        return bool(self._get("processing", False))

    @contextmanager
    def processing(self) -> Iterator[None]:
        if self.is_processing:
            raise ProcessingInProgressError("Обработка уже выполняется")
        self._set("processing", True)
        try:
            yield
        except Exception:
            logger.exception("Processing failed")
            raise
        finally:
            self._set("processing", False)
