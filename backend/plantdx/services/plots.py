"""Per-plot diagnosis rollups and plot assignment."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from ..errors import NotFound
from ..models.entities import AssignedPlot, DetailedPlot, PaginatedDetailedPlot
from ..repositories.base import UnitOfWork
from .prediction_service import page_window

logger = logging.getLogger(__name__)

DEFAULT_PLOTS_PAGE_SIZE = 10


def _dedupe(ids: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class PlotStatsAssembler:
    """Builds ``DetailedPlot`` views for a company.

    The listing is the company's plots, newest first, followed by the
    synthetic default plot holding predictions that belong to no plot. The
    default plot only appears when it has predictions and is counted in
    ``total``, so walking every page yields exactly ``total`` items.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork]) -> None:
        self._uow_factory = uow_factory

    def list_detailed(
        self,
        company_id: str,
        labels: Optional[Sequence[str]] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> PaginatedDetailedPlot:
        labels = list(labels or [])
        page, limit, offset = page_window(page, limit, DEFAULT_PLOTS_PAGE_SIZE)
        with self._uow_factory() as uow:
            plot_count = uow.plots.count_by_company_id(company_id)
            default_plot = uow.plots.get_default_detailed(company_id, labels)
            items = uow.plots.get_detailed_page(company_id, labels, offset, limit)

        total = plot_count + (1 if default_plot is not None else 0)
        if default_plot is not None and offset <= plot_count < offset + limit:
            items.append(default_plot)
        return PaginatedDetailedPlot(total=total, page=page, limit=limit, items=items)

    def get_detailed(self, plot_id: str, labels: Optional[Sequence[str]] = None) -> DetailedPlot:
        with self._uow_factory() as uow:
            detailed = uow.plots.get_detailed(plot_id, list(labels or []))
        if detailed is None:
            raise NotFound("Plot", plot_id)
        return detailed

    def get_default_detailed(
        self, company_id: str, labels: Optional[Sequence[str]] = None
    ) -> DetailedPlot:
        with self._uow_factory() as uow:
            detailed = uow.plots.get_default_detailed(company_id, list(labels or []))
        if detailed is None:
            raise NotFound("Default plot of company", company_id)
        return detailed

    def assign(self, plot_id: str, prediction_ids: Sequence[str]) -> AssignedPlot:
        """Move predictions into ``plot_id``; unknown prediction ids are reported, not raised."""
        requested = _dedupe(prediction_ids)
        with self._uow_factory() as uow:
            if uow.plots.get_by_id(plot_id) is None:
                raise NotFound("Plot", plot_id)
            touched = uow.predictions.assign_plot(requested, plot_id)
        return self._result(requested, touched, plot_id)

    def unassign(self, prediction_ids: Sequence[str]) -> AssignedPlot:
        requested = _dedupe(prediction_ids)
        with self._uow_factory() as uow:
            touched = uow.predictions.assign_plot(requested, None)
        return self._result(requested, touched, None)

    @staticmethod
    def _result(requested: List[str], touched: List[str], plot_id: Optional[str]) -> AssignedPlot:
        found = set(touched)
        assigned = [prediction_id for prediction_id in requested if prediction_id in found]
        missing = [prediction_id for prediction_id in requested if prediction_id not in found]
        if missing:
            logger.info("Skipped %d unknown predictions for plot %s", len(missing), plot_id)
        return AssignedPlot(prediction_ids=assigned, missing_ids=missing)
