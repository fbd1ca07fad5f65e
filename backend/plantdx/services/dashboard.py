"""Read-side dashboard rollups over stored predictions."""
from __future__ import annotations

import logging
from typing import Callable

from ..errors import InvalidFilter
from ..models.entities import DashboardFilters, DashboardSummary, PredictionFilter
from ..repositories.base import UnitOfWork

logger = logging.getLogger(__name__)


def validate_filter(criteria: PredictionFilter) -> None:
    if (
        criteria.min_date is not None
        and criteria.max_date is not None
        and criteria.min_date > criteria.max_date
    ):
        raise InvalidFilter(
            f"min_date {criteria.min_date.isoformat()} is after max_date {criteria.max_date.isoformat()}"
        )


class DashboardAggregator:
    def __init__(self, uow_factory: Callable[[], UnitOfWork]) -> None:
        self._uow_factory = uow_factory

    def summary(
        self, criteria: PredictionFilter, include_distribution: bool = True
    ) -> DashboardSummary:
        """Count, distinct plots, mean severity and per-month label counts.

        Months are ``YYYY-MM`` keys in ascending order; months without
        predictions are left out.
        """
        validate_filter(criteria)
        with self._uow_factory() as uow:
            summary = uow.dashboard.summary(criteria, include_distribution)
        logger.debug(
            "Dashboard summary for company %s: %d predictions", criteria.company_id, summary.total
        )
        return summary

    def filters(self, company_id: str) -> DashboardFilters:
        """Labels, plots and users a company's dashboard can be filtered by."""
        with self._uow_factory() as uow:
            return DashboardFilters(
                labels=uow.labels.get_all(),
                plots=uow.plots.get_by_company_id(company_id),
                users=uow.users.get_by_company_id(company_id),
            )
