from datetime import datetime

import pytest

from plantdx.errors import InvalidFilter
from plantdx.models.entities import PredictionFilter
from plantdx.services import DashboardAggregator


@pytest.fixture
def dashboard(uow_factory):
    return DashboardAggregator(uow_factory)


@pytest.fixture
def history(factory, farm):
    """Five Acme predictions over two months plus one from another company."""
    alice, bob = farm["alice"], farm["bob"]
    factory.prediction(alice, "low", 0.1, farm["north"], datetime(2024, 3, 5))
    factory.prediction(alice, "moderate", 0.4, farm["north"], datetime(2024, 3, 20))
    factory.prediction(bob, "low", 0.2, farm["south"], datetime(2024, 3, 28))
    factory.prediction(bob, "severe", 0.9, None, datetime(2024, 5, 2))
    factory.prediction(alice, "healthy", 0.0, None, datetime(2024, 5, 9))
    factory.prediction(farm["carol"], "severe", 0.8, None, datetime(2024, 4, 1))
    return farm


def test_summary_for_company(dashboard, history):
    summary = dashboard.summary(PredictionFilter(company_id=history["company"]))

    assert summary.total == 5
    assert summary.plots == 2
    assert summary.mean_severity == pytest.approx((0.1 + 0.4 + 0.2 + 0.9 + 0.0) / 5)


def test_distribution_is_monthly_and_ordered(dashboard, history):
    summary = dashboard.summary(PredictionFilter(company_id=history["company"]))

    assert [bucket.month for bucket in summary.distribution] == ["2024-03", "2024-05"]
    march, may = summary.distribution
    assert [(item.label.name, item.count) for item in march.labels] == [("low", 2), ("moderate", 1)]
    assert [(item.label.name, item.count) for item in may.labels] == [("healthy", 1), ("severe", 1)]
    assert sum(item.count for bucket in summary.distribution for item in bucket.labels) == summary.total


def test_distribution_can_be_skipped(dashboard, history):
    summary = dashboard.summary(PredictionFilter(company_id=history["company"]), include_distribution=False)
    assert summary.distribution is None
    assert summary.total == 5


def test_no_matches_yields_zero_mean(dashboard, history):
    summary = dashboard.summary(
        PredictionFilter(company_id=history["company"], min_date=datetime(2025, 1, 1))
    )
    assert summary.total == 0
    assert summary.plots == 0
    assert summary.mean_severity == 0.0
    assert summary.distribution == []


def test_filters_are_combined(dashboard, history):
    summary = dashboard.summary(
        PredictionFilter(
            company_id=history["company"],
            users=[history["alice"]],
            labels=["low", "moderate"],
            min_date=datetime(2024, 3, 1),
            max_date=datetime(2024, 3, 31),
        )
    )
    assert summary.total == 2
    assert summary.plots == 1
    assert summary.mean_severity == pytest.approx(0.25)


def test_plot_filter_accepts_unassigned(dashboard, history):
    only_unassigned = dashboard.summary(PredictionFilter(company_id=history["company"], plots=[None]))
    assert only_unassigned.total == 2
    assert only_unassigned.plots == 0

    mixed = dashboard.summary(
        PredictionFilter(company_id=history["company"], plots=[history["south"], None])
    )
    assert mixed.total == 3


def test_empty_lists_do_not_restrict(dashboard, history):
    summary = dashboard.summary(
        PredictionFilter(company_id=history["company"], users=[], plots=[], labels=[])
    )
    assert summary.total == 5


def test_unrestricted_summary_spans_companies(dashboard, history):
    assert dashboard.summary(PredictionFilter()).total == 6


def test_inverted_date_range_is_rejected(dashboard, history):
    with pytest.raises(InvalidFilter):
        dashboard.summary(
            PredictionFilter(min_date=datetime(2024, 5, 1), max_date=datetime(2024, 4, 1))
        )


def test_filter_vocabulary(dashboard, history):
    filters = dashboard.filters(history["company"])

    assert [label.name for label in filters.labels] == ["healthy", "low", "moderate", "severe"]
    assert [plot.name for plot in filters.plots] == ["South", "North"]
    assert sorted(user.name for user in filters.users) == ["alice", "bob"]
