from datetime import datetime

import pytest

from plantdx.errors import NotFound
from plantdx.services import PlotStatsAssembler
from plantdx.services.prediction_service import MAX_PAGE_SIZE


@pytest.fixture
def plots(uow_factory):
    return PlotStatsAssembler(uow_factory)


@pytest.fixture
def field_data(factory, farm):
    alice, bob = farm["alice"], farm["bob"]
    farm["p1"] = factory.prediction(alice, "low", 0.1, farm["north"], datetime(2024, 3, 1))
    farm["p2"] = factory.prediction(alice, "healthy", 0.0, farm["north"], datetime(2024, 3, 9))
    farm["p3"] = factory.prediction(bob, "severe", 0.8, farm["south"], datetime(2024, 4, 2))
    farm["p4"] = factory.prediction(bob, "moderate", 0.5, None, datetime(2024, 2, 14))
    farm["p5"] = factory.prediction(alice, "healthy", 0.0, None, datetime(2024, 6, 1))
    factory.prediction(farm["carol"], "low", 0.2, None, datetime(2024, 1, 1))
    return farm


def walk(plots, company_id, limit, labels=None):
    first = plots.list_detailed(company_id, labels, page=1, limit=limit)
    items = list(first.items)
    pages = -(-first.total // limit)
    for page in range(2, pages + 1):
        items.extend(plots.list_detailed(company_id, labels, page=page, limit=limit).items)
    return first.total, items


def test_listing_orders_plots_then_default(plots, field_data):
    result = plots.list_detailed(field_data["company"], page=1, limit=10)

    assert result.total == 3
    assert [item.name for item in result.items] == ["South", "North", "Default Plot"]
    south, north, default = result.items
    assert (north.total_diagnosis, north.last_diagnosis) == (2, datetime(2024, 3, 9))
    assert south.total_diagnosis == 1
    assert default.id is None
    assert default.total_diagnosis == 2
    assert default.created_at == datetime(2024, 2, 14)
    assert default.last_diagnosis == datetime(2024, 6, 1)


@pytest.mark.parametrize("limit", [1, 2, 3, 5])
def test_paging_yields_exactly_total_items(plots, field_data, limit):
    total, items = walk(plots, field_data["company"], limit)
    assert len(items) == total == 3
    assert [item.name for item in items] == ["South", "North", "Default Plot"]


def test_matching_diagnosis_uses_label_filter(plots, field_data):
    result = plots.list_detailed(field_data["company"], labels=["low", "severe"])
    counts = {item.name: item.matching_diagnosis for item in result.items}
    assert counts == {"South": 1, "North": 1, "Default Plot": 0}


def test_matching_diagnosis_without_labels_counts_healthy(plots, field_data):
    result = plots.list_detailed(field_data["company"])
    counts = {item.name: item.matching_diagnosis for item in result.items}
    assert counts == {"South": 0, "North": 1, "Default Plot": 1}


def test_empty_plot_and_no_default(plots, factory):
    company = factory.company("Fresh Farm")
    factory.plot(company, "Empty")

    result = plots.list_detailed(company)

    assert result.total == 1
    (empty,) = result.items
    assert (empty.total_diagnosis, empty.matching_diagnosis, empty.last_diagnosis) == (0, 0, None)


def test_page_and_limit_are_clamped(plots, field_data):
    result = plots.list_detailed(field_data["company"], page=0, limit=1000)
    assert (result.page, result.limit) == (1, MAX_PAGE_SIZE)

    tiny = plots.list_detailed(field_data["company"], page=-3, limit=0)
    assert (tiny.page, tiny.limit, len(tiny.items)) == (1, 1, 1)


def test_page_past_the_end_is_empty(plots, field_data):
    result = plots.list_detailed(field_data["company"], page=9, limit=2)
    assert result.total == 3
    assert result.items == []


def test_single_and_default_rollups(plots, field_data, factory):
    north = plots.get_detailed(field_data["north"], ["low"])
    assert (north.total_diagnosis, north.matching_diagnosis) == (2, 1)

    default = plots.get_default_detailed(field_data["company"], ["moderate"])
    assert (default.total_diagnosis, default.matching_diagnosis) == (2, 1)

    with pytest.raises(NotFound):
        plots.get_detailed("no-such-plot")
    with pytest.raises(NotFound):
        plots.get_default_detailed(factory.company("No Predictions Yet"))


def test_assign_is_idempotent_and_reports_missing(plots, field_data):
    ids = [field_data["p4"], field_data["p5"], "ghost"]

    first = plots.assign(field_data["north"], ids)
    second = plots.assign(field_data["north"], ids)

    assert first == second
    assert first.prediction_ids == [field_data["p4"], field_data["p5"]]
    assert first.missing_ids == ["ghost"]
    assert plots.get_detailed(field_data["north"]).total_diagnosis == 4
    assert plots.list_detailed(field_data["company"]).total == 2


def test_reassignment_is_last_write_wins(plots, field_data):
    plots.assign(field_data["north"], [field_data["p4"]])
    plots.assign(field_data["south"], [field_data["p4"]])

    assert plots.get_detailed(field_data["north"]).total_diagnosis == 2
    assert plots.get_detailed(field_data["south"]).total_diagnosis == 2


def test_assign_to_unknown_plot(plots, field_data):
    with pytest.raises(NotFound):
        plots.assign("no-such-plot", [field_data["p1"]])


def test_unassign_moves_predictions_to_default(plots, field_data):
    result = plots.unassign([field_data["p1"], field_data["p1"], "ghost"])

    assert result.prediction_ids == [field_data["p1"]]
    assert result.missing_ids == ["ghost"]
    assert plots.get_detailed(field_data["north"]).total_diagnosis == 1
    assert plots.get_default_detailed(field_data["company"]).total_diagnosis == 3
