import pandas as pd
import pytest
from sqlmodel import Session, select

from collaboration_graph.data_access.models.collaboration import TrendSnapshot
from collaboration_graph.domain.errors import AlreadyRunningError, InvalidInputError
from collaboration_graph.services.job_guard import JobGuard, TREND_REFRESH_JOB
from collaboration_graph.services.population_service import PopulationService
from collaboration_graph.services.trend_engine import TrendEngine

from conftest import performer


@pytest.fixture
def guard(engine, settings, clock) -> JobGuard:
    return JobGuard(engine, stale_after=settings.job_stale_after, clock=clock)


@pytest.fixture
def trends(engine, settings, guard, clock) -> TrendEngine:
    return TrendEngine(engine, settings, guard, clock=clock)


@pytest.fixture
def populated(engine, settings, clock, catalog):
    # The clock sits in 2026, so the recent window starts in 2024
    catalog.add_work(1, 2026, [performer(1, 1), performer(2, 2)])
    catalog.add_work(2, 2021, [performer(3, 1), performer(4, 2)])
    catalog.add_work(3, 2025, [performer(5, 1), performer(6, 2)])
    for offset, year in enumerate(range(2015, 2020)):
        catalog.add_work(10 + offset, year, [performer(5, 1), performer(6, 2)])
    catalog.add_work(20, 2025, [performer(7, 1), performer(8, 2)])
    PopulationService(engine, settings, clock=clock).rebuild_all()


def test_refresh_ranks_recent_pairs(trends, populated):
    assert trends.refresh() == 3

    top = trends.top_trending(10)

    assert [(p.person_low_id, p.person_high_id) for p in top] == [(1, 2), (7, 8), (5, 6)]
    assert top[0].trend_score == pytest.approx(1.0)
    assert top[1].trend_score == pytest.approx(0.5)
    assert top[2].trend_score == pytest.approx(0.5 / 1.5, abs=1e-6)
    assert top[2].baseline_count == 5
    assert top[2].recent_count == 1
    assert top[2].last_year == 2025


def test_pair_without_recent_work_is_not_trending(trends, populated):
    trends.refresh()

    pairs = {(p.person_low_id, p.person_high_id) for p in trends.top_trending(100)}

    assert (3, 4) not in pairs


def test_limit_truncates_and_must_be_positive(trends, populated):
    trends.refresh()

    assert len(trends.top_trending(1)) == 1
    with pytest.raises(InvalidInputError):
        trends.top_trending(0)


def test_refresh_replaces_previous_snapshot(engine, trends, populated):
    trends.refresh()
    trends.refresh()

    with Session(engine) as session:
        rows = session.exec(select(TrendSnapshot)).all()

    assert len(rows) == 3


def test_overlapping_refresh_is_rejected(trends, guard, populated):
    run_id = guard.acquire(TREND_REFRESH_JOB)

    with pytest.raises(AlreadyRunningError):
        trends.refresh()

    guard.release(TREND_REFRESH_JOB, run_id)
    assert trends.refresh() == 3


def test_baseline_history_lowers_score(trends):
    details = pd.DataFrame(
        [
            (1, 2, 100, 2026),
            (3, 4, 101, 2026),
            (3, 4, 102, 2018),
            (3, 4, 103, 2019),
        ],
        columns=["person_low_id", "person_high_id", "work_id", "release_year"],
    )

    scored = trends.score(details, 2026).set_index(["person_low_id", "person_high_id"])

    assert scored.loc[(1, 2), "trend_score"] > scored.loc[(3, 4), "trend_score"]
    assert scored.loc[(3, 4), "baseline_count"] == 2


def test_score_of_empty_frame_is_empty(trends):
    details = pd.DataFrame(columns=["person_low_id", "person_high_id", "work_id", "release_year"])

    assert trends.score(details, 2026).empty


def test_person_activity_by_year(engine, settings, clock, catalog, trends):
    catalog.add_work(10, 2024, [performer(1, 1), performer(2, 2)])
    catalog.add_work(11, 2025, [performer(1, 1), performer(2, 2), performer(3, 3)], rating=8.0, revenue=100)
    PopulationService(engine, settings, clock=clock).rebuild_all()

    activity = trends.person_activity(1)

    assert [a.year for a in activity] == [2025, 2024]
    latest, earliest = activity
    assert latest.unique_collaborators == 2
    assert latest.new_collaborators == 1
    assert latest.total_works == 1
    assert latest.avg_rating == 8.0
    assert latest.total_revenue == 100
    assert earliest.unique_collaborators == 1
    assert earliest.new_collaborators == 1
    assert earliest.avg_rating is None
    assert earliest.total_revenue is None


def test_person_without_collaborations_has_no_activity(trends):
    assert trends.person_activity(42) == []
