import random
from itertools import permutations

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from collaboration_graph.data_access.models.collaboration import CollaborationDetail, CollaborationPair
from collaboration_graph.domain.errors import AlreadyRunningError, InvalidInputError, WorkNotFoundError
from collaboration_graph.domain.models.collaboration import CandidatePair, CollaborationType
from collaboration_graph.domain.models.credit import RoleCategory, WorkRecord
from collaboration_graph.services.aggregate_store import summarize_details
from collaboration_graph.services.job_guard import REBUILD_JOB
from collaboration_graph.services.population_service import PopulationService

from conftest import crew, director, pair_snapshot, performer


@pytest.fixture
def population(engine, settings, clock) -> PopulationService:
    return PopulationService(engine, settings, clock=clock)


@pytest.fixture
def corpus(catalog):
    catalog.add_work(1, 2019, [director(10), performer(1, 1), performer(2, 2), crew(20, "Editor")],
                     rating=7.5, revenue=1000, genres=["Drama"])
    catalog.add_work(2, 2021, [director(10), performer(2, 1), performer(3, 2)],
                     rating=None, revenue=2500, genres=["Comedy", "Drama"])
    catalog.add_work(3, 2021, [director(11), director(10), performer(1, 1), performer(3, 3)],
                     rating=6.0, revenue=None, genres=["Thriller"])
    catalog.add_work(4, 2024, [performer(1, 1), performer(2, 2), crew(20, "producer"), director(11)],
                     rating=8.1, revenue=400, genres=["Drama", "Sci-Fi"])
    return [1, 2, 3, 4]


def detail_count(engine) -> int:
    with Session(engine) as session:
        return len(session.exec(select(CollaborationDetail)).all())


def test_apply_incremental_twice_is_a_no_op(engine, population, corpus):
    first = population.apply_incremental(1)
    before = pair_snapshot(engine)
    details_before = detail_count(engine)

    second = population.apply_incremental(1)

    assert first.details_written > 0
    assert second.details_written == 0
    assert second.pairs_recomputed == 0
    assert pair_snapshot(engine) == before
    assert detail_count(engine) == details_before


@pytest.mark.parametrize("order", list(permutations([1, 2, 3, 4]))[::5])
def test_incremental_order_converges_with_rebuild(engine, population, corpus, order):
    for work_id in order:
        population.apply_incremental(work_id)
    incremental = pair_snapshot(engine)

    result = population.rebuild_all()

    assert result.works_processed == 4
    assert result.works_failed == 0
    assert pair_snapshot(engine) == incremental
    assert result.pairs == len(incremental)


def test_every_row_is_canonically_ordered(engine, population, corpus):
    population.rebuild_all()

    with Session(engine) as session:
        pairs = session.exec(select(CollaborationPair)).all()
        details = session.exec(select(CollaborationDetail)).all()

    assert pairs
    assert all(row.person_low_id < row.person_high_id for row in pairs)
    assert all(row.person_low_id < row.person_high_id for row in details)


def test_aggregates_skip_missing_rating_and_revenue(engine, population, corpus):
    population.rebuild_all()

    # Director 10 and performer 3 share work 2 (no rating) and work 3 (no revenue)
    with Session(engine) as session:
        pair = session.exec(
            select(CollaborationPair)
            .where(CollaborationPair.person_low_id == 3)
            .where(CollaborationPair.person_high_id == 10)
        ).one()

    assert pair.collaboration_count == 2
    assert pair.avg_rating == 6.0
    assert pair.total_revenue == 2500
    assert pair.first_year == 2021
    assert pair.last_year == 2021
    assert pair.types == ["performer-director"]
    assert pair.years_active == [2021]
    assert pair.peak_year == 2021


def test_key_crew_pairs_are_aggregated(engine, population, corpus):
    population.rebuild_all()

    with Session(engine) as session:
        pair = session.exec(
            select(CollaborationPair)
            .where(CollaborationPair.person_low_id == 10)
            .where(CollaborationPair.person_high_id == 20)
        ).one()

    assert pair.types == ["director-crew"]
    assert pair.collaboration_count == 1


def test_unknown_work_is_rejected(population, corpus):
    with pytest.raises(WorkNotFoundError):
        population.apply_incremental(999)


def test_work_without_release_year_is_skipped_during_rebuild(catalog, population):
    catalog.add_work(1, 2020, [performer(1, 1), performer(2, 2)])
    catalog.add_work(2, None, [performer(1, 1), performer(3, 2)])

    with pytest.raises(InvalidInputError):
        population.apply_incremental(2)

    result = population.rebuild_all()
    assert result.works_processed == 1
    assert result.works_failed == 1
    assert result.pairs == 1


def test_rebuild_rejected_while_another_is_running(population, corpus):
    run_id = population.job_guard.acquire(REBUILD_JOB)

    with pytest.raises(AlreadyRunningError):
        population.rebuild_all()

    population.job_guard.release(REBUILD_JOB, run_id)
    assert population.rebuild_all().works_processed == 4


def test_non_canonical_candidates_are_skipped(engine, population):
    work = WorkRecord(work_id=1, release_year=2020)
    candidates = [
        CandidatePair(5, 2, CollaborationType.PERFORMER_PERFORMER, RoleCategory.PERFORMER, RoleCategory.PERFORMER),
        CandidatePair(4, 4, CollaborationType.PERFORMER_PERFORMER, RoleCategory.PERFORMER, RoleCategory.PERFORMER),
        CandidatePair(1, 2, CollaborationType.PERFORMER_PERFORMER, RoleCategory.PERFORMER, RoleCategory.PERFORMER),
    ]

    result = population.store.apply(work, candidates)

    assert result.candidate_pairs == 1
    assert [(row["person_low_id"], row["person_high_id"]) for row in pair_snapshot(engine)] == [(1, 2)]


def test_summary_ignores_missing_values_and_finds_peak_year():
    details = [
        CollaborationDetail(person_low_id=1, person_high_id=2, work_id=3, collaboration_type="performer-director",
                            low_role="performer", high_role="director", release_year=2010, rating=None,
                            revenue=50, genres=["Drama"]),
        CollaborationDetail(person_low_id=1, person_high_id=2, work_id=1, collaboration_type="performer-performer",
                            low_role="performer", high_role="performer", release_year=2012, rating=7.0,
                            revenue=None, genres=["Drama", "War"]),
        CollaborationDetail(person_low_id=1, person_high_id=2, work_id=2, collaboration_type="performer-performer",
                            low_role="performer", high_role="performer", release_year=2012, rating=8.0,
                            revenue=25, genres=["Comedy"]),
    ]

    summary = summarize_details(details)

    assert summary["collaboration_count"] == 3
    assert summary["first_year"] == 2010
    assert summary["last_year"] == 2012
    assert summary["avg_rating"] == 7.5
    assert summary["total_revenue"] == 75
    assert summary["types"] == ["performer-director", "performer-performer"]
    assert summary["years_active"] == [2010, 2012]
    assert summary["peak_year"] == 2012
    assert summary["genre_diversity_score"] == 0.3
    assert summary["role_diversity_score"] == 0.4


@pytest.fixture
def overlapping_corpus(catalog):
    # Many works drawn from a small cast, so most pairs are shared by several works
    for work_id in range(1, 41):
        rng = random.Random(work_id)
        cast = rng.sample(range(1, 16), 6)
        credits = [director(100 + work_id % 3)] + [performer(pid, i + 1) for i, pid in enumerate(cast)]
        catalog.add_work(work_id, 2000 + work_id % 12, credits, rating=5.0 + (work_id % 5),
                         revenue=work_id * 10, genres=["Drama"] if work_id % 2 else ["Comedy"])


def test_parallel_rebuild_matches_serial_rebuild(engine, settings, clock, overlapping_corpus):
    parallel = PopulationService(engine, settings.model_copy(update={"apply_workers": 8}), clock=clock)
    serial = PopulationService(engine, settings, clock=clock)

    parallel_result = parallel.rebuild_all()
    parallel_snapshot = pair_snapshot(engine)
    serial_result = serial.rebuild_all()

    assert parallel_result.works_failed == 0
    assert parallel_result.works_processed == 40
    assert (parallel_result.pairs, parallel_result.details) == (serial_result.pairs, serial_result.details)
    assert parallel_snapshot == pair_snapshot(engine)


def test_transient_conflict_is_retried(engine, population, corpus, monkeypatch):
    ensure_pair = population.store._ensure_pair
    calls = []

    def conflicting_once(session, candidate):
        calls.append(candidate)
        if len(calls) == 1:
            raise OperationalError("INSERT INTO collaboration_pairs", {}, Exception("database is locked"))
        return ensure_pair(session, candidate)

    monkeypatch.setattr(population.store, "_ensure_pair", conflicting_once)

    result = population.apply_incremental(1)

    assert result.details_written == result.candidate_pairs
    assert len(calls) == result.candidate_pairs + 1
    assert len(pair_snapshot(engine)) == result.candidate_pairs
