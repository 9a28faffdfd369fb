from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

import pytest
from sqlmodel import Session, select

from collaboration_graph.config import CollaborationSettings, get_settings
from collaboration_graph.data_access.database import build_engine, init_db
from collaboration_graph.data_access.models.catalog import Credit, Person, Work
from collaboration_graph.data_access.models.collaboration import CollaborationPair

KEY_CREW_ROLES = ["Producer", "Screenplay", "Director of Photography", "Original Music Composer", "Editor"]

# (person_id, role_kind, billing_ordinal)
CreditSpec = Tuple[Optional[int], str, Optional[int]]


def performer(person_id: int, ordinal: int) -> CreditSpec:
    return (person_id, "performer", ordinal)


def director(person_id: int) -> CreditSpec:
    return (person_id, "director", None)


def crew(person_id: int, role: str) -> CreditSpec:
    return (person_id, role, None)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class Catalog:
    """Writes upstream catalog rows the way the external sync would."""

    def __init__(self, engine):
        self.engine = engine

    def add_people(self, *person_ids: int) -> None:
        with Session(self.engine) as session:
            for person_id in person_ids:
                if session.get(Person, person_id) is None:
                    session.add(Person(person_id=person_id, name=f"Person {person_id}"))
            session.commit()

    def add_work(self, work_id: int, release_year: Optional[int], credits: Iterable[CreditSpec],
                 rating: Optional[float] = None, revenue: Optional[int] = None, genres: Iterable[str] = ()) -> None:
        credits = list(credits)
        self.add_people(*{person_id for person_id, _, _ in credits if person_id is not None})
        with Session(self.engine) as session:
            session.add(Work(work_id=work_id, title=f"Work {work_id}", release_year=release_year,
                             rating=rating, revenue=revenue, genres=list(genres)))
            for person_id, role_kind, ordinal in credits:
                session.add(Credit(work_id=work_id, person_id=person_id, role_kind=role_kind,
                                   billing_ordinal=ordinal))
            session.commit()

    def add_edges(self, *edges: Tuple[int, int]) -> None:
        """Insert bare pair rows, for graph tests that bypass credit processing."""
        self.add_people(*{person_id for edge in edges for person_id in edge})
        with Session(self.engine) as session:
            for a, b in edges:
                low, high = min(a, b), max(a, b)
                session.add(CollaborationPair(person_low_id=low, person_high_id=high, collaboration_count=1,
                                              first_year=2020, last_year=2020, types=["performer-performer"],
                                              years_active=[2020]))
            session.commit()


def pair_snapshot(engine):
    with Session(engine) as session:
        pairs = session.exec(
            select(CollaborationPair).order_by(CollaborationPair.person_low_id, CollaborationPair.person_high_id)
        ).all()
        return [pair.model_dump(exclude={"pair_id", "updated_at"}) for pair in pairs]


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> CollaborationSettings:
    return CollaborationSettings(key_crew_roles=KEY_CREW_ROLES, apply_workers=1)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'collaboration_graph.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def catalog(engine) -> Catalog:
    return Catalog(engine)
