# data_access/models/collaboration.py
from sqlmodel import SQLModel, Field, UniqueConstraint
from sqlalchemy import Column, JSON, CheckConstraint, DateTime, Index
from typing import List, Optional
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timestamps are stored timezone-aware, in UTC."""
    return datetime.now(timezone.utc)

# Pairs are keyed by a surrogate integer id plus a unique constraint on the
# canonical (person_low_id, person_high_id) key. The CHECK constraint rejects any
# row written with the ids the wrong way round.

class CollaborationPair(SQLModel, table=True):
    __tablename__ = "collaboration_pairs"
    __table_args__ = (
        UniqueConstraint("person_low_id", "person_high_id", name="uq_collaboration_pair"),
        CheckConstraint("person_low_id < person_high_id", name="ck_collaboration_pair_order"),
        Index("ix_collaboration_pair_high_low", "person_high_id", "person_low_id"),
    )
    pair_id: Optional[int] = Field(default=None, primary_key=True)
    person_low_id: int
    person_high_id: int
    collaboration_count: int = Field(default=0, index=True)
    first_year: Optional[int] = None
    last_year: Optional[int] = None
    avg_rating: Optional[float] = None
    total_revenue: Optional[int] = None
    types: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    years_active: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    peak_year: Optional[int] = None
    genre_diversity_score: Optional[float] = None
    role_diversity_score: Optional[float] = None
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class CollaborationDetail(SQLModel, table=True):
    __tablename__ = "collaboration_details"
    __table_args__ = (
        UniqueConstraint("person_low_id", "person_high_id", "work_id", name="uq_collaboration_detail"),
        CheckConstraint("person_low_id < person_high_id", name="ck_collaboration_detail_order"),
        Index("ix_collaboration_detail_high_low", "person_high_id", "person_low_id"),
    )
    detail_id: Optional[int] = Field(default=None, primary_key=True)
    person_low_id: int
    person_high_id: int
    work_id: int = Field(index=True)
    collaboration_type: str = Field(index=True)
    low_role: str
    high_role: str
    release_year: int = Field(index=True)
    rating: Optional[float] = None
    revenue: Optional[int] = None
    genres: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class PathCacheEntry(SQLModel, table=True):
    __tablename__ = "path_cache"
    __table_args__ = (
        UniqueConstraint("person_low_id", "person_high_id", name="uq_path_cache"),
        CheckConstraint("person_low_id < person_high_id", name="ck_path_cache_order"),
    )
    entry_id: Optional[int] = Field(default=None, primary_key=True)
    person_low_id: int
    person_high_id: int
    path: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    path_length: int
    computed_at: datetime = Field(sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))


class TrendSnapshot(SQLModel, table=True):
    __tablename__ = "trend_snapshots"
    __table_args__ = (UniqueConstraint("person_low_id", "person_high_id", name="uq_trend_snapshot"),)
    snapshot_id: Optional[int] = Field(default=None, primary_key=True)
    person_low_id: int
    person_high_id: int
    trend_score: float = Field(index=True)
    recent_count: int
    baseline_count: int
    last_year: int
    refreshed_at: datetime = Field(sa_type=DateTime(timezone=True))


class BatchJobFlag(SQLModel, table=True):
    __tablename__ = "batch_job_flags"
    job_name: str = Field(primary_key=True)
    run_id: str
    started_at: datetime = Field(sa_type=DateTime(timezone=True))
