# data_access/models/catalog.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import List, Optional

# Catalog tables are populated by the upstream catalog sync. This package only
# reads them; they are declared here so the schema can be created for local
# runs and tests.

class Person(SQLModel, table=True):
    __tablename__ = "people"
    person_id: int = Field(primary_key=True)
    name: str


class Work(SQLModel, table=True):
    __tablename__ = "works"
    work_id: int = Field(primary_key=True)
    title: str
    release_year: Optional[int] = Field(default=None, index=True)
    rating: Optional[float] = None
    revenue: Optional[int] = None
    genres: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class Credit(SQLModel, table=True):
    __tablename__ = "credits"
    credit_id: Optional[int] = Field(default=None, primary_key=True)
    work_id: int = Field(foreign_key="works.work_id", index=True)
    person_id: Optional[int] = Field(default=None, foreign_key="people.person_id", index=True)
    role_kind: str
    billing_ordinal: Optional[int] = None
