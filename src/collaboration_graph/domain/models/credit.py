from enum import Enum
from typing import List, Optional
from pydantic import BaseModel


class RoleCategory(str, Enum):
    """The side a person plays in a collaboration edge."""
    PERFORMER = "performer"
    DIRECTOR = "director"
    CREW = "crew"


class CreditRecord(BaseModel):
    """One upstream credit: who worked on a work and in what role."""
    person_id: Optional[int] = None
    role_kind: Optional[str] = None
    billing_ordinal: Optional[int] = None


class WorkRecord(BaseModel):
    """Work-level facts denormalized onto collaboration details."""
    work_id: int
    release_year: Optional[int] = None
    rating: Optional[float] = None
    revenue: Optional[int] = None
    genres: List[str] = []
