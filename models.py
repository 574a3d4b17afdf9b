from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utctoday() -> date:
    return utcnow().date()


class TransportRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    unit_name: str
    personnel_name: str
    phone_number: str
    notes: str = ""

    mission_date: date = Field(default_factory=utctoday)
    mission_time: str = ""
    destination: str = ""

    with_wheelchair: bool = False
    with_stretcher: bool = False

    status: str = RequestStatus.PENDING.value  # PENDING | APPROVED | REJECTED

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
