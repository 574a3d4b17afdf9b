from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TransportRequestCreate(BaseModel):
    """Submission payload. Any ``status`` sent by the caller is ignored."""

    model_config = ConfigDict(extra="ignore")

    unit_name: str
    personnel_name: str
    phone_number: str
    notes: Optional[str] = None
    mission_date: Optional[date] = None
    mission_time: Optional[str] = None
    destination: Optional[str] = None
    with_wheelchair: bool = False
    with_stretcher: bool = False


class TransportRequestRead(BaseModel):
    id: int
    unit_name: str
    personnel_name: str
    phone_number: str
    notes: str
    mission_date: date
    mission_time: str
    destination: str
    with_wheelchair: bool
    with_stretcher: bool
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransportRequestCreated(TransportRequestRead):
    # Lets the submitter cancel the request while it is still pending.
    requester_token: str


class RequestStatusUpdate(BaseModel):
    # Validated by the lifecycle engine so bad values surface as INVALID_INPUT.
    status: str


class LoginData(BaseModel):
    username: str
    password: str


class SessionRead(BaseModel):
    authorized: bool
    expires_at: Optional[datetime] = None
