"""Request lifecycle engine.

Owns the status state machine of a transport request:

    PENDING --> APPROVED
    PENDING --> REJECTED

APPROVED and REJECTED are terminal. Re-applying the current status is
accepted and only refreshes ``updated_at``. Callers are expected to have
passed the access gate before calling ``transition_request`` or a
dispatcher-side ``remove_request``.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from errors import InvalidInput, InvalidStatus, InvalidTransition, NotFound
from models import TERMINAL_STATUSES, RequestStatus, TransportRequest, utcnow
from schemas import TransportRequestCreate
from store import RequestStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("unit_name", "personnel_name", "phone_number")


def parse_status(value: Any) -> RequestStatus:
    try:
        return RequestStatus(value)
    except ValueError:
        raise InvalidStatus(value) from None


def parse_request_id(raw: Any) -> int:
    try:
        request_id = int(raw)
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid request id: {raw!r}") from None
    if request_id < 1:
        raise InvalidInput(f"Invalid request id: {raw!r}")
    return request_id


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    if current == target:
        return True
    return current == RequestStatus.PENDING and target in TERMINAL_STATUSES


def create_request(
    store: RequestStore,
    data: TransportRequestCreate,
    now: Optional[datetime] = None,
) -> TransportRequest:
    """Persist a new request. The status is always PENDING."""
    for name in REQUIRED_FIELDS:
        if not getattr(data, name).strip():
            raise InvalidInput(f"Field '{name}' is required")

    now = now or utcnow()
    record = TransportRequest(
        unit_name=data.unit_name,
        personnel_name=data.personnel_name,
        phone_number=data.phone_number,
        notes=data.notes or "",
        mission_date=data.mission_date or now.date(),
        mission_time=data.mission_time or "",
        destination=data.destination or "",
        with_wheelchair=data.with_wheelchair,
        with_stretcher=data.with_stretcher,
        status=RequestStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    record = store.create(record)
    logger.info("Created transport request %s for unit %r", record.id, record.unit_name)
    return record


def get_request(store: RequestStore, request_id: int) -> TransportRequest:
    record = store.get(request_id)
    if record is None:
        raise NotFound(request_id)
    return record


def list_requests(store: RequestStore) -> List[TransportRequest]:
    """All requests, newest created first."""
    return store.list_newest_first()


def transition_request(
    store: RequestStore,
    request_id: int,
    new_status: Any,
    now: Optional[datetime] = None,
) -> TransportRequest:
    target = parse_status(new_status)
    record = get_request(store, request_id)
    current = parse_status(record.status)
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)

    record = store.update_fields(
        record,
        status=target.value,
        updated_at=now or utcnow(),
    )
    logger.info("Transport request %s: %s -> %s", request_id, current.value, target.value)
    return record


def remove_request(
    store: RequestStore,
    request_id: int,
    by_dispatcher: bool = False,
) -> None:
    """Delete a request permanently.

    Dispatchers may delete any request. A submitter may only cancel a request
    that is still PENDING.
    """
    record = get_request(store, request_id)
    if not by_dispatcher and record.status != RequestStatus.PENDING.value:
        raise InvalidInput(
            "Only pending requests can be cancelled",
            error_code="NOT_PENDING",
            status_code=409,
        )
    store.delete(record)
    logger.info(
        "Deleted transport request %s (%s)",
        request_id,
        "dispatcher" if by_dispatcher else "requester",
    )
