from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, Response

from access import (
    SessionState,
    check_session,
    issue_requester_token,
    require_authority,
    verify_requester_token,
)
from db import SessionDep
from lifecycle import (
    create_request,
    get_request,
    list_requests,
    parse_request_id,
    remove_request,
    transition_request,
)
from schemas import (
    RequestStatusUpdate,
    TransportRequestCreate,
    TransportRequestCreated,
    TransportRequestRead,
)
from store import RequestStore
from .auth import DispatcherSessionDep, NowDep

router = APIRouter(tags=["requests"])


def get_store(session: SessionDep) -> RequestStore:
    return RequestStore(session)


StoreDep = Annotated[RequestStore, Depends(get_store)]


@router.post("/", response_model=TransportRequestCreated, status_code=201)
def submit_request(request_data: TransportRequestCreate, store: StoreDep, now: NowDep):
    """
    Submit a new transport request. No login needed; the request always
    starts out PENDING.
    """
    record = create_request(store, request_data, now=now)
    return TransportRequestCreated(
        **TransportRequestRead.model_validate(record).model_dump(),
        requester_token=issue_requester_token(record.id),
    )


@router.get("/", response_model=List[TransportRequestRead])
def read_requests(store: StoreDep):
    """
    List all requests, newest first.
    """
    return list_requests(store)


@router.get("/{request_id}", response_model=TransportRequestRead)
def read_request(request_id: str, store: StoreDep):
    return get_request(store, parse_request_id(request_id))


@router.patch("/{request_id}", response_model=TransportRequestRead)
def update_request_status(
    request_id: str,
    update: RequestStatusUpdate,
    store: StoreDep,
    session: DispatcherSessionDep,
    now: NowDep,
):
    require_authority(session, "change request status", now)
    return transition_request(store, parse_request_id(request_id), update.status, now=now)


@router.delete("/{request_id}", status_code=204)
def delete_request(
    request_id: str,
    store: StoreDep,
    session: DispatcherSessionDep,
    now: NowDep,
    x_requester_token: Optional[str] = Header(default=None),
):
    """
    Dispatchers can delete any request. A submitter holding the token issued
    at creation can cancel their own request while it is still PENDING.
    """
    rid = parse_request_id(request_id)
    if verify_requester_token(x_requester_token, rid):
        by_dispatcher = check_session(session, now) is SessionState.VALID
    else:
        require_authority(session, "delete requests", now)
        by_dispatcher = True
    remove_request(store, rid, by_dispatcher=by_dispatcher)
    return Response(status_code=204)
