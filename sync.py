"""Poll-and-reconcile client views.

Each view keeps a local copy of the full request list. It is loaded once on
mount, then silently re-fetched every ``poll_interval`` seconds and replaced
wholesale; the server is always the authority. A viewer's own transitions and
deletions are applied to the local copy right away and get overwritten by the
next poll if the server disagrees.

The network side is a ``RequestTransport``. ``HttpTransport`` talks to the
JSON API with httpx; a push-based transport can replace it without touching
the views.
"""

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import httpx
from pydantic import ValidationError

import config
from access import DispatcherSession, SessionState, check_session, require_authority
from errors import AuthFailed, RemoteError, TransportServiceError, Unauthorized
from lifecycle import parse_status
from models import RequestStatus, utcnow
from schemas import TransportRequestCreate, TransportRequestCreated, TransportRequestRead

logger = logging.getLogger(__name__)

T = TypeVar("T")

Projection = Callable[[TransportRequestRead], bool]

PROJECTIONS: Dict[str, Projection] = {
    "all": lambda r: True,
    "pending": lambda r: r.status == RequestStatus.PENDING.value,
    "history": lambda r: r.status != RequestStatus.PENDING.value,
    "approved": lambda r: r.status == RequestStatus.APPROVED.value,
    "rejected": lambda r: r.status == RequestStatus.REJECTED.value,
}


class RequestTransport(Protocol):
    async def fetch_all(self) -> List[TransportRequestRead]:
        ...

    async def create(self, data: TransportRequestCreate) -> TransportRequestCreated:
        ...

    async def transition(
        self, request_id: int, status: str, session: DispatcherSession
    ) -> TransportRequestRead:
        ...

    async def remove(
        self,
        request_id: int,
        session: Optional[DispatcherSession] = None,
        requester_token: Optional[str] = None,
    ) -> None:
        ...


def _check_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    detail = body.get("detail") or response.reason_phrase
    if not isinstance(detail, str):
        detail = str(detail)
    if body.get("error") == "AUTH_FAILED":
        raise AuthFailed()
    if response.status_code == 401:
        raise Unauthorized(detail=detail, redirect=body.get("redirect", config.LOGIN_URL))
    raise RemoteError(detail, response.status_code, body.get("error", "HTTP_ERROR"))


def _decode(response: httpx.Response, parse: Callable[[Any], T]) -> T:
    """Parse a successful response body, turning garbage into RemoteError."""
    try:
        return parse(response.json())
    except (ValueError, TypeError, KeyError, ValidationError) as exc:
        raise RemoteError(
            f"Unexpected response from server: {exc}", response.status_code, "BAD_RESPONSE"
        ) from exc


class HttpTransport:
    """Talks to the transport request API over HTTP."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"Could not reach the server: {exc}") from exc
        _check_response(response)
        return response

    @staticmethod
    def _session_headers(session: Optional[DispatcherSession]) -> Dict[str, str]:
        if session is None or not session.token:
            return {}
        return {"Cookie": f"{config.SESSION_COOKIE}={session.token}"}

    async def login(self, username: str, password: str) -> DispatcherSession:
        response = await self._send(
            "POST", "/login", json={"username": username, "password": password}
        )
        token = response.cookies.get(config.SESSION_COOKIE)
        # The session is passed explicitly to each call, never kept in the jar.
        self.client.cookies.clear()
        return DispatcherSession(
            authorized=True,
            expires_at=_decode(
                response, lambda body: datetime.fromisoformat(body["expires_at"])
            ),
            actor=username,
            token=token,
        )

    async def logout(self, session: DispatcherSession) -> None:
        try:
            await self._send("POST", "/logout", headers=self._session_headers(session))
        finally:
            session.clear()

    async def fetch_all(self) -> List[TransportRequestRead]:
        response = await self._send("GET", "/requests/")
        return _decode(
            response,
            lambda body: [TransportRequestRead.model_validate(item) for item in body],
        )

    async def create(self, data: TransportRequestCreate) -> TransportRequestCreated:
        response = await self._send(
            "POST", "/requests/", json=data.model_dump(mode="json", exclude_none=True)
        )
        return _decode(response, TransportRequestCreated.model_validate)

    async def transition(
        self, request_id: int, status: str, session: DispatcherSession
    ) -> TransportRequestRead:
        response = await self._send(
            "PATCH",
            f"/requests/{request_id}",
            json={"status": status},
            headers=self._session_headers(session),
        )
        return _decode(response, TransportRequestRead.model_validate)

    async def remove(
        self,
        request_id: int,
        session: Optional[DispatcherSession] = None,
        requester_token: Optional[str] = None,
    ) -> None:
        headers = self._session_headers(session)
        if requester_token:
            headers["X-Requester-Token"] = requester_token
        await self._send("DELETE", f"/requests/{request_id}", headers=headers)


class RequestView:
    """A locally cached, periodically refreshed list of requests."""

    def __init__(
        self,
        transport: RequestTransport,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
    ):
        self.transport = transport
        self.poll_interval = poll_interval
        self.requests: List[TransportRequestRead] = []
        self.loading = True
        self.error: Optional[str] = None
        self.last_synced: Optional[datetime] = None
        self._poller: Optional[asyncio.Task] = None

    @property
    def polling(self) -> bool:
        return self._poller is not None and not self._poller.done()

    async def mount(self) -> None:
        """Initial load with the loading indicator, then start polling."""
        await self.fetch(show_loading=True)
        if not self.polling:
            self._poller = asyncio.create_task(self._poll())

    async def refresh(self) -> None:
        """User-triggered reload. Leaves the polling schedule alone."""
        await self.fetch(show_loading=True)

    async def fetch(self, show_loading: bool = True) -> None:
        if show_loading:
            self.loading = True
        try:
            records = await self.transport.fetch_all()
        except TransportServiceError as exc:
            logger.warning("Request list refresh failed: %s", exc.detail)
            self.error = exc.detail
        else:
            self.requests = list(records)
            self.error = None
            self.last_synced = utcnow()
        finally:
            if show_loading:
                self.loading = False

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.fetch(show_loading=False)
            except Exception:
                logger.exception("Unexpected error while polling request list")
                self.error = "Could not refresh requests, retrying"

    async def close(self) -> None:
        """Stop background polling. Safe to call more than once."""
        if self._poller is None:
            return
        self._poller.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._poller
        self._poller = None

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def project(self, name: str = "all") -> List[TransportRequestRead]:
        """Filter the cached list. Never touches the network."""
        try:
            predicate = PROJECTIONS[name]
        except KeyError:
            raise ValueError(f"Unknown view: {name!r}") from None
        return [r for r in self.requests if predicate(r)]

    def find(self, request_id: int) -> Optional[TransportRequestRead]:
        for record in self.requests:
            if record.id == request_id:
                return record
        return None

    def _apply_update(self, updated: TransportRequestRead) -> None:
        self.requests = [
            updated if r.id == updated.id else r
            for r in self.requests
        ]

    def _apply_removal(self, request_id: int) -> None:
        self.requests = [r for r in self.requests if r.id != request_id]


class RequesterView(RequestView):
    """The submitter's list. Remembers the tokens of requests it created."""

    def __init__(self, transport: RequestTransport, **kwargs):
        super().__init__(transport, **kwargs)
        self.tokens: Dict[int, str] = {}

    async def submit(self, data: TransportRequestCreate) -> TransportRequestCreated:
        created = await self.transport.create(data)
        self.tokens[created.id] = created.requester_token
        self.requests = [TransportRequestRead.model_validate(created.model_dump())] + [
            r for r in self.requests if r.id != created.id
        ]
        return created

    def mine(self) -> List[TransportRequestRead]:
        return [r for r in self.requests if r.id in self.tokens]

    async def cancel(self, request_id: int) -> None:
        """Delete one of our own requests while it is still pending."""
        token = self.tokens.get(request_id)
        if token is None:
            raise Unauthorized(detail="Only requests submitted from this view can be cancelled")
        await self.transport.remove(request_id, requester_token=token)
        self.tokens.pop(request_id, None)
        self._apply_removal(request_id)


class DispatcherQueue(RequestView):
    """The dispatcher's consolidated queue. Every action needs a valid session."""

    def __init__(
        self,
        transport: RequestTransport,
        session: Optional[DispatcherSession],
        **kwargs,
    ):
        super().__init__(transport, **kwargs)
        self.session = session

    def is_session_valid(self) -> bool:
        return check_session(self.session) is SessionState.VALID

    async def mount(self) -> None:
        require_authority(self.session, "open the dispatcher queue")
        await super().mount()

    async def transition(self, request_id: int, status: str) -> TransportRequestRead:
        require_authority(self.session, "change request status")
        status = parse_status(status).value
        try:
            updated = await self.transport.transition(request_id, status, self.session)
        except Unauthorized:
            self.session.clear()
            raise
        self._apply_update(updated)
        return updated

    async def approve(self, request_id: int) -> TransportRequestRead:
        return await self.transition(request_id, RequestStatus.APPROVED.value)

    async def reject(self, request_id: int) -> TransportRequestRead:
        return await self.transition(request_id, RequestStatus.REJECTED.value)

    async def remove(self, request_id: int) -> None:
        require_authority(self.session, "delete requests")
        try:
            await self.transport.remove(request_id, session=self.session)
        except Unauthorized:
            self.session.clear()
            raise
        self._apply_removal(request_id)
