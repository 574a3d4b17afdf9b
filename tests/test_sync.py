"""
Poll-and-reconcile views: unit tests against an in-memory transport.
"""

import asyncio
from datetime import date, timedelta

import httpx
import pytest

from access import DispatcherSession
from errors import InvalidStatus, RemoteError, Unauthorized
from models import utcnow
from schemas import TransportRequestCreate, TransportRequestCreated, TransportRequestRead
from sync import DispatcherQueue, HttpTransport, RequesterView, RequestView

INTERVAL = 0.02


def record(rid, status="PENDING"):
    now = utcnow()
    return TransportRequestRead(
        id=rid,
        unit_name=f"unit-{rid}",
        personnel_name="B",
        phone_number="555",
        notes="",
        mission_date=date(2025, 6, 1),
        mission_time="10:00",
        destination="Clinic",
        with_wheelchair=False,
        with_stretcher=False,
        status=status,
        created_at=now,
        updated_at=now,
    )


class FakeTransport:
    def __init__(self, records=()):
        self.records = list(records)
        self.fetches = 0
        self.fail_fetches = 0
        self.loading_seen = []
        self.view = None
        self.calls = []

    async def fetch_all(self):
        self.fetches += 1
        if self.view is not None:
            self.loading_seen.append(self.view.loading)
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise RemoteError("Could not reach the server")
        return list(self.records)

    async def create(self, data):
        rid = max((r.id for r in self.records), default=0) + 1
        new = record(rid)
        self.records.insert(0, new)
        return TransportRequestCreated(**new.model_dump(), requester_token=f"token-{rid}")

    async def transition(self, request_id, status, session):
        self.calls.append(("transition", request_id, status))
        for i, r in enumerate(self.records):
            if r.id == request_id:
                self.records[i] = r.model_copy(update={"status": status, "updated_at": utcnow()})
                return self.records[i]
        raise RemoteError("Transport request not found", 404, "NOT_FOUND")

    async def remove(self, request_id, session=None, requester_token=None):
        self.calls.append(("remove", request_id, requester_token))
        self.records = [r for r in self.records if r.id != request_id]


def valid_session():
    return DispatcherSession(
        authorized=True, expires_at=utcnow() + timedelta(hours=24), actor="dispatch", token="t"
    )


async def wait_for_polls(transport, count):
    target = transport.fetches + count
    for _ in range(200):
        if transport.fetches >= target:
            return
        await asyncio.sleep(INTERVAL / 4)
    raise AssertionError("poller did not run")


class TestRequestView:
    @pytest.mark.asyncio
    async def test_mount_loads_with_indicator(self):
        transport = FakeTransport([record(2), record(1)])
        view = RequestView(transport, poll_interval=INTERVAL)
        transport.view = view
        assert view.loading is True

        await view.mount()
        try:
            assert view.loading is False
            assert [r.id for r in view.requests] == [2, 1]
            assert transport.loading_seen == [True]
            assert view.polling
        finally:
            await view.close()

    @pytest.mark.asyncio
    async def test_background_refresh_replaces_cache_silently(self):
        transport = FakeTransport([record(1)])
        view = RequestView(transport, poll_interval=INTERVAL)
        transport.view = view
        async with view:
            transport.records = [record(3, "APPROVED"), record(2)]
            await wait_for_polls(transport, 1)
            assert [r.id for r in view.requests] == [3, 2]
            assert view.requests[0].status == "APPROVED"
            assert transport.loading_seen[1:] and not any(transport.loading_seen[1:])

    @pytest.mark.asyncio
    async def test_failed_poll_sets_banner_and_keeps_polling(self):
        transport = FakeTransport([record(1)])
        view = RequestView(transport, poll_interval=INTERVAL)
        async with view:
            transport.fail_fetches = 1
            await wait_for_polls(transport, 1)
            assert view.error == "Could not reach the server"
            assert [r.id for r in view.requests] == [1]

            transport.records = [record(2), record(1)]
            await wait_for_polls(transport, 1)
            assert view.error is None
            assert [r.id for r in view.requests] == [2, 1]

    @pytest.mark.asyncio
    async def test_failed_initial_load_still_starts_polling(self):
        transport = FakeTransport([record(1)])
        transport.fail_fetches = 1
        view = RequestView(transport, poll_interval=INTERVAL)
        async with view:
            assert view.loading is False
            assert view.error
            await wait_for_polls(transport, 1)
            assert [r.id for r in view.requests] == [1]

    @pytest.mark.asyncio
    async def test_manual_refresh_shows_indicator(self):
        transport = FakeTransport([record(1)])
        view = RequestView(transport, poll_interval=60)
        transport.view = view
        async with view:
            transport.records = [record(2), record(1)]
            await view.refresh()
            assert transport.loading_seen == [True, True]
            assert view.loading is False
            assert len(view.requests) == 2

    @pytest.mark.asyncio
    async def test_close_stops_polling(self):
        transport = FakeTransport([record(1)])
        view = RequestView(transport, poll_interval=INTERVAL)
        await view.mount()
        await view.close()
        assert not view.polling
        fetches = transport.fetches
        await asyncio.sleep(INTERVAL * 3)
        assert transport.fetches == fetches
        await view.close()

    @pytest.mark.asyncio
    async def test_projections_are_local(self):
        transport = FakeTransport([record(3), record(2, "APPROVED"), record(1, "REJECTED")])
        view = RequestView(transport, poll_interval=60)
        async with view:
            fetches = transport.fetches
            assert [r.id for r in view.project("pending")] == [3]
            assert [r.id for r in view.project("history")] == [2, 1]
            assert [r.id for r in view.project("approved")] == [2]
            assert [r.id for r in view.project("rejected")] == [1]
            assert len(view.project()) == 3
            assert transport.fetches == fetches
            with pytest.raises(ValueError):
                view.project("archived")


class TestDispatcherQueue:
    @pytest.mark.asyncio
    async def test_mount_requires_valid_session(self):
        transport = FakeTransport([record(1)])
        expired = DispatcherSession(
            authorized=True, expires_at=utcnow() - timedelta(seconds=1), token="t"
        )
        queue = DispatcherQueue(transport, expired, poll_interval=INTERVAL)
        with pytest.raises(Unauthorized):
            await queue.mount()
        assert transport.fetches == 0
        assert expired.authorized is False
        assert not queue.is_session_valid()

    @pytest.mark.asyncio
    async def test_optimistic_update_then_server_wins(self):
        transport = FakeTransport([record(2), record(1)])
        queue = DispatcherQueue(transport, valid_session(), poll_interval=INTERVAL)
        async with queue:
            approved = await queue.approve(1)
            assert queue.find(1) == approved
            assert queue.find(1).updated_at > queue.find(1).created_at
            assert [r.id for r in queue.project("pending")] == [2]

            # Another dispatcher's write landed last at the store.
            transport.records[1] = transport.records[1].model_copy(update={"status": "REJECTED"})
            await wait_for_polls(transport, 1)
            assert queue.find(1).status == "REJECTED"

    @pytest.mark.asyncio
    async def test_remove_updates_cache_immediately(self):
        transport = FakeTransport([record(2), record(1)])
        queue = DispatcherQueue(transport, valid_session(), poll_interval=60)
        async with queue:
            await queue.remove(2)
            assert [r.id for r in queue.requests] == [1]

    @pytest.mark.asyncio
    async def test_invalid_status_never_sent(self):
        transport = FakeTransport([record(1)])
        queue = DispatcherQueue(transport, valid_session(), poll_interval=60)
        async with queue:
            with pytest.raises(InvalidStatus):
                await queue.transition(1, "DONE")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_expired_session_blocks_actions(self):
        transport = FakeTransport([record(1)])
        session = valid_session()
        queue = DispatcherQueue(transport, session, poll_interval=60)
        async with queue:
            session.expires_at = utcnow() - timedelta(seconds=1)
            with pytest.raises(Unauthorized):
                await queue.reject(1)
            with pytest.raises(Unauthorized):
                await queue.remove(1)
        assert transport.calls == []
        assert transport.records[0].status == "PENDING"

    @pytest.mark.asyncio
    async def test_failed_transition_surfaces_to_caller(self):
        transport = FakeTransport([record(1)])
        queue = DispatcherQueue(transport, valid_session(), poll_interval=60)
        async with queue:
            with pytest.raises(RemoteError):
                await queue.approve(99)
            assert queue.find(1).status == "PENDING"


class TestRequesterView:
    @pytest.mark.asyncio
    async def test_submit_and_cancel(self):
        transport = FakeTransport([record(1)])
        view = RequesterView(transport, poll_interval=60)
        async with view:
            created = await view.submit(
                TransportRequestCreate(unit_name="A", personnel_name="B", phone_number="555")
            )
            assert view.requests[0].id == created.id
            assert [r.id for r in view.mine()] == [created.id]

            await view.cancel(created.id)
            assert transport.calls == [("remove", created.id, created.requester_token)]
            assert view.find(created.id) is None
            assert view.mine() == []

    @pytest.mark.asyncio
    async def test_cannot_cancel_foreign_request(self):
        transport = FakeTransport([record(1)])
        view = RequesterView(transport, poll_interval=60)
        async with view:
            with pytest.raises(Unauthorized):
                await view.cancel(1)
        assert transport.calls == []


def scripted_client(bodies):
    """An httpx client answering GET /requests/ with each body in turn, then the last one forever."""
    calls = []

    def handler(request):
        calls.append(request.url.path)
        body = bodies[min(len(calls), len(bodies)) - 1]
        if isinstance(body, str):
            return httpx.Response(200, text=body, headers={"content-type": "text/html"})
        return httpx.Response(200, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    return client, calls


class TestHttpTransportBodies:
    @pytest.mark.asyncio
    async def test_non_json_body_is_a_remote_error(self):
        client, _ = scripted_client(["<html>gateway error</html>"])
        async with client:
            with pytest.raises(RemoteError) as excinfo:
                await HttpTransport(client).fetch_all()
        assert excinfo.value.error_code == "BAD_RESPONSE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"unexpected": "shape"}, [{"id": "x"}], 42, None])
    async def test_wrong_shape_is_a_remote_error(self, body):
        client, _ = scripted_client([body])
        async with client:
            with pytest.raises(RemoteError):
                await HttpTransport(client).fetch_all()

    @pytest.mark.asyncio
    async def test_polling_survives_garbage_response(self):
        client, calls = scripted_client([[], "<html>oops</html>", []])
        async with client:
            view = RequestView(HttpTransport(client), poll_interval=0.01)
            await view.mount()
            for _ in range(200):
                if len(calls) >= 4:
                    break
                await asyncio.sleep(0.005)
            assert len(calls) >= 4
            assert view.polling
            assert view.error is None
            assert view.requests == []
            await view.close()
        assert not view.polling


class ExplodingTransport(FakeTransport):
    async def fetch_all(self):
        self.fetches += 1
        if self.fetches == 2:
            raise RuntimeError("driver bug")
        return list(self.records)


@pytest.mark.asyncio
async def test_unexpected_poll_error_keeps_loop_alive():
    transport = ExplodingTransport([record(1)])
    view = RequestView(transport, poll_interval=INTERVAL)
    await view.mount()
    await wait_for_polls(transport, 1)
    assert view.polling
    await wait_for_polls(transport, 1)
    assert view.error is None
    assert [r.id for r in view.requests] == [1]
    await view.close()
