"""Tests del correlador de peticiones: ids, tabla de pendientes y timeouts."""

import asyncio
import json
import random

import pytest

from weather_host.host.correlator import RequestCorrelator
from weather_host.host.errors import RequestTimeoutError, TransportError
from weather_host.utils.jsonrpc import JsonRpcResponse


class Wire:
    def __init__(self):
        self.lines = []
        self.unsolicited = []

    def write(self, data: bytes):
        self.lines.append(json.loads(data))

    def correlator(self) -> RequestCorrelator:
        return RequestCorrelator(self.write, on_unsolicited=self.unsolicited.append)


def _response(request_id, **extra) -> dict:
    frame = {"jsonrpc": "2.0", "id": request_id}
    frame.update(extra or {"result": {"echo": request_id}})
    return frame


@pytest.mark.asyncio
async def test_send_writes_framed_request_with_incrementing_ids() -> None:
    wire = Wire()
    correlator = wire.correlator()
    correlator.send("initialize", {"protocolVersion": "2024-11-05"})
    correlator.send("tools/call", {"name": "get-alerts", "arguments": {"state": "CA"}})
    assert [line["id"] for line in wire.lines] == [1, 2]
    assert wire.lines[1] == {
        "jsonrpc": "2.0",
        "id": 2,
        "method": "tools/call",
        "params": {"name": "get-alerts", "arguments": {"state": "CA"}},
    }
    assert len(correlator) == 2


@pytest.mark.asyncio
async def test_entry_is_registered_before_the_write() -> None:
    seen = []
    correlator = None

    def writer(data: bytes):
        seen.append(json.loads(data)["id"] in correlator)

    correlator = RequestCorrelator(writer)
    correlator.send("initialize")
    assert seen == [True]


@pytest.mark.asyncio
async def test_matching_response_resolves_with_full_frame() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call")
    frame = _response(1, result={"content": [{"type": "text", "text": "hola"}]})

    assert correlator.dispatch(frame) is True
    response = await pending
    assert isinstance(response, JsonRpcResponse)
    assert response.ok
    assert response.raw == frame
    assert 1 not in correlator


@pytest.mark.asyncio
async def test_error_response_resolves_as_tagged_error() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call")
    correlator.dispatch(_response(1, error={"code": -32602, "message": "Invalid params"}))
    response = await pending
    assert not response.ok
    assert response.error["code"] == -32602


@pytest.mark.asyncio
async def test_concurrent_requests_resolve_exactly_once_and_in_isolation() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pendings = [correlator.send("echo", {"n": n}) for n in range(25)]
    order = [p.id for p in pendings]
    random.Random(7).shuffle(order)

    for request_id in order:
        before = {p.id for p in pendings if not p.future.done()}
        assert correlator.dispatch(_response(request_id)) is True
        after = {p.id for p in pendings if not p.future.done()}
        assert before - after == {request_id}
        assert len(correlator) == len(after)

    for pending in pendings:
        assert (await pending).result == {"echo": pending.id}

    # Una segunda respuesta con el mismo id ya no resuelve nada
    assert correlator.dispatch(_response(order[0])) is False
    assert wire.unsolicited == [_response(order[0])]


@pytest.mark.asyncio
async def test_resolution_follows_arrival_order() -> None:
    wire = Wire()
    correlator = wire.correlator()
    first = correlator.send("hold")
    second = correlator.send("release")
    resolved = []
    first.future.add_done_callback(lambda f: resolved.append(1))
    second.future.add_done_callback(lambda f: resolved.append(2))

    correlator.dispatch(_response(2))
    correlator.dispatch(_response(1))
    await asyncio.gather(first.future, second.future)
    assert resolved == [2, 1]


@pytest.mark.asyncio
async def test_unknown_ids_and_notifications_are_unsolicited() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call")

    notification = {"jsonrpc": "2.0", "method": "notifications/message", "params": {"data": "x"}}
    stranger = _response(42)
    string_id = {"jsonrpc": "2.0", "id": "1", "result": {}}
    for frame in (notification, stranger, string_id):
        assert correlator.dispatch(frame) is False

    assert wire.unsolicited == [notification, stranger, string_id]
    assert not pending.future.done()


@pytest.mark.asyncio
async def test_server_request_with_pending_id_is_not_a_response() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call")
    server_request = {"jsonrpc": "2.0", "id": 1, "method": "ping"}

    assert correlator.dispatch(server_request) is False
    assert wire.unsolicited == [server_request]
    assert 1 in correlator
    assert not pending.future.done()


@pytest.mark.asyncio
async def test_timeout_removes_entry_and_late_answer_is_unsolicited() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call", timeout=0.05)

    with pytest.raises(RequestTimeoutError) as info:
        await pending
    assert info.value.request_id == 1
    assert info.value.method == "tools/call"
    assert len(correlator) == 0

    late = _response(1)
    assert correlator.dispatch(late) is False
    assert wire.unsolicited == [late]


@pytest.mark.asyncio
async def test_response_before_deadline_cancels_timer() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call", timeout=0.05)
    correlator.dispatch(_response(1))
    await asyncio.sleep(0.1)
    assert (await pending).ok


@pytest.mark.asyncio
async def test_cancelled_waiter_is_removed_from_table() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pending = correlator.send("tools/call")
    pending.future.cancel()
    await asyncio.sleep(0)
    assert 1 not in correlator
    assert correlator.dispatch(_response(1)) is False


@pytest.mark.asyncio
async def test_fail_all_rejects_every_pending_request() -> None:
    wire = Wire()
    correlator = wire.correlator()
    pendings = [correlator.send("echo", timeout=5) for _ in range(3)]
    assert correlator.fail_all(ConnectionError("se fue")) == 3
    for pending in pendings:
        with pytest.raises(ConnectionError):
            await pending
    assert len(correlator) == 0


@pytest.mark.asyncio
async def test_write_failure_raises_transport_error_and_unregisters() -> None:
    def broken(data: bytes):
        raise BrokenPipeError("pipe cerrado")

    correlator = RequestCorrelator(broken)
    with pytest.raises(TransportError):
        correlator.send("initialize")
    assert len(correlator) == 0
    with pytest.raises(TransportError):
        correlator.notify("notifications/initialized")


@pytest.mark.asyncio
async def test_notify_writes_without_id_or_pending_entry() -> None:
    wire = Wire()
    correlator = wire.correlator()
    correlator.notify("notifications/initialized", {})
    assert wire.lines == [{"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}]
    assert len(correlator) == 0
    assert correlator.send("tools/call").id == 1
