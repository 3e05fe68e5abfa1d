import json

import grpc
import pytest

from noticehub.conditions import ConditionError, Gt, marshal_condition
from noticehub.metadata import to_metadata
from noticehub.registry import ClientExistsError
from noticehub.service import (
    Delivery,
    NoticeService,
    ServerAlreadyRegisteredError,
    ServerNotFoundError,
    build_grpc_server,
)


@pytest.fixture
def service():
    return NoticeService(heartbeat_interval=0.05)


def _next_message(stream):
    for delivery in stream:
        if not delivery.heartbeat:
            return delivery
    raise AssertionError("stream ended")


def test_register_twice_fails(service):
    service.register("s1")
    with pytest.raises(ServerAlreadyRegisteredError) as info:
        service.register("s1")
    assert str(info.value) == "server is already registered"


def test_add_client_needs_registered_server(service):
    with pytest.raises(ServerNotFoundError) as info:
        service.add_client("nope", "a", {})
    assert str(info.value) == "server not found"
    assert info.value.server_id == "nope"


def test_del_client_needs_registered_server(service):
    with pytest.raises(ServerNotFoundError):
        service.del_client("nope", "a")


def test_duplicate_client_fails(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    with pytest.raises(ClientExistsError):
        service.add_client("s1", "a", {})


def test_messages_reach_the_owning_server(service):
    service.register("s1")
    service.register("s2")
    service.add_client("s1", "a", {})
    service.add_client("s2", "b", {})
    assert service.send_message("s1", b"hi", None, None) == 2
    assert _next_message(service.recv_message("s1")) == Delivery("a", b"hi")
    assert _next_message(service.recv_message("s2")) == Delivery("b", b"hi")


def test_id_list_limits_recipients(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    service.add_client("s1", "b", {})
    assert service.send_message("s1", b"x", ["b"], None) == 1
    assert _next_message(service.recv_message("s1")).client_id == "b"


def test_condition_as_json_bytes(service):
    service.register("s1")
    service.add_client("s1", "kid", {"age": to_metadata(9)})
    service.add_client("s1", "grown", {"age": to_metadata(30)})
    assert service.send_message("s1", b"m", None, marshal_condition(Gt("age", 18))) == 1
    assert _next_message(service.recv_message("s1")).client_id == "grown"


def test_condition_as_object(service):
    service.register("s1")
    service.add_client("s1", "kid", {"age": to_metadata(9)})
    service.add_client("s1", "grown", {"age": to_metadata(30)})
    assert service.send_message("s1", b"m", None, Gt("age", 18)) == 1


def test_null_condition_matches_all(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    assert service.send_message("s1", b"m", None, marshal_condition(None)) == 1


def test_bad_condition_raises(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    with pytest.raises(ConditionError):
        service.send_message("s1", b"m", None, b"[99]")
    with pytest.raises(ConditionError):
        service.send_message("s1", b"m", None, b"not json")


def test_recv_unknown_server(service):
    with pytest.raises(ServerNotFoundError):
        service.recv_message("nope")


def test_idle_stream_yields_heartbeats(service):
    service.register("s1")
    stream = service.recv_message("s1")
    assert next(stream) == Delivery(heartbeat=True)


def test_drop_server_ends_stream_and_removes_clients(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    stream = service.recv_message("s1")
    service.drop_server("s1")
    with pytest.raises(StopIteration):
        next(stream)
    assert service.clients.search() == []


def test_closing_stream_drops_server(service):
    service.register("s1")
    service.add_client("s1", "a", {})
    stream = service.recv_message("s1")
    assert next(stream).heartbeat
    stream.close()
    assert not service.servers.is_registered("s1")
    assert service.clients.search() == []


def test_heartbeat_interval_must_be_positive():
    with pytest.raises(ValueError):
        NoticeService(heartbeat_interval=0)


@pytest.fixture
def endpoint(service):
    server = build_grpc_server(service, max_workers=4)
    port = server.add_insecure_port("127.0.0.1:0")
    server.start()
    channel = grpc.insecure_channel(f"127.0.0.1:{port}")
    yield channel
    channel.close()
    server.stop(None)


def test_wire_register(service, endpoint):
    register = endpoint.unary_unary("/notice.Notice/Register")
    assert register(b'{"id":"raw"}') == b""
    assert service.servers.is_registered("raw")
    with pytest.raises(grpc.RpcError) as info:
        register(b'{"id":"raw"}')
    assert info.value.code() == grpc.StatusCode.ALREADY_EXISTS


def test_wire_add_client_unknown_server(endpoint):
    add = endpoint.unary_unary("/notice.Notice/AddClient")
    with pytest.raises(grpc.RpcError) as info:
        add(b'{"server":{"id":"ghost"},"id":"a","metadata":{}}')
    assert info.value.code() == grpc.StatusCode.NOT_FOUND
    assert info.value.details() == "server not found"


def test_wire_recv_heartbeat(service, endpoint):
    service.register("s1")
    recv = endpoint.unary_stream("/notice.Notice/RecvMessage")
    stream = recv(b'{"id":"s1"}')
    first = json.loads(next(stream))
    stream.cancel()
    assert first == {"client_id": "", "message": "", "heartbeat": True}