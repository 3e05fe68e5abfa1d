"""The notice hub service and its gRPC endpoint."""

from __future__ import annotations

import base64
import json
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent import futures
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Optional, TypeVar

import grpc

from .conditions import Condition, unmarshal_condition
from .metadata import Metadata
from .registry import ClientExistsError, ClientRegistry, ServerRegistry

_SERVICE_NAME = "notice.Notice"

_T = TypeVar("_T")


class ServiceError(Exception):
    """Base class of errors reported by the notice service."""


class ServerNotFoundError(ServiceError):
    """Raised when a request names a server that is not registered."""

    def __init__(self, server_id: str) -> None:
        super().__init__("server not found")
        self.server_id = server_id


class ServerAlreadyRegisteredError(ServiceError):
    """Raised when a server id is registered twice."""

    def __init__(self, server_id: str) -> None:
        super().__init__("server is already registered")
        self.server_id = server_id


@dataclass(frozen=True)
class Delivery:
    """A message bound for one client, or a heartbeat."""

    client_id: str = ""
    message: bytes = b""
    heartbeat: bool = False


class NoticeService:
    """Routes messages from senders to the servers that own the target clients."""

    def __init__(self, *, heartbeat_interval: float = 1.0) -> None:
        if heartbeat_interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        self.heartbeat_interval = heartbeat_interval
        self.clients = ClientRegistry()
        self.servers = ServerRegistry(self.clients)
        self._register_lock = threading.Lock()

    def register(self, server_id: str) -> None:
        """Register a server so it can own clients and receive messages."""
        with self._register_lock:
            if self.servers.is_registered(server_id):
                raise ServerAlreadyRegisteredError(server_id)
            self.servers.add(server_id, Queue())

    def _require_server(self, server_id: str) -> None:
        if not self.servers.is_registered(server_id):
            raise ServerNotFoundError(server_id)

    def add_client(
        self,
        server_id: str,
        client_id: str,
        metadata: Mapping[str, Optional[Metadata]] | None = None,
    ) -> None:
        """Attach a client with its metadata to a registered server."""
        self._require_server(server_id)
        self.clients.add(client_id, server_id, metadata)

    def del_client(self, server_id: str, client_id: str) -> None:
        """Detach a client from a registered server."""
        self._require_server(server_id)
        self.clients.remove(client_id, server_id)

    def send_message(
        self,
        server_id: str,
        message: bytes,
        id_list: Iterable[str] | None = None,
        condition: Condition | bytes | str | None = None,
    ) -> int:
        """Queue a message for every matching client; return how many were queued.

        The condition may be given as an object or in its JSON form.
        """
        if condition is not None and not isinstance(condition, Condition):
            condition = unmarshal_condition(condition)
        queued = 0
        for client in self.clients.search(id_list, condition):
            inbox = self.servers.get(client.server_id)
            if inbox is not None:
                inbox.put(Delivery(client.client_id, bytes(message)))
                queued += 1
        return queued

    def recv_message(self, server_id: str) -> Iterator[Delivery]:
        """Return an endless stream of the server's deliveries and heartbeats.

        The stream ends once the server is dropped; closing it drops the server.
        """
        inbox = self.servers.get(server_id)
        if inbox is None:
            raise ServerNotFoundError(server_id)
        return self._stream(server_id, inbox)

    def _stream(self, server_id: str, inbox: Queue[Delivery]) -> Iterator[Delivery]:
        try:
            while self.servers.get(server_id) is inbox:
                try:
                    delivery = inbox.get(timeout=self.heartbeat_interval)
                except Empty:
                    yield Delivery(heartbeat=True)
                else:
                    yield delivery
        except GeneratorExit:
            self.drop_server(server_id)
            raise

    def drop_server(self, server_id: str) -> None:
        """Unregister a server and all of its clients."""
        self.servers.remove(server_id)


def _method_path(name: str) -> str:
    return f"/{_SERVICE_NAME}/{name}"


def _encode_json(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _decode_json(data: bytes) -> dict[str, Any]:
    if not data:
        return {}
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise ValueError("request must be a JSON object")
    return payload


def _encode_empty(response: Any) -> bytes:
    """Serialize an empty response; anything but None is refused."""
    if response is not None:
        raise TypeError("empty response expected")
    return b""


def _decode_empty(data: bytes) -> None:
    """Check that a response carries no payload."""
    if data:
        raise ValueError("unexpected payload in empty response")
    return None


def _encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _decode_bytes(text: Any) -> bytes:
    if not isinstance(text, str):
        raise ValueError("bytes field must be base64 text")
    return base64.b64decode(text, validate=True)


def _encode_delivery(delivery: Delivery) -> bytes:
    return _encode_json(
        {
            "client_id": delivery.client_id,
            "message": _encode_bytes(delivery.message),
            "heartbeat": delivery.heartbeat,
        }
    )


def _decode_delivery(data: bytes) -> Delivery:
    payload = _decode_json(data)
    return Delivery(
        client_id=str(payload.get("client_id", "")),
        message=_decode_bytes(payload.get("message", "")),
        heartbeat=bool(payload.get("heartbeat", False)),
    )


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key, "")
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _server_id(payload: Mapping[str, Any]) -> str:
    server = payload.get("server") or {}
    if not isinstance(server, Mapping):
        raise ValueError("field 'server' must be an object")
    return _text(server, "id")


def _status_for(exc: Exception) -> grpc.StatusCode:
    if isinstance(exc, ServerNotFoundError):
        return grpc.StatusCode.NOT_FOUND
    if isinstance(exc, (ServerAlreadyRegisteredError, ClientExistsError)):
        return grpc.StatusCode.ALREADY_EXISTS
    if isinstance(exc, ValueError):
        return grpc.StatusCode.INVALID_ARGUMENT
    return grpc.StatusCode.UNKNOWN


class _NoticeServicer:
    def __init__(self, service: NoticeService) -> None:
        self._service = service

    @staticmethod
    def _call(context: grpc.ServicerContext, action: Callable[[], _T]) -> _T:
        try:
            return action()
        except (ServiceError, ClientExistsError, ValueError) as exc:
            context.abort(_status_for(exc), str(exc))
            raise

    def register(self, request: dict[str, Any], context: grpc.ServicerContext) -> None:
        self._call(context, lambda: self._service.register(_text(request, "id")))

    def add_client(self, request: dict[str, Any], context: grpc.ServicerContext) -> None:
        def action() -> None:
            raw = request.get("metadata") or {}
            if not isinstance(raw, Mapping):
                raise ValueError("field 'metadata' must be an object")
            metadata = {
                str(key): None if value is None else Metadata.from_wire(value)
                for key, value in raw.items()
            }
            self._service.add_client(_server_id(request), _text(request, "id"), metadata)

        self._call(context, action)

    def del_client(self, request: dict[str, Any], context: grpc.ServicerContext) -> None:
        self._call(
            context,
            lambda: self._service.del_client(_server_id(request), _text(request, "id")),
        )

    def send_message(self, request: dict[str, Any], context: grpc.ServicerContext) -> None:
        def action() -> None:
            id_list = request.get("id_list") or []
            if not isinstance(id_list, list) or not all(isinstance(i, str) for i in id_list):
                raise ValueError("field 'id_list' must be a list of strings")
            self._service.send_message(
                _server_id(request),
                _decode_bytes(request.get("message", "")),
                id_list,
                _text(request, "condition").encode("utf-8"),
            )

        self._call(context, action)

    def recv_message(
        self, request: dict[str, Any], context: grpc.ServicerContext
    ) -> Iterator[Delivery]:
        server_id = self._call(context, lambda: _text(request, "id"))
        stream = self._call(context, lambda: self._service.recv_message(server_id))
        context.add_callback(lambda: self._service.drop_server(server_id))
        try:
            for delivery in stream:
                if not context.is_active():
                    break
                yield delivery
        finally:
            stream.close()


def build_grpc_server(
    service: NoticeService | None = None, *, max_workers: int = 32
) -> grpc.Server:
    """Create an unstarted gRPC server exposing the service."""
    servicer = _NoticeServicer(service if service is not None else NoticeService())

    def unary(behaviour: Callable[..., Any]) -> grpc.RpcMethodHandler:
        return grpc.unary_unary_rpc_method_handler(
            behaviour,
            request_deserializer=_decode_json,
            response_serializer=_encode_empty,
        )

    handlers = {
        "Register": unary(servicer.register),
        "AddClient": unary(servicer.add_client),
        "DelClient": unary(servicer.del_client),
        "SendMessage": unary(servicer.send_message),
        "RecvMessage": grpc.unary_stream_rpc_method_handler(
            servicer.recv_message,
            request_deserializer=_decode_json,
            response_serializer=_encode_delivery,
        ),
    }
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(_SERVICE_NAME, handlers),)
    )
    return server


def listen(
    addr: str, *, service: NoticeService | None = None, max_workers: int = 32
) -> None:
    """Serve the notice service on a TCP address until the server terminates."""
    server = build_grpc_server(service, max_workers=max_workers)
    try:
        port = server.add_insecure_port(addr)
    except RuntimeError as exc:
        raise OSError(f"cannot listen on {addr}") from exc
    if port == 0:
        raise OSError(f"cannot listen on {addr}")
    server.start()
    try:
        server.wait_for_termination()
    finally:
        server.stop(None)