"""Client for a remote notice hub."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import grpc

from .conditions import Condition, marshal_condition
from .metadata import Metadata, to_metadata
from .service import (
    _decode_delivery,
    _decode_empty,
    _encode_bytes,
    _encode_json,
    _method_path,
)


def _metadata_to_wire(value: Any) -> dict[str, Any] | None:
    metadata = value if isinstance(value, Metadata) else to_metadata(value)
    return None if metadata is None else metadata.to_wire()


class NoticeClient:
    """A server registered with a notice hub, owning clients and receiving their messages."""

    def __init__(self, channel: grpc.Channel, server_id: str) -> None:
        self._channel = channel
        self.server_id = server_id

        def unary(name: str) -> Any:
            return channel.unary_unary(
                _method_path(name),
                request_serializer=_encode_json,
                response_deserializer=_decode_empty,
            )

        self._register = unary("Register")
        self._add_client = unary("AddClient")
        self._del_client = unary("DelClient")
        self._send_message = unary("SendMessage")
        self._recv_message = channel.unary_stream(
            _method_path("RecvMessage"),
            request_serializer=_encode_json,
            response_deserializer=_decode_delivery,
        )

    def _server(self) -> dict[str, str]:
        return {"id": self.server_id}

    def _register_server(self) -> None:
        self._register(self._server())

    def add_client(self, client_id: str, metadata: Mapping[str, Any] | None = None) -> None:
        """Attach a client to this server; unsupported metadata values are sent empty."""
        wire = {str(key): _metadata_to_wire(value) for key, value in (metadata or {}).items()}
        self._add_client({"server": self._server(), "id": client_id, "metadata": wire})

    def del_client(self, client_id: str) -> None:
        """Detach a client from this server."""
        self._del_client({"server": self._server(), "id": client_id})

    def send_message(
        self,
        message: bytes,
        id_list: Iterable[str] | None = None,
        condition: Condition | None = None,
    ) -> None:
        """Send a message to the clients matching the ids and condition."""
        self._send_message(
            {
                "server": self._server(),
                "message": _encode_bytes(bytes(message)),
                "id_list": list(id_list or []),
                "condition": marshal_condition(condition).decode("utf-8"),
            }
        )

    def recv_message(self, callback: Callable[[str, bytes], Any]) -> None:
        """Call ``callback(client_id, message)`` for every message until the stream ends."""
        stream = self._recv_message(self._server())
        try:
            for delivery in stream:
                if delivery.heartbeat:
                    continue
                callback(delivery.client_id, delivery.message)
        finally:
            stream.cancel()

    def close(self) -> None:
        """Close the connection to the hub."""
        self._channel.close()

    def __enter__(self) -> "NoticeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def dial(addr: str) -> NoticeClient:
    """Connect to a hub and register a new server with a random id."""
    channel = grpc.insecure_channel(addr)
    client = NoticeClient(channel, str(uuid.uuid4()))
    try:
        client._register_server()
    except BaseException:
        channel.close()
        raise
    return client