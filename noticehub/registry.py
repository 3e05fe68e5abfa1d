"""In-memory registries of notice servers and the clients they own."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from queue import Queue
from typing import Any, Optional

from .conditions import Condition
from .metadata import Metadata


class ClientExistsError(Exception):
    """Raised when a client id is already registered."""

    def __init__(self, client_id: str) -> None:
        super().__init__("client is exist")
        self.client_id = client_id


@dataclass(frozen=True)
class RegisteredClient:
    """A client known to the hub, the server that owns it and its metadata."""

    client_id: str
    server_id: str
    metadata: Mapping[str, Optional[Metadata]] = field(default_factory=dict)


class ClientRegistry:
    """Thread-safe, ordered collection of registered clients."""

    def __init__(self) -> None:
        self._clients: list[RegisteredClient] = []
        self._lock = threading.Lock()

    def add(
        self,
        client_id: str,
        server_id: str,
        metadata: Mapping[str, Optional[Metadata]] | None,
    ) -> RegisteredClient:
        """Register a client; client ids are unique across all servers."""
        with self._lock:
            if any(client.client_id == client_id for client in self._clients):
                raise ClientExistsError(client_id)
            client = RegisteredClient(client_id, server_id, dict(metadata or {}))
            self._clients.append(client)
            return client

    def remove(self, client_id: str, server_id: str) -> None:
        """Forget the client with this id if the given server owns it."""
        with self._lock:
            self._clients = [
                client
                for client in self._clients
                if not (client.client_id == client_id and client.server_id == server_id)
            ]

    def remove_server(self, server_id: str) -> None:
        """Forget every client owned by the given server."""
        with self._lock:
            self._clients = [
                client for client in self._clients if client.server_id != server_id
            ]

    def search(
        self,
        id_list: Iterable[str] | None = None,
        condition: Condition | None = None,
    ) -> list[RegisteredClient]:
        """Return clients, in registration order, matching the ids and condition.

        An empty or missing id list matches every client; a missing condition
        matches every client.
        """
        wanted = set(id_list) if id_list else None
        with self._lock:
            found = []
            for client in self._clients:
                if wanted is not None and client.client_id not in wanted:
                    continue
                if condition is not None:
                    condition.set_metadata(client.metadata)
                    if not condition.verify():
                        continue
                found.append(client)
            return found

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __iter__(self) -> Iterator[RegisteredClient]:
        with self._lock:
            return iter(list(self._clients))


class ServerRegistry:
    """Thread-safe map from server id to the queue of its pending deliveries."""

    def __init__(self, clients: ClientRegistry | None = None) -> None:
        self._queues: dict[str, Queue[Any]] = {}
        self._lock = threading.Lock()
        self.clients = clients

    def is_registered(self, server_id: str) -> bool:
        """Return whether a server with this id is registered."""
        with self._lock:
            return server_id in self._queues

    def add(self, server_id: str, queue: Queue[Any]) -> None:
        """Register a server with the queue its deliveries go to."""
        with self._lock:
            self._queues[server_id] = queue

    def remove(self, server_id: str) -> None:
        """Unregister a server together with all of its clients."""
        with self._lock:
            if self.clients is not None:
                self.clients.remove_server(server_id)
            self._queues.pop(server_id, None)

    def get(self, server_id: str) -> Queue[Any] | None:
        """Return the server's queue, or None if it is not registered."""
        with self._lock:
            return self._queues.get(server_id)

    def __contains__(self, server_id: object) -> bool:
        with self._lock:
            return server_id in self._queues

    def __len__(self) -> int:
        with self._lock:
            return len(self._queues)