# noticehub

`noticehub` is a small notification hub built on gRPC. Application servers
register with the hub, announce the clients they hold together with a little
typed metadata about each, and then push messages to those clients. A message
can go to an explicit list of client ids, to every client whose metadata
satisfies a condition, or to both at once. Each application server receives,
over a streaming call, the messages meant for its own clients.

## Installation

```
pip install noticehub
```

To run the test suite:

```
pip install "noticehub[test]"
pytest
```

## Running the hub

```python
from noticehub.service import NoticeService, listen

listen("127.0.0.1:50051", service=NoticeService(), max_workers=10)
```

`listen` binds an insecure TCP port and blocks until the server terminates; it
raises `OSError` if the address cannot be bound. Both keyword arguments are
optional (a fresh `NoticeService` and 32 worker threads by default). To start
and stop the server yourself, `build_grpc_server(service, max_workers=...)`
returns an unstarted `grpc.Server` with the service attached.

`NoticeService(heartbeat_interval=1.0)` can also be used directly, in the same
process, without gRPC:

- `register(server_id)` — raises `ServerAlreadyRegisteredError` for a known id.
- `add_client(server_id, client_id, metadata)` and
  `del_client(server_id, client_id)` — raise `ServerNotFoundError` for an
  unknown server; `add_client` raises `noticehub.registry.ClientExistsError`
  when the client id is already present anywhere in the hub.
- `send_message(server_id, message, id_list, condition)` — queues the message
  for every matching client and returns how many were queued. The condition may
  be a `Condition` object, its JSON form, or `None`.
- `recv_message(server_id)` — returns an endless iterator of `Delivery` objects
  (`client_id`, `message`, `heartbeat`). When no message arrives within the
  heartbeat interval a heartbeat delivery is yielded. Closing the iterator drops
  the server, and the iterator ends once the server has been dropped.
- `drop_server(server_id)` — forgets the server and all of its clients.

The state lives in `ClientRegistry` and `ServerRegistry` from
`noticehub.registry`, exposed as the service's `clients` and `servers`
attributes.

## Connecting an application server

```python
from noticehub.client import dial
from noticehub.conditions import Gte

client = dial("127.0.0.1:50051")

client.add_client("user-1", {"room": "lobby", "level": 3})
client.add_client("user-2", {"room": "lobby", "level": 7})

# Everyone with level 5 or more.
client.send_message(b"hello", [], Gte(field="level", value=5))

# Only user-1, with no condition.
client.send_message(b"hi", ["user-1"], None)
```

`dial` opens an insecure channel and registers it with the hub under a freshly
generated UUID, available as `client.server_id`. Errors reported by the hub,
such as adding a client id that already exists, reach the caller as
`grpc.RpcError`. Metadata values that cannot be converted are sent as empty
entries, which no condition matches.

To receive messages, pass a callback to `recv_message`. It is called with the
client id and the message bytes for every delivery; heartbeats are skipped. The
call blocks until the stream ends or fails:

```python
def on_message(client_id: str, message: bytes) -> None:
    print(client_id, message)

client.recv_message(on_message)
```

Remove a client with `client.del_client("user-1")` and release the connection
with `client.close()`. A `NoticeClient` is also a context manager that closes
itself on exit.

## Metadata

Metadata values may be integers, floats, strings or booleans. Plain Python
`int` values are stored as signed 64-bit integers; wrap a value in
`noticehub.metadata.UInt` to store it as an unsigned one.
`noticehub.metadata.to_metadata` performs the conversion to a `Metadata` value
and returns `None` for unsupported values. `Metadata.to_wire()` and
`Metadata.from_wire()` convert to and from a one-entry mapping such as
`{"int": 3}`.

## Conditions

The `noticehub.conditions` module provides:

| Class   | Meaning                                     | Sign |
|---------|---------------------------------------------|------|
| `And`   | every nested condition holds                | 0    |
| `Or`    | at least one nested condition holds         | 1    |
| `Eq`    | field equals value                          | 2    |
| `Neq`   | field differs from value                    | 3    |
| `Gt`    | field is greater than value                 | 4    |
| `Gte`   | field is greater than or equal to value     | 5    |
| `Lt`    | field is less than value                    | 6    |
| `Lte`   | field is less than or equal to value        | 7    |
| `In`    | field equals one of the values              | 8    |
| `NotIn` | field equals none of the values             | 9    |

`And` and `Or` take their nested conditions as positional arguments; the
others take `field` and `value` (a list for `In` and `NotIn`).

A field condition fails when the client has no metadata for the field or when
the value cannot be converted to the stored type. Values are converted to the
stored type before comparing, so a number compared with an integer field is
truncated to an integer first. The ordering conditions only hold for numeric
fields.

On the wire a condition is a JSON array whose first element is its sign, for
example `[2, "room", "lobby"]` or `[0, [[2, "room", "lobby"], [5, "level", 5]]]`.
`marshal_condition` and `unmarshal_condition` convert between condition
objects and this form (`None` and empty input map to no condition); malformed
input raises `ConditionError`. Your own condition types can take part by
subclassing `Condition`, giving them a `sign` between 0 and 255 that is not yet
in use, and passing the class to `register_condition`.

## What it does not do

- Requests and responses travel as JSON bodies over the gRPC service
  `notice.Notice`; there is no protobuf schema, so only `noticehub` clients can
  talk to a `noticehub` hub.
- Connections are insecure: neither `listen` nor `dial` sets up TLS or
  authentication.
- All state is held in memory; nothing survives a restart of the hub.
- There is no command-line program; the hub is started from Python with
  `listen`.