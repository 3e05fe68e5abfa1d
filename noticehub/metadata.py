"""Typed metadata values attached to clients."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_LIMIT = 1 << 64

MetadataValue = Union[int, float, str, bool]


class MetadataKind(str, Enum):
    """The kind of value a metadata entry holds."""

    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    STRING = "string"
    BOOL = "bool"


class UInt(int):
    """An integer that is stored as unsigned 64-bit metadata."""

    def __new__(cls, value: Any = 0) -> "UInt":
        obj = super().__new__(cls, value)
        if not 0 <= obj < _UINT64_LIMIT:
            raise ValueError(f"unsigned value out of range: {int(obj)}")
        return obj

    def __repr__(self) -> str:
        return f"UInt({int(self)})"


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Metadata:
    """A single typed metadata value."""

    kind: MetadataKind
    value: MetadataValue

    def __post_init__(self) -> None:
        kind = MetadataKind(self.kind)
        object.__setattr__(self, "kind", kind)
        value = self.value
        if kind is MetadataKind.INT:
            if not _is_integer(value) or not _INT64_MIN <= value <= _INT64_MAX:
                raise ValueError(f"invalid int metadata: {value!r}")
            object.__setattr__(self, "value", int(value))
        elif kind is MetadataKind.UINT:
            if not _is_integer(value) or not 0 <= value < _UINT64_LIMIT:
                raise ValueError(f"invalid uint metadata: {value!r}")
            object.__setattr__(self, "value", int(value))
        elif kind is MetadataKind.FLOAT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"invalid float metadata: {value!r}")
            try:
                object.__setattr__(self, "value", float(value))
            except OverflowError as exc:
                raise ValueError(f"invalid float metadata: {value!r}") from exc
        elif kind is MetadataKind.STRING:
            if not isinstance(value, str):
                raise ValueError(f"invalid string metadata: {value!r}")
        elif not isinstance(value, bool):
            raise ValueError(f"invalid bool metadata: {value!r}")

    def to_wire(self) -> dict[str, MetadataValue]:
        """Return a JSON-friendly mapping of the kind name to the value."""
        return {self.kind.value: self.value}

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "Metadata":
        """Build metadata from the mapping produced by :meth:`to_wire`."""
        if not isinstance(data, Mapping) or len(data) != 1:
            raise ValueError("metadata must hold exactly one typed value")
        ((key, value),) = data.items()
        try:
            kind = MetadataKind(key)
        except ValueError as exc:
            raise ValueError(f"unknown metadata kind: {key!r}") from exc
        return cls(kind, value)


def to_metadata(value: Any) -> Metadata | None:
    """Wrap a plain value as metadata, or return None for unsupported types."""
    if isinstance(value, bool):
        return Metadata(MetadataKind.BOOL, value)
    if isinstance(value, UInt):
        return Metadata(MetadataKind.UINT, int(value))
    if isinstance(value, int):
        return Metadata(MetadataKind.INT, value)
    if isinstance(value, float):
        return Metadata(MetadataKind.FLOAT, value)
    if isinstance(value, str):
        return Metadata(MetadataKind.STRING, value)
    return None