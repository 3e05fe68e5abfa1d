"""Conditions that select clients by their metadata, and their JSON form."""

from __future__ import annotations

import json
import math
import operator
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Any, ClassVar, Optional

from .metadata import Metadata, MetadataKind

MetadataMap = Mapping[str, Optional[Metadata]]

_UINT64_LIMIT = 1 << 64
_INT64_HALF = 1 << 63


class ConditionError(ValueError):
    """Raised when a condition cannot be built, converted or decoded."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_integer(value: Any) -> int:
    if not _is_number(value):
        raise ConditionError("unknown type")
    if isinstance(value, float) and not math.isfinite(value):
        raise ConditionError("unknown type")
    return int(value)


def _as_int64(value: Any) -> int:
    return (_as_integer(value) + _INT64_HALF) % _UINT64_LIMIT - _INT64_HALF


def _as_uint64(value: Any) -> int:
    return _as_integer(value) % _UINT64_LIMIT


def _as_float(value: Any) -> float:
    if not _is_number(value):
        raise ConditionError("unknown type")
    try:
        return float(value)
    except OverflowError as exc:
        raise ConditionError("unknown type") from exc


def _as_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ConditionError("unknown type")
    return value


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConditionError("unknown type")
    return value


_CONVERTERS: dict[MetadataKind, Callable[[Any], Any]] = {
    MetadataKind.INT: _as_int64,
    MetadataKind.UINT: _as_uint64,
    MetadataKind.FLOAT: _as_float,
    MetadataKind.STRING: _as_string,
    MetadataKind.BOOL: _as_bool,
}


def convert_metadata(metadata: Metadata | None, *args: Any) -> tuple[Any, list[Any]]:
    """Return the metadata value and the given values converted to its kind."""
    if metadata is None:
        raise ConditionError("undefined metadata")
    if not isinstance(metadata, Metadata):
        raise ConditionError("invalid metadata")
    convert = _CONVERTERS[metadata.kind]
    return metadata.value, [convert(value) for value in args]


def convert_float(value: Any) -> float:
    """Convert a numeric value to float."""
    if not _is_number(value):
        raise ConditionError("unsupported float64")
    try:
        return float(value)
    except OverflowError as exc:
        raise ConditionError("unsupported float64") from exc


class Condition(ABC):
    """A predicate over a client's metadata."""

    sign: ClassVar[int]

    @abstractmethod
    def verify(self) -> bool:
        """Return whether the current metadata satisfies the condition."""

    @abstractmethod
    def set_metadata(self, metadata: MetadataMap | None) -> None:
        """Attach the metadata that :meth:`verify` checks."""

    @abstractmethod
    def to_list(self) -> list[Any]:
        """Return the JSON-ready list form, starting with the sign."""

    @classmethod
    @abstractmethod
    def from_list(cls, items: Sequence[Any]) -> "Condition":
        """Build the condition from its list form."""


_registry: dict[int, type[Condition]] = {}
_registry_lock = threading.Lock()


def register_condition(cls: type[Condition]) -> type[Condition]:
    """Register a condition class under its sign; usable as a decorator."""
    sign = getattr(cls, "sign", None)
    if not isinstance(sign, int) or isinstance(sign, bool) or not 0 <= sign <= 255:
        raise ConditionError("invalid condition sign")
    with _registry_lock:
        if sign in _registry:
            raise ConditionError("duplicate condition registered")
        _registry[sign] = cls
    return cls


def _lookup(sign: int) -> type[Condition] | None:
    with _registry_lock:
        return _registry.get(sign)


def _unmarshal_fail(cls: type) -> ConditionError:
    return ConditionError(f"'{cls.__name__}' unmarshal fail")


class _Logical(Condition):
    def __init__(self, *conditions: Condition) -> None:
        self.conditions: list[Condition] = list(conditions)

    def set_metadata(self, metadata: MetadataMap | None) -> None:
        for condition in self.conditions:
            condition.set_metadata(metadata)

    def to_list(self) -> list[Any]:
        return [self.sign, [condition.to_list() for condition in self.conditions]]

    @classmethod
    def from_list(cls, items: Sequence[Any]) -> "_Logical":
        if len(items) != 2:
            raise _unmarshal_fail(cls)
        children = items[1] if isinstance(items[1], list) else []
        parsed = []
        for child in children:
            if not isinstance(child, list):
                raise _unmarshal_fail(cls)
            condition = unmarshal_condition_list(child)
            if condition is None:
                raise _unmarshal_fail(cls)
            parsed.append(condition)
        return cls(*parsed)

    def __iter__(self) -> Iterator[Condition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def __eq__(self, other: object) -> bool:
        if other.__class__ is not self.__class__:
            return NotImplemented
        return self.conditions == other.conditions  # type: ignore[attr-defined]

    def __repr__(self) -> str:
        inner = ", ".join(repr(condition) for condition in self.conditions)
        return f"{type(self).__name__}({inner})"


@register_condition
class And(_Logical):
    """Holds when every inner condition holds."""

    sign = 0

    def verify(self) -> bool:
        return all(condition.verify() for condition in self.conditions)


@register_condition
class Or(_Logical):
    """Holds when any inner condition holds."""

    sign = 1

    def verify(self) -> bool:
        return any(condition.verify() for condition in self.conditions)


@dataclass
class _FieldCondition(Condition):
    field: str
    value: Any
    _metadata: Optional[MetadataMap] = dc_field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        pass

    def set_metadata(self, metadata: MetadataMap | None) -> None:
        self._metadata = metadata

    def _resolve(self, *values: Any) -> tuple[Any, list[Any]] | None:
        if self._metadata is None:
            return None
        try:
            return convert_metadata(self._metadata.get(self.field), *values)
        except ConditionError:
            return None

    def to_list(self) -> list[Any]:
        return [self.sign, self.field, self.value]

    @classmethod
    def _check_list(cls, items: Sequence[Any]) -> None:
        if len(items) != 3 or not isinstance(items[1], str):
            raise _unmarshal_fail(cls)

    @classmethod
    def from_list(cls, items: Sequence[Any]) -> "_FieldCondition":
        cls._check_list(items)
        return cls(items[1], items[2])


class _Scalar(_FieldCondition):
    def verify(self) -> bool:
        resolved = self._resolve(self.value)
        if resolved is None:
            return False
        data, (value,) = resolved
        return self._holds(data, value)

    def _holds(self, data: Any, value: Any) -> bool:
        raise NotImplementedError


class _Ordered(_Scalar):
    _op: ClassVar[Callable[[float, float], bool]]

    def _holds(self, data: Any, value: Any) -> bool:
        try:
            return self._op(convert_float(data), convert_float(value))
        except ConditionError:
            return False


@register_condition
class Eq(_Scalar):
    """Holds when the field equals the value."""

    sign = 2

    def _holds(self, data: Any, value: Any) -> bool:
        return data == value


@register_condition
class Neq(_Scalar):
    """Holds when the field differs from the value."""

    sign = 3

    def _holds(self, data: Any, value: Any) -> bool:
        return data != value


@register_condition
class Gt(_Ordered):
    """Holds when the field is greater than the value."""

    sign = 4
    _op = operator.gt


@register_condition
class Gte(_Ordered):
    """Holds when the field is greater than or equal to the value."""

    sign = 5
    _op = operator.ge


@register_condition
class Lt(_Ordered):
    """Holds when the field is less than the value."""

    sign = 6
    _op = operator.lt


@register_condition
class Lte(_Ordered):
    """Holds when the field is less than or equal to the value."""

    sign = 7
    _op = operator.le


class _Membership(_FieldCondition):
    def __post_init__(self) -> None:
        if isinstance(self.value, (str, bytes)) or not isinstance(self.value, Sequence):
            raise ConditionError(f"'{type(self).__name__}' needs a list of values")
        self.value = list(self.value)

    @classmethod
    def from_list(cls, items: Sequence[Any]) -> "_Membership":
        cls._check_list(items)
        if not isinstance(items[2], list):
            raise _unmarshal_fail(cls)
        return cls(items[1], items[2])

    def _matches(self) -> bool | None:
        resolved = self._resolve(*self.value)
        if resolved is None:
            return None
        data, values = resolved
        return data in values


@register_condition
class In(_Membership):
    """Holds when the field equals one of the values."""

    sign = 8

    def verify(self) -> bool:
        return self._matches() is True


@register_condition
class NotIn(_Membership):
    """Holds when the field equals none of the values."""

    sign = 9

    def verify(self) -> bool:
        return self._matches() is False


def marshal_condition(condition: Condition | None) -> bytes:
    """Encode a condition, or None, as compact JSON bytes."""
    payload = None if condition is None else condition.to_list()
    try:
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ConditionError(f"cannot encode condition: {exc}") from exc
    return text.encode("utf-8")


def unmarshal_condition(data: bytes | str | None) -> Condition | None:
    """Decode JSON bytes into a condition; empty input or null gives None."""
    if not data:
        return None
    try:
        parsed = json.loads(data)
    except ValueError as exc:
        raise ConditionError(f"invalid condition JSON: {exc}") from exc
    if parsed is None:
        return None
    if not isinstance(parsed, list):
        raise ConditionError("condition must be a JSON array")
    return unmarshal_condition_list(parsed)


def unmarshal_condition_list(items: Sequence[Any]) -> Condition | None:
    """Build a condition from its list form; an empty list gives None."""
    if not items:
        return None
    sign = items[0]
    if not _is_number(sign) or (isinstance(sign, float) and not math.isfinite(sign)):
        raise ConditionError("unsupported Condition")
    cls = _lookup(int(sign))
    if cls is None:
        raise ConditionError("unsupported Condition")
    return cls.from_list(list(items))