import pytest

from noticehub.metadata import Metadata, MetadataKind, UInt, to_metadata


def test_int_becomes_int_metadata():
    assert to_metadata(42) == Metadata(MetadataKind.INT, 42)


def test_bool_is_not_treated_as_int():
    meta = to_metadata(True)
    assert meta.kind is MetadataKind.BOOL
    assert meta.value is True


def test_uint_marker_becomes_uint_metadata():
    meta = to_metadata(UInt(7))
    assert meta.kind is MetadataKind.UINT
    assert meta.value == 7


def test_float_and_string():
    assert to_metadata(1.5) == Metadata(MetadataKind.FLOAT, 1.5)
    assert to_metadata("text") == Metadata(MetadataKind.STRING, "text")


@pytest.mark.parametrize("value", [None, [1], {"a": 1}, b"raw", (1, 2)])
def test_unsupported_values_give_none(value):
    assert to_metadata(value) is None


def test_int_limits():
    assert to_metadata(-(2**63)).value == -(2**63)
    assert to_metadata(2**63 - 1).value == 2**63 - 1
    with pytest.raises(ValueError):
        to_metadata(2**63)


@pytest.mark.parametrize("value", [-1, 2**64])
def test_uint_range_enforced(value):
    with pytest.raises(ValueError):
        UInt(value)


def test_uint_upper_bound_accepted():
    assert UInt(2**64 - 1) == 2**64 - 1


@pytest.mark.parametrize("value", [0, -5, UInt(9), 1.25, "text", False, True])
def test_wire_round_trip(value):
    meta = to_metadata(value)
    assert Metadata.from_wire(meta.to_wire()) == meta


def test_wire_shape():
    assert Metadata(MetadataKind.STRING, "hi").to_wire() == {"string": "hi"}


def test_from_wire_float_accepts_integer():
    meta = Metadata.from_wire({"float": 2})
    assert isinstance(meta.value, float)
    assert meta.value == 2


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"int": "x"},
        {"int": True},
        {"int": 1, "bool": True},
        {"nope": 1},
        {"uint": -3},
        {"bool": 1},
        {"string": 5},
        [("int", 1)],
    ],
)
def test_from_wire_rejects_bad_data(data):
    with pytest.raises(ValueError):
        Metadata.from_wire(data)


def test_metadata_validates_on_construction():
    with pytest.raises(ValueError):
        Metadata(MetadataKind.INT, True)
    with pytest.raises(ValueError):
        Metadata(MetadataKind.FLOAT, "1.0")