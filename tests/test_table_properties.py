import pytest

from errors import ReservedPropertyError
from table_properties import RESERVED_PROPERTIES, TableProperties, validate_updates


@pytest.mark.parametrize("key", sorted(RESERVED_PROPERTIES))
def test_reserved_keys_cannot_be_set(key):
    with pytest.raises(ReservedPropertyError, match=f"Cannot specify the '{key}' because it's a reserved table property"):
        TableProperties().set({key: "value"})


@pytest.mark.parametrize("key", ["sort-order", "identifier-fields"])
def test_reserved_keys_cannot_be_removed(key):
    with pytest.raises(ReservedPropertyError):
        TableProperties({"a": "b"}).remove(key)


def test_set_returns_new_map():
    original = TableProperties({"write.format.default": "parquet"})
    updated = original.set({"comment": "events"}, owner="etl")

    assert dict(original) == {"write.format.default": "parquet"}
    assert dict(updated) == {"write.format.default": "parquet", "comment": "events", "owner": "etl"}
    assert updated["owner"] == "etl"
    assert len(updated) == 3


def test_set_overwrites():
    assert TableProperties({"a": "1"}).set(a="2")["a"] == "2"


def test_remove():
    properties = TableProperties({"a": "1", "b": "2"})
    assert dict(properties.remove("a", "missing")) == {"b": "2"}


def test_values_must_be_strings():
    with pytest.raises(TypeError):
        TableProperties().set(retries=3)


def test_validate_updates_accepts_ordinary_keys():
    validate_updates(["comment", "write.parquet.compression-codec"])


def test_equality_with_dicts():
    assert TableProperties({"a": "1"}) == {"a": "1"}
