import json
import string

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from errors import MapKeyImmutableError
from random_data import generate
from records import Record
from resolver import build_plan
from schema import Schema
from schema_types import (
    DoubleType, FloatType, IntegerType, ListType, LongType, MapType, NestedField, StringType, StructType,
)
from schema_update import UpdateSchema
from variant_builder import VariantBuilder

BASE = Schema(
    NestedField.required_field(1, "a", LongType()),
    NestedField.optional_field(2, "b", IntegerType()),
    NestedField.optional_field(3, "c", FloatType()),
    NestedField.optional_field(4, "d", StructType(
        NestedField.optional_field(5, "x", StringType()),
        NestedField.optional_field(6, "y", ListType.of(7, IntegerType())),
    )),
    NestedField.optional_field(8, "e", MapType.of(
        9, StructType(NestedField.required_field(11, "k", StringType())),
        10, StructType(NestedField.optional_field(12, "w", IntegerType())),
    )),
)

TOP_LEVEL = ["a", "b", "c", "d", "e"]
MAP_KEY_PATHS = ["e.key", "e.key.k"]

names = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=8)

json_values = st.recursive(
    st.none() | st.booleans() | st.integers(-2 ** 63, 2 ** 63 - 1) | st.text(max_size=80),
    lambda children: st.lists(children, max_size=5) | st.dictionaries(st.text(max_size=10), children, max_size=5),
    max_leaves=20,
)


@given(st.permutations(TOP_LEVEL), names, st.sampled_from(TOP_LEVEL))
def test_ids_survive_moves_and_renames(order, new_name, renamed):
    update = UpdateSchema(BASE)
    for name in order:
        update.move_first(name)
    update.update_column_doc("d.x", new_name)
    update.rename_column(renamed, "renamed_" + new_name)
    evolved = update.apply()

    assert [f.name for f in evolved.fields if f.name in TOP_LEVEL] == [n for n in reversed(order) if n != renamed]
    assert evolved.field_ids() == BASE.field_ids()
    for field_id in BASE.field_ids():
        assert evolved.find_type(field_id).type_id == BASE.find_type(field_id).type_id


@given(st.sampled_from(TOP_LEVEL))
def test_promotion_keeps_ids(name):
    update = UpdateSchema(BASE)
    if name == "b":
        update.update_column("b", LongType())
    elif name == "c":
        update.update_column("c", DoubleType())
    update.move_after(name, "e")
    evolved = update.apply()

    assert evolved.fields[-1].field_id == BASE.find_field_id(name)
    assert evolved.field_ids() == BASE.field_ids()


@settings(max_examples=25)
@given(st.integers(min_value=0, max_value=2 ** 32))
def test_generated_records_resolve_through_evolution(seed):
    evolved = (UpdateSchema(BASE)
               .update_column("b", LongType())
               .update_column("c", DoubleType())
               .rename_column("d.x", "label")
               .add_column(None, "z", IntegerType(), default=-1)
               .move_first("e")
               .apply())
    plan = build_plan(evolved, BASE)

    for record in generate(BASE, 5, seed=seed):
        projected = plan.apply(record)
        assert projected["z"] == -1
        for f in BASE.fields:
            assert projected.get_by_id(f.field_id) == record.get_by_id(f.field_id)


@given(json_values)
def test_variant_python_round_trip(value):
    unsorted = VariantBuilder.from_python(value)
    sorted_keys = VariantBuilder.from_python(value, sort_keys=True)

    assert unsorted == sorted_keys
    assert unsorted.decode().to_python() == value
    assert json.loads(unsorted.to_json()) == value


@pytest.mark.parametrize("path", MAP_KEY_PATHS)
@pytest.mark.parametrize("change", [
    lambda u, p: u.rename_column(p, "other"),
    lambda u, p: u.delete_column(p),
    lambda u, p: u.make_column_optional(p),
    lambda u, p: u.move_first(p),
    lambda u, p: u.update_column(p, LongType()),
    lambda u, p: u.add_column(p, "extra", IntegerType()),
])
def test_map_keys_cannot_change(path, change):
    with pytest.raises(MapKeyImmutableError):
        change(UpdateSchema(BASE), path).apply()


def test_struct_records_are_rebuilt_for_new_layout():
    evolved = UpdateSchema(BASE).move_first("d.y").apply()
    d_type = BASE.find_type(4)
    record = Record.of(BASE.as_struct(), a=1, d=Record(d_type, ["x", [1, 2]]))

    projected = build_plan(evolved, BASE).apply(record)
    assert projected["d"].values() == ([1, 2], "x")
