import pytest

from comparators import to_internal, values_equal
from random_data import RandomDataGenerator, generate, generate_variant
from resolver import build_plan
from schema import Schema
from schema_types import (
    BinaryType, BooleanType, DateType, DecimalType, DoubleType, FixedType, FloatType, IntegerType, ListType,
    LongType, MapType, NestedField, StringType, StructType, TimestampNanoType, TimestampType, TimeType, UUIDType,
    VariantType,
)

ALL_PRIMITIVES = Schema(
    NestedField.required_field(1, "b", BooleanType()),
    NestedField.required_field(2, "i", IntegerType()),
    NestedField.required_field(3, "l", LongType()),
    NestedField.required_field(4, "f", FloatType()),
    NestedField.required_field(5, "d", DoubleType()),
    NestedField.required_field(6, "dec", DecimalType(38, 10)),
    NestedField.required_field(7, "date", DateType()),
    NestedField.required_field(8, "time", TimeType()),
    NestedField.required_field(9, "ts", TimestampType(False)),
    NestedField.required_field(10, "tstz", TimestampType(True)),
    NestedField.required_field(11, "ts_ns", TimestampNanoType(True)),
    NestedField.required_field(12, "s", StringType()),
    NestedField.required_field(13, "u", UUIDType()),
    NestedField.required_field(14, "fixed", FixedType(7)),
    NestedField.required_field(15, "bin", BinaryType()),
    NestedField.optional_field(16, "v", VariantType()),
)


def test_same_seed_same_records(nested_schema):
    assert generate(nested_schema, 10, seed=42) == generate(nested_schema, 10, seed=42)
    assert generate(nested_schema, 10, seed=42) != generate(nested_schema, 10, seed=43)


def test_values_are_valid_for_their_types():
    for record in generate(ALL_PRIMITIVES, 50, seed=1):
        for f, value in zip(ALL_PRIMITIVES.fields, record):
            if value is not None:
                to_internal(f.field_type, value)


def test_required_fields_are_never_null(nested_schema):
    for record in RandomDataGenerator(seed=5, null_rate=1.0).records(nested_schema, 20):
        assert record["id"] is not None
        assert record["locations"] is not None
        assert record["data"] is None


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_identity_resolution_of_generated_records(nested_schema, seed):
    plan = build_plan(nested_schema, nested_schema)
    for record in generate(nested_schema, 25, seed=seed):
        assert plan.apply(record) == record
        assert values_equal(nested_schema.as_struct(), plan.apply(record), record)


def test_generated_variants():
    assert generate_variant(seed=9) == generate_variant(seed=9)
    v = generate_variant(seed=9, max_depth=3)
    assert v.decode() is not None


@pytest.mark.parametrize("key_type", [
    VariantType(),
    StructType(NestedField.required_field(12, "tags", ListType.of(13, StringType()))),
])
def test_maps_with_unhashable_keys(key_type):
    schema = Schema(NestedField.required_field(1, "m", MapType.of(10, key_type, 11, IntegerType())))
    generator = RandomDataGenerator(seed=3, max_elements=6)
    for record in generator.records(schema, 20):
        pairs = record["m"]
        assert isinstance(pairs, list)
        keys = [k for k, _ in pairs]
        for i, k in enumerate(keys):
            assert not any(values_equal(key_type, k, other) for other in keys[i + 1:])
        assert build_plan(schema, schema).apply(record) == record
