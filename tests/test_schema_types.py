import pytest

from errors import IncompatibleTypeError, RequiresDefaultError
from schema_types import (
    BinaryType, BooleanType, DateType, DecimalType, DoubleType, FixedType, FloatType, IntegerType,
    ListType, LongType, MapType, NestedField, StringType, StructType, TimestampNanoType, TimestampType,
    TimeType, UUIDType, VariantType, check_nullability, equivalent, is_promotable, primitive_from_string,
    promote,
)


@pytest.mark.parametrize("from_type,to_type", [
    (IntegerType(), LongType()),
    (FloatType(), DoubleType()),
    (DecimalType(9, 2), DecimalType(18, 2)),
    (DecimalType(9, 2), DecimalType(9, 2)),
    (StringType(), StringType()),
    (LongType(), LongType()),
])
def test_allowed_promotions(from_type, to_type):
    assert promote(from_type, to_type) == to_type
    assert is_promotable(from_type, to_type)


@pytest.mark.parametrize("from_type,to_type", [
    (LongType(), IntegerType()),
    (DoubleType(), FloatType()),
    (IntegerType(), DoubleType()),
    (IntegerType(), StringType()),
    (DecimalType(18, 2), DecimalType(9, 2)),
    (DecimalType(9, 2), DecimalType(9, 3)),
    (FixedType(8), FixedType(16)),
    (DateType(), TimestampType()),
    (TimestampType(False), TimestampType(True)),
    (StringType(), BinaryType()),
])
def test_rejected_promotions(from_type, to_type):
    with pytest.raises(IncompatibleTypeError, match="Cannot change column type"):
        promote(from_type, to_type)
    assert not is_promotable(from_type, to_type)


def test_nested_types_are_never_promoted():
    struct = StructType(NestedField.optional_field(1, "a", IntegerType()))
    with pytest.raises(IncompatibleTypeError):
        promote(struct, struct)


def test_promotion_is_idempotent():
    once = promote(IntegerType(), LongType())
    assert promote(once, LongType()) == once


def test_check_nullability():
    check_nullability("x", True, False)
    check_nullability("x", False, True, default=0)
    check_nullability("x", True, True)
    with pytest.raises(RequiresDefaultError, match="REQUIRES_DEFAULT"):
        check_nullability("x", False, True)


def test_decimal_validation():
    with pytest.raises(ValueError):
        DecimalType(39, 0)
    with pytest.raises(ValueError):
        DecimalType(5, 6)


@pytest.mark.parametrize("text,expected", [
    ("boolean", BooleanType()),
    ("int", IntegerType()),
    ("long", LongType()),
    ("float", FloatType()),
    ("double", DoubleType()),
    ("date", DateType()),
    ("time", TimeType()),
    ("timestamp", TimestampType(False)),
    ("timestamptz", TimestampType(True)),
    ("timestamp_ns", TimestampNanoType(False)),
    ("timestamptz_ns", TimestampNanoType(True)),
    ("string", StringType()),
    ("uuid", UUIDType()),
    ("binary", BinaryType()),
    ("variant", VariantType()),
    ("decimal(9, 2)", DecimalType(9, 2)),
    ("decimal(38,10)", DecimalType(38, 10)),
    ("fixed[16]", FixedType(16)),
])
def test_primitive_from_string(text, expected):
    assert primitive_from_string(text) == expected
    assert primitive_from_string(str(expected)) == expected


def test_primitive_from_string_rejects_unknown():
    with pytest.raises(ValueError):
        primitive_from_string("varchar")


class TestEquivalent:
    def test_struct_fields_match_by_id(self):
        a = StructType(
            NestedField.required_field(1, "x", IntegerType()),
            NestedField.optional_field(2, "y", StringType()),
        )
        renamed_and_reordered = StructType(
            NestedField.optional_field(2, "why", StringType()),
            NestedField.required_field(1, "ex", IntegerType()),
        )
        assert equivalent(a, renamed_and_reordered)
        assert a != renamed_and_reordered

    def test_different_ids_are_not_equivalent(self):
        a = StructType(NestedField.required_field(1, "x", IntegerType()))
        b = StructType(NestedField.required_field(2, "x", IntegerType()))
        assert not equivalent(a, b)

    def test_required_flag_matters(self):
        a = ListType.of(1, LongType(), element_required=True)
        b = ListType.of(1, LongType(), element_required=False)
        assert not equivalent(a, b)

    def test_nested_maps(self):
        a = MapType.of(1, StringType(), 2, StructType(NestedField.optional_field(3, "v", DoubleType())))
        b = MapType.of(1, StringType(), 2, StructType(NestedField.optional_field(3, "value", DoubleType())))
        assert equivalent(a, b)

    def test_primitives(self):
        assert equivalent(DecimalType(9, 2), DecimalType(9, 2))
        assert not equivalent(IntegerType(), LongType())


def test_map_keys_are_required():
    map_type = MapType.of(1, StringType(), 2, IntegerType())
    assert map_type.key_field.required
    assert map_type.value_field.optional


def test_type_strings():
    assert str(ListType.of(1, IntegerType())) == "list<int>"
    assert str(MapType.of(1, StringType(), 2, DecimalType(9, 2))) == "map<string, decimal(9, 2)>"
    assert str(NestedField.required_field(1, "id", LongType(), doc="row id")) == "1: id: required long (row id)"
