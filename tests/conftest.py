import pytest

from schema import Schema
from schema_types import (
    DoubleType, IntegerType, ListType, LongType, MapType, NestedField, StringType, StructType,
)


@pytest.fixture
def simple_schema():
    """{1: id long required, 2: data string optional}"""
    return Schema(
        NestedField.required_field(1, "id", LongType()),
        NestedField.optional_field(2, "data", StringType()),
    )


@pytest.fixture
def nested_schema():
    """A schema with a struct, a list of structs and a map with struct keys and values"""
    return Schema(
        NestedField.required_field(1, "id", IntegerType()),
        NestedField.optional_field(2, "data", StringType()),
        NestedField.optional_field(3, "preferences", StructType(
            NestedField.required_field(8, "feature1", IntegerType()),
            NestedField.optional_field(9, "feature2", IntegerType()),
        )),
        NestedField.required_field(4, "locations", MapType(
            NestedField(10, "key", StructType(
                NestedField.required_field(12, "address", StringType()),
                NestedField.required_field(13, "city", StringType()),
            ), True),
            NestedField(11, "value", StructType(
                NestedField.required_field(14, "lat", DoubleType()),
                NestedField.required_field(15, "long", DoubleType()),
            ), False),
        )),
        NestedField.optional_field(5, "points", ListType(
            NestedField(16, "element", StructType(
                NestedField.required_field(17, "x", LongType()),
                NestedField.required_field(18, "y", LongType()),
            ), False),
        )),
        NestedField.required_field(6, "doubles", ListType.of(19, DoubleType(), True)),
        NestedField.optional_field(7, "properties", MapType.of(20, StringType(), 21, StringType())),
    )
