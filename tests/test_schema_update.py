import pytest

import schema_update
from errors import (
    IncompatibleTypeError, MapKeyImmutableError, NameExistsError, NotFoundError, ParentNotStructError,
    RequiredWithoutDefaultError, RequiresDefaultError, ReservedPropertyError,
)
from schema import Schema
from schema_types import (
    DecimalType, DoubleType, FloatType, IntegerType, ListType, LongType, MapType, NestedField, StringType, StructType,
)
from schema_update import After, Before, First, UpdateSchema


def ids(fields):
    return [f.field_id for f in fields]


POINT = StructType(
    NestedField.required_field(0, "x", DoubleType()),
    NestedField.required_field(0, "y", DoubleType()),
)


class TestAddColumn:
    def test_add_struct_after_column(self, simple_schema):
        updated = UpdateSchema(simple_schema).add_column(None, "point", POINT, position=After("id")).apply()

        assert ids(updated.fields) == [1, 3, 2]
        assert ids(updated.find_field(3).field_type.fields) == [4, 5]
        assert updated.field_by_path("point.y").field_id == 5
        assert updated.schema_id == simple_schema.schema_id + 1

    def test_add_nested_column_first(self, simple_schema):
        update = UpdateSchema(simple_schema)
        with_point = update.add_column(None, "point", POINT, position=After("id")).apply()

        updated = (UpdateSchema(with_point, last_column_id=update.last_column_id)
                   .add_column("point", "z", DoubleType(), doc="May be null", position=First())
                   .apply())

        point = updated.find_field(3).field_type
        assert ids(point.fields) == [6, 4, 5]
        assert [f.name for f in point.fields] == ["z", "x", "y"]
        z = updated.field_by_path("point.z")
        assert z.optional
        assert z.doc == "May be null"

    def test_changes_in_one_transaction_see_earlier_changes(self, simple_schema):
        updated = (UpdateSchema(simple_schema)
                   .add_column(None, "point", POINT, position=After("id"))
                   .add_column("point", "z", DoubleType(), doc="May be null", position=First())
                   .apply())
        assert ids(updated.fields) == [1, 3, 2]
        assert ids(updated.find_field(3).field_type.fields) == [6, 4, 5]

    def test_add_appends_by_default(self, simple_schema):
        updated = UpdateSchema(simple_schema).add_column(None, "count", IntegerType()).apply()
        assert ids(updated.fields) == [1, 2, 3]

    def test_add_before(self, simple_schema):
        updated = UpdateSchema(simple_schema).add_column(None, "count", IntegerType(), position=Before("data")).apply()
        assert ids(updated.fields) == [1, 3, 2]

    def test_add_list_of_structs_assigns_ids_level_by_level(self, simple_schema):
        points = ListType(NestedField(0, "element", POINT, True))
        updated = UpdateSchema(simple_schema).add_column(None, "points", points).apply()

        field = updated.find_field(3)
        assert field.field_type.element_id == 4
        assert ids(field.field_type.element_type.fields) == [5, 6]

    def test_add_map_assigns_key_and_value_ids_first(self, simple_schema):
        map_type = MapType(
            NestedField(0, "key", StructType(NestedField.required_field(0, "x", IntegerType())), True),
            NestedField(0, "value", StructType(
                NestedField.optional_field(0, "a", StringType()),
                NestedField.optional_field(0, "b", StringType()),
            ), False),
        )
        updated = UpdateSchema(simple_schema).add_column(None, "m", map_type).apply()

        assert updated.field_by_path("m.key").field_id == 4
        assert updated.field_by_path("m.value").field_id == 5
        assert updated.field_by_path("m.key.x").field_id == 6
        assert updated.field_by_path("m.value.a").field_id == 7
        assert updated.field_by_path("m.value.b").field_id == 8

    def test_add_nested_struct_numbers_each_level_first(self, simple_schema):
        nested = StructType(
            NestedField.optional_field(0, "inner", StructType(NestedField.optional_field(0, "leaf", LongType()))),
            NestedField.optional_field(0, "other", LongType()),
        )
        updated = UpdateSchema(simple_schema).add_column(None, "outer", nested).apply()
        assert updated.find_column_name(4) == "outer.inner"
        assert updated.find_column_name(5) == "outer.other"
        assert updated.find_column_name(6) == "outer.inner.leaf"

    def test_add_to_list_element_struct(self, nested_schema):
        updated = UpdateSchema(nested_schema).add_column("points", "z", LongType()).apply()
        assert updated.field_by_path("points.element.z").field_id == 22

        same = UpdateSchema(nested_schema).add_column("points.element", "z", LongType()).apply()
        assert same == updated

    def test_add_to_map_value_struct(self, nested_schema):
        updated = UpdateSchema(nested_schema).add_column("locations", "alt", DoubleType()).apply()
        assert updated.field_by_path("locations.value.alt").field_id == 22
        assert ids(updated.field_by_path("locations.value").field_type.fields) == [14, 15, 22]

    @pytest.mark.parametrize("parent", ["locations.key", "locations.key.city"])
    def test_add_to_map_key_fails(self, nested_schema, parent):
        with pytest.raises(MapKeyImmutableError, match="MAP_KEY_IMMUTABLE"):
            UpdateSchema(nested_schema).add_column(parent, "zip", StringType()).apply()

    @pytest.mark.parametrize("parent", ["id", "doubles", "properties"])
    def test_add_to_non_struct_fails(self, nested_schema, parent):
        with pytest.raises(ParentNotStructError, match="PARENT_NOT_STRUCT"):
            UpdateSchema(nested_schema).add_column(parent, "x", IntegerType()).apply()

    def test_add_existing_name_fails(self, simple_schema):
        with pytest.raises(NameExistsError, match="data"):
            UpdateSchema(simple_schema).add_column(None, "data", IntegerType()).apply()

    def test_add_to_missing_parent_fails(self, simple_schema):
        with pytest.raises(NotFoundError):
            UpdateSchema(simple_schema).add_column("missing", "x", IntegerType()).apply()

    def test_add_after_column_in_other_struct_fails(self, nested_schema):
        with pytest.raises(NotFoundError, match="reference column"):
            UpdateSchema(nested_schema).add_column("preferences", "x", IntegerType(), position=After("id")).apply()

    def test_add_required_column_fails(self, simple_schema):
        with pytest.raises(RequiredWithoutDefaultError, match="cannot add required column: count"):
            UpdateSchema(simple_schema).add_column(None, "count", IntegerType(), required=True).apply()

    def test_add_required_column_with_default(self, simple_schema):
        updated = UpdateSchema(simple_schema).add_column(None, "count", IntegerType(), required=True, default=0).apply()
        count = updated.find_field(3)
        assert count.required
        assert count.initial_default == 0
        assert count.write_default == 0

    def test_add_required_column_to_empty_table(self, simple_schema):
        updated = UpdateSchema(simple_schema, has_data=False).add_column(None, "count", IntegerType(), required=True).apply()
        assert updated.find_field(3).required

    @pytest.mark.parametrize("field_type,default", [
        (IntegerType(), "seven"),
        (IntegerType(), True),
        (DecimalType(9, 2), 1.5),
        (DecimalType(9, 2), "1.005"),
        (DoubleType(), "7"),
        (DoubleType(), True),
        (FloatType(), 1e39),
        (IntegerType(), 2 ** 40),
        (IntegerType(), -2 ** 31 - 1),
        (LongType(), 2 ** 70),
        (LongType(), 2 ** 63),
        (POINT, {"x": 1.0}),
    ])
    def test_add_with_invalid_default_fails(self, simple_schema, field_type, default):
        with pytest.raises(IncompatibleTypeError, match="Invalid default value"):
            UpdateSchema(simple_schema).add_column(None, "c", field_type, default=default).apply()


class TestDeleteColumn:
    def test_delete(self, simple_schema):
        updated = UpdateSchema(simple_schema).delete_column("data").apply()
        assert ids(updated.fields) == [1]

    def test_deleted_ids_are_not_reused(self, simple_schema):
        update = UpdateSchema(simple_schema)
        dropped = update.delete_column("data").apply()
        assert update.last_column_id == 2

        updated = UpdateSchema(dropped, last_column_id=update.last_column_id).add_column(None, "data", StringType()).apply()
        assert ids(updated.fields) == [1, 3]

    def test_delete_then_add_in_one_transaction(self, simple_schema):
        updated = UpdateSchema(simple_schema).delete_column("data").add_column(None, "data", StringType()).apply()
        assert ids(updated.fields) == [1, 3]

    def test_delete_nested(self, nested_schema):
        updated = UpdateSchema(nested_schema).delete_column("preferences.feature1").apply()
        assert ids(updated.find_field(3).field_type.fields) == [9]
        assert updated.find_field(8) is None

    def test_delete_struct_removes_children(self, nested_schema):
        updated = UpdateSchema(nested_schema).delete_column("points").apply()
        assert not {5, 16, 17, 18} & updated.field_ids()

    def test_delete_missing(self, simple_schema):
        with pytest.raises(NotFoundError, match="NOT_FOUND: Cannot find field: missing"):
            UpdateSchema(simple_schema).delete_column("missing").apply()

    def test_delete_map_key_field_fails(self, nested_schema):
        with pytest.raises(MapKeyImmutableError):
            UpdateSchema(nested_schema).delete_column("locations.key.city").apply()

    def test_delete_list_element_fails(self, nested_schema):
        with pytest.raises(ParentNotStructError):
            UpdateSchema(nested_schema).delete_column("points.element").apply()

    def test_delete_identifier_field_fails(self):
        schema = Schema(NestedField.required_field(1, "id", LongType()), identifier_field_ids=[1])
        with pytest.raises(IncompatibleTypeError, match="identifier field"):
            UpdateSchema(schema).delete_column("id").apply()


class TestRenameColumn:
    def test_rename_keeps_id(self, simple_schema):
        updated = UpdateSchema(simple_schema).rename_column("data", "payload").apply()
        assert updated.find_field(2).name == "payload"
        assert updated.field_by_path("data") is None

    def test_rename_nested(self, nested_schema):
        updated = UpdateSchema(nested_schema).rename_column("points.element.x", "X").apply()
        assert updated.field_by_path("points.element.X").field_id == 17

    def test_rename_to_existing_name_fails(self, simple_schema):
        with pytest.raises(NameExistsError):
            UpdateSchema(simple_schema).rename_column("data", "id").apply()

    def test_rename_to_same_name_is_a_no_op(self, simple_schema):
        updated = UpdateSchema(simple_schema).rename_column("data", "data").apply()
        assert updated.same_schema(simple_schema)

    def test_rename_map_key_field_fails(self, nested_schema):
        with pytest.raises(MapKeyImmutableError):
            UpdateSchema(nested_schema).rename_column("locations.key.city", "town").apply()

    def test_rename_missing(self, simple_schema):
        with pytest.raises(NotFoundError):
            UpdateSchema(simple_schema).rename_column("missing", "x").apply()

    def test_swap_names_in_one_transaction(self, simple_schema):
        updated = (UpdateSchema(simple_schema)
                   .rename_column("id", "tmp")
                   .rename_column("data", "id")
                   .rename_column("tmp", "data")
                   .apply())
        assert updated.field_by_path("id").field_id == 2
        assert updated.field_by_path("data").field_id == 1


class TestUpdateColumn:
    def test_widen_int(self, nested_schema):
        updated = UpdateSchema(nested_schema).update_column("id", LongType()).apply()
        assert updated.find_field(1).field_type == LongType()
        assert updated.find_field(1).required

    def test_widen_nested_field(self, nested_schema):
        updated = UpdateSchema(nested_schema).update_column("preferences.feature2", LongType()).apply()
        assert updated.find_field(9).field_type == LongType()

    def test_widen_decimal(self):
        schema = Schema(NestedField.optional_field(1, "price", DecimalType(9, 2)))
        updated = UpdateSchema(schema).update_column("price", DecimalType(18, 2)).apply()
        assert updated.find_field(1).field_type == DecimalType(18, 2)

    def test_narrowing_fails(self, simple_schema):
        with pytest.raises(IncompatibleTypeError, match="INCOMPATIBLE_TYPE"):
            UpdateSchema(simple_schema).update_column("id", IntegerType()).apply()

    def test_struct_type_change_fails(self, nested_schema):
        with pytest.raises(IncompatibleTypeError):
            UpdateSchema(nested_schema).update_column("preferences", StringType()).apply()

    def test_map_key_type_change_fails(self):
        schema = Schema(NestedField.optional_field(1, "m", MapType.of(2, IntegerType(), 3, StringType())))
        with pytest.raises(MapKeyImmutableError):
            UpdateSchema(schema).update_column("m.key", LongType()).apply()

    def test_map_value_type_change(self):
        schema = Schema(NestedField.optional_field(1, "m", MapType.of(2, StringType(), 3, IntegerType())))
        updated = UpdateSchema(schema).update_column("m.value", LongType()).apply()
        assert updated.find_field(1).field_type.value_type == LongType()


def test_update_doc(simple_schema):
    updated = UpdateSchema(simple_schema).update_column_doc("data", "free text").apply()
    assert updated.find_field(2).doc == "free text"
    cleared = UpdateSchema(updated).update_column_doc("data", None).apply()
    assert cleared.find_field(2).doc is None


class TestNullability:
    def test_require_already_required_is_a_no_op(self, simple_schema):
        updated = UpdateSchema(simple_schema).require_column("id").apply()
        assert updated.same_schema(simple_schema)

    def test_require_optional_with_data_fails(self, simple_schema):
        with pytest.raises(RequiresDefaultError, match="data"):
            UpdateSchema(simple_schema).update_column_nullability("data", True).apply()

    def test_require_with_default(self, simple_schema):
        updated = UpdateSchema(simple_schema).require_column("data", default="unknown").apply()
        data = updated.find_field(2)
        assert data.required
        assert data.initial_default == "unknown"

    def test_require_without_data(self, simple_schema):
        updated = UpdateSchema(simple_schema, has_data=False).require_column("data").apply()
        assert updated.find_field(2).required

    def test_make_optional(self, simple_schema):
        updated = UpdateSchema(simple_schema).make_column_optional("id").apply()
        assert updated.find_field(1).optional

    def test_identifier_field_cannot_be_made_optional(self):
        schema = Schema(NestedField.required_field(1, "id", LongType()), identifier_field_ids=[1])
        with pytest.raises(IncompatibleTypeError):
            UpdateSchema(schema).make_column_optional("id").apply()

    def test_map_key_cannot_be_made_optional(self, nested_schema):
        with pytest.raises(MapKeyImmutableError):
            UpdateSchema(nested_schema).make_column_optional("locations.key").apply()


class TestMoveColumn:
    def test_move_first(self, simple_schema):
        updated = UpdateSchema(simple_schema).move_first("data").apply()
        assert ids(updated.fields) == [2, 1]

    def test_move_after(self, simple_schema):
        updated = UpdateSchema(simple_schema).move_after("id", "data").apply()
        assert ids(updated.fields) == [2, 1]

    def test_move_before(self, simple_schema):
        updated = UpdateSchema(simple_schema).move_before("data", "id").apply()
        assert ids(updated.fields) == [2, 1]

    def test_move_by_field_id(self, simple_schema):
        updated = UpdateSchema(simple_schema).move_before("data", 1).apply()
        assert ids(updated.fields) == [2, 1]

    def test_move_nested_by_sibling_name(self, nested_schema):
        updated = UpdateSchema(nested_schema).move_after("preferences.feature1", "feature2").apply()
        assert ids(updated.find_field(3).field_type.fields) == [9, 8]

    def test_move_nested_by_full_path(self, nested_schema):
        updated = UpdateSchema(nested_schema).move_before("points.element.y", "points.element.x").apply()
        assert ids(updated.field_by_path("points.element").field_type.fields) == [18, 17]

    def test_move_relative_to_itself_is_a_no_op(self, simple_schema):
        updated = UpdateSchema(simple_schema).move_after("data", "data").apply()
        assert ids(updated.fields) == [1, 2]

    def test_move_to_other_struct_fails(self, nested_schema):
        with pytest.raises(NotFoundError):
            UpdateSchema(nested_schema).move_after("id", "preferences.feature1").apply()

    def test_move_missing_reference_fails(self, simple_schema):
        with pytest.raises(NotFoundError):
            UpdateSchema(simple_schema).move_after("id", "missing").apply()

    def test_move_map_key_field_fails(self, nested_schema):
        with pytest.raises(MapKeyImmutableError):
            UpdateSchema(nested_schema).move_first("locations.key.city").apply()


class TestTransactions:
    def test_failure_leaves_base_untouched(self, simple_schema):
        update = (UpdateSchema(simple_schema)
                  .add_column(None, "count", IntegerType())
                  .rename_column("data", "payload")
                  .update_column("id", StringType()))
        with pytest.raises(IncompatibleTypeError):
            update.apply()

        assert [f.name for f in simple_schema.fields] == ["id", "data"]
        assert update.last_column_id == 2

    def test_explicit_schema_id(self, simple_schema):
        assert UpdateSchema(simple_schema).apply(schema_id=10).schema_id == 10

    def test_invalid_last_column_id(self, simple_schema):
        with pytest.raises(ValueError):
            UpdateSchema(simple_schema, last_column_id=1)

    def test_set_identifier_fields(self, simple_schema):
        updated = UpdateSchema(simple_schema).set_identifier_fields("id").apply()
        assert updated.identifier_field_ids == {1}

    def test_set_optional_identifier_field_fails(self, simple_schema):
        with pytest.raises(IncompatibleTypeError):
            UpdateSchema(simple_schema).set_identifier_fields("data").apply()

    def test_properties_change_with_schema(self, simple_schema):
        update = UpdateSchema(simple_schema, properties={"owner": "etl"}).set_properties({"comment": "x"})
        update.remove_properties("owner").apply()
        assert dict(update.properties) == {"comment": "x"}

    def test_reserved_property_is_rejected(self, simple_schema):
        with pytest.raises(ReservedPropertyError, match="sort-order"):
            UpdateSchema(simple_schema).set_properties({"sort-order": "id"})


def test_module_functions(simple_schema):
    renamed = schema_update.rename_column(simple_schema, "data", "payload")
    assert renamed.find_field(2).name == "payload"

    moved = schema_update.move_column(renamed, "payload", First())
    assert ids(moved.fields) == [2, 1]

    added = schema_update.add_column(simple_schema, None, "count", IntegerType(), default=7)
    assert added.find_field(3).initial_default == 7


@pytest.mark.parametrize("field_type,default", [
    (IntegerType(), 2 ** 31 - 1),
    (IntegerType(), -2 ** 31),
    (LongType(), -2 ** 63),
    (DoubleType(), 7),
    (FloatType(), 0.5),
])
def test_add_with_boundary_default(simple_schema, field_type, default):
    updated = UpdateSchema(simple_schema).add_column(None, "c", field_type, default=default).apply()
    assert updated.find_field(3).initial_default == default
