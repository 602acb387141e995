"""
Schema evolution.

`UpdateSchema` collects column changes and applies them in order to produce a new Schema.
Every change works on an immutable snapshot, so a failing change leaves the base schema and
every earlier snapshot untouched and nothing is returned. Field ids are allocated from the
lineage's last column id, which keeps ids of dropped columns retired.
"""
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from comparators import to_internal
from errors import (
    IncompatibleTypeError, MapKeyImmutableError, NameExistsError, NotFoundError,
    ParentNotStructError, RequiredWithoutDefaultError,
)
from schema import Schema, format_path, parse_path
from schema_types import (
    IcebergType, ListType, MapType, NestedField, StructType, TypeID, check_nullability, promote,
)
from table_properties import TableProperties, validate_updates

logger = logging.getLogger(__name__)

ColumnPath = Union[str, Sequence[str]]
ColumnRef = Union[int, str, Sequence[str]]


@dataclass(frozen=True)
class First:
    """Place the column first in its struct"""


@dataclass(frozen=True)
class After:
    """Place the column after a sibling, given by name, path or field id"""
    column: ColumnRef


@dataclass(frozen=True)
class Before:
    """Place the column before a sibling, given by name, path or field id"""
    column: ColumnRef


Position = Union[First, After, Before]


@dataclass(frozen=True)
class _State:
    schema: Schema
    last_column_id: int


Change = Callable[[_State], _State]


def _rewrite_field(f: NestedField, field_id: int, fn: Callable[[NestedField], NestedField]) -> NestedField:
    if f.field_id == field_id:
        return fn(f)
    t = f.field_type
    if isinstance(t, StructType):
        return f.with_type(StructType(*(_rewrite_field(c, field_id, fn) for c in t.fields)))
    if isinstance(t, ListType):
        return f.with_type(ListType(_rewrite_field(t.element_field, field_id, fn)))
    if isinstance(t, MapType):
        return f.with_type(MapType(_rewrite_field(t.key_field, field_id, fn),
                                   _rewrite_field(t.value_field, field_id, fn)))
    return f


def _with_fields(schema: Schema, fields: Iterable[NestedField],
                 identifier_field_ids: Optional[Iterable[int]] = None) -> Schema:
    ids = schema.identifier_field_ids if identifier_field_ids is None else identifier_field_ids
    return Schema(*fields, schema_id=schema.schema_id, identifier_field_ids=ids)


def _update_field(schema: Schema, field_id: int, fn: Callable[[NestedField], NestedField]) -> Schema:
    return _with_fields(schema, (_rewrite_field(f, field_id, fn) for f in schema.fields))


def _update_struct(schema: Schema, parent_id: Optional[int],
                   fn: Callable[[Tuple[NestedField, ...]], Sequence[NestedField]]) -> Schema:
    """Replace the member list of the struct owned by `parent_id`, or of the root when None"""
    if parent_id is None:
        return _with_fields(schema, fn(schema.fields))

    def rewrite_parent(parent: NestedField) -> NestedField:
        assert isinstance(parent.field_type, StructType)
        return parent.with_type(StructType(*fn(parent.field_type.fields)))

    return _update_field(schema, parent_id, rewrite_parent)


def _assign_fresh_ids(field_type: IcebergType, next_id: Callable[[], int]) -> IcebergType:
    """
    Reassign every nested field id. All ids of one level are taken before descending, so a
    struct's members are numbered before their children and a map's key and value ids come
    before anything nested in them.
    """
    if isinstance(field_type, StructType):
        ids = [next_id() for _ in field_type.fields]
        return StructType(*(
            replace(f, field_id=new_id, field_type=_assign_fresh_ids(f.field_type, next_id))
            for f, new_id in zip(field_type.fields, ids)
        ))
    if isinstance(field_type, ListType):
        element_id = next_id()
        element = field_type.element_field
        return ListType(replace(element, field_id=element_id,
                                field_type=_assign_fresh_ids(element.field_type, next_id)))
    if isinstance(field_type, MapType):
        key_id = next_id()
        value_id = next_id()
        key = field_type.key_field
        value = field_type.value_field
        return MapType(
            replace(key, field_id=key_id, required=True, field_type=_assign_fresh_ids(key.field_type, next_id)),
            replace(value, field_id=value_id, field_type=_assign_fresh_ids(value.field_type, next_id)),
        )
    return field_type


def _in_map_key(schema: Schema, field_id: int) -> bool:
    """Whether the field is a map key or is nested anywhere beneath one"""
    current: Optional[int] = field_id
    while current is not None:
        parent = schema.parent_id(current)
        if parent is not None:
            parent_type = schema.find_type(parent)
            if isinstance(parent_type, MapType) and parent_type.key_field.field_id == current:
                return True
        current = parent
    return False


def _parent_is_struct(schema: Schema, field_id: int) -> bool:
    parent = schema.parent_id(field_id)
    return parent is None or isinstance(schema.find_type(parent), StructType)


def _find(schema: Schema, path: ColumnPath) -> NestedField:
    f = schema.field_by_path(path)
    if f is None:
        raise NotFoundError(path if isinstance(path, str) else format_path(tuple(path)))
    return f


def _check_default(name: str, field_type: IcebergType, default: Any) -> None:
    if default is None:
        return
    if not field_type.is_primitive or field_type.type_id == TypeID.VARIANT:
        raise IncompatibleTypeError(f"Invalid default value for {name}: {field_type} columns only support null defaults")
    try:
        to_internal(field_type, default)
    except (TypeError, ValueError) as e:
        raise IncompatibleTypeError(f"Invalid default value for {name}: {default!r} is not a valid {field_type}: {e}")


def _resolve_reference(schema: Schema, parent_id: Optional[int], ref: ColumnRef) -> int:
    """Resolve a placement reference to the id of a sibling in the struct owned by `parent_id`"""
    if isinstance(ref, int):
        ref_id: Optional[int] = ref if schema.find_field(ref) is not None else None
    else:
        ref_id = None
        if parent_id is not None:
            # A bare sibling name relative to the parent struct
            ref_id = schema.find_field_id(schema.find_column_path(parent_id) + parse_path(ref))  # type: ignore[operator]
        if ref_id is None:
            ref_id = schema.find_field_id(ref)

    if ref_id is None:
        raise NotFoundError(str(ref), "Cannot find reference column")
    if schema.parent_id(ref_id) != parent_id:
        raise NotFoundError(str(ref), "Cannot find reference column in the same struct")
    return ref_id


def _place(fields: Tuple[NestedField, ...], f: NestedField, position: Optional[Position],
           ref_id: Optional[int]) -> List[NestedField]:
    others = [c for c in fields if c.field_id != f.field_id]
    if position is None:
        return others + [f]
    if isinstance(position, First):
        return [f] + others
    if ref_id == f.field_id:
        return list(fields)
    index = next(i for i, c in enumerate(others) if c.field_id == ref_id)
    if isinstance(position, After):
        index += 1
    return others[:index] + [f] + others[index:]


class UpdateSchema:
    """
    Stage a transaction of column changes against a schema.

    Methods return the update so calls can be chained; `apply()` validates the whole
    sequence and returns the new Schema, raising on the first change that fails.

        new_schema = (UpdateSchema(schema)
                      .add_column(None, "count", IntegerType())
                      .rename_column("data", "payload")
                      .apply())
    """

    def __init__(self, schema: Schema, last_column_id: Optional[int] = None, has_data: bool = True,
                 properties: Optional[Mapping[str, str]] = None):
        """
        Args:
            schema: The base schema. It is never modified.
            last_column_id: The highest id ever assigned in the lineage, including dropped
                columns. Defaults to the base schema's highest field id.
            has_data: Whether the table may hold rows. Adding a required column or making a
                column required without a default is only allowed on a table without data.
            properties: The table properties updated alongside the schema. Reserved keys
                are rejected as soon as they are set or removed.
        """
        highest = schema.highest_field_id()
        if last_column_id is None:
            last_column_id = highest
        elif last_column_id < highest:
            raise ValueError(f"Invalid last column id {last_column_id}, schema uses id {highest}")

        self.base = schema
        self.has_data = has_data
        self.last_column_id = last_column_id
        self._base_last_column_id = last_column_id
        self._changes: List[Tuple[str, Change]] = []
        self.properties = TableProperties(properties)
        self._base_properties = self.properties
        self._property_changes: List[Callable[[TableProperties], TableProperties]] = []

    def _stage(self, description: str, change: Change) -> 'UpdateSchema':
        logger.debug("Staging schema change: %s", description)
        self._changes.append((description, change))
        return self

    def add_column(self, parent: Optional[ColumnPath], name: str, field_type: IcebergType,
                   required: bool = False, default: Any = None, doc: Optional[str] = None,
                   position: Optional[Position] = None) -> 'UpdateSchema':
        """
        Add a column to the root (`parent=None`) or to a nested struct. A list or map parent
        adds to its element or value struct. Ids in `field_type` are replaced by fresh ones.
        """
        def change(state: _State) -> _State:
            schema = state.schema
            parent_id: Optional[int] = None
            siblings = schema.fields
            full_name = name
            if parent is not None:
                parent_field = _find(schema, parent)
                if _in_map_key(schema, parent_field.field_id):
                    raise MapKeyImmutableError("add fields to", schema.find_column_name(parent_field.field_id))
                parent_type = parent_field.field_type
                if isinstance(parent_type, ListType):
                    parent_field = parent_type.element_field
                elif isinstance(parent_type, MapType):
                    parent_field = parent_type.value_field
                if not isinstance(parent_field.field_type, StructType):
                    raise ParentNotStructError(schema.find_column_name(parent_field.field_id), parent_field.field_type)
                parent_id = parent_field.field_id
                siblings = parent_field.field_type.fields
                full_name = f"{schema.find_column_name(parent_id)}.{name}"

            if any(c.name == name for c in siblings):
                raise NameExistsError(full_name)
            if required and default is None and self.has_data:
                raise RequiredWithoutDefaultError(full_name)
            _check_default(full_name, field_type, default)

            ref_id = None
            if isinstance(position, (After, Before)):
                ref_id = _resolve_reference(schema, parent_id, position.column)

            last_id = state.last_column_id

            def next_id() -> int:
                nonlocal last_id
                last_id += 1
                return last_id

            new_id = next_id()
            new_field = NestedField(new_id, name, _assign_fresh_ids(field_type, next_id), required, doc,
                                    initial_default=default, write_default=default)
            new_schema = _update_struct(schema, parent_id, lambda fields: _place(fields, new_field, position, ref_id))
            return _State(new_schema, last_id)

        return self._stage(f"add column {name} to {parent or 'root'}", change)

    def delete_column(self, path: ColumnPath) -> 'UpdateSchema':
        """Drop a column. Its id is retired and never reassigned."""
        def change(state: _State) -> _State:
            schema = state.schema
            f = _find(schema, path)
            column = schema.find_column_name(f.field_id)
            if _in_map_key(schema, f.field_id):
                raise MapKeyImmutableError("delete", column)
            parent_id = schema.parent_id(f.field_id)
            if not _parent_is_struct(schema, f.field_id):
                raise ParentNotStructError(schema.find_column_name(parent_id), schema.find_type(parent_id), "delete from")

            dropped = Schema(f).field_ids()
            if dropped & schema.identifier_field_ids:
                raise IncompatibleTypeError(f"Cannot delete identifier field: {column}")

            new_schema = _update_struct(schema, parent_id,
                                        lambda fields: [c for c in fields if c.field_id != f.field_id])
            return _State(new_schema, state.last_column_id)

        return self._stage(f"delete column {path}", change)

    drop_column = delete_column

    def rename_column(self, path: ColumnPath, new_name: str) -> 'UpdateSchema':
        def change(state: _State) -> _State:
            schema = state.schema
            f = _find(schema, path)
            column = schema.find_column_name(f.field_id)
            if _in_map_key(schema, f.field_id):
                raise MapKeyImmutableError("rename", column)
            parent_id = schema.parent_id(f.field_id)
            if not _parent_is_struct(schema, f.field_id):
                raise ParentNotStructError(schema.find_column_name(parent_id), schema.find_type(parent_id), "rename fields of")
            if f.name == new_name:
                return state

            siblings = schema.fields if parent_id is None else schema.find_type(parent_id).fields  # type: ignore[union-attr]
            if any(c.name == new_name for c in siblings):
                raise NameExistsError(new_name)
            return _State(_update_field(schema, f.field_id, lambda c: c.with_name(new_name)), state.last_column_id)

        return self._stage(f"rename column {path} to {new_name}", change)

    def update_column(self, path: ColumnPath, new_type: IcebergType) -> 'UpdateSchema':
        """Change a primitive column's type to a type it can be promoted to"""
        def change(state: _State) -> _State:
            schema = state.schema
            f = _find(schema, path)
            if _in_map_key(schema, f.field_id):
                raise MapKeyImmutableError("change type of", schema.find_column_name(f.field_id))
            promoted = promote(f.field_type, new_type)
            if promoted == f.field_type:
                return state
            return _State(_update_field(schema, f.field_id, lambda c: c.with_type(promoted)), state.last_column_id)

        return self._stage(f"update column {path} to {new_type}", change)

    def update_column_doc(self, path: ColumnPath, doc: Optional[str]) -> 'UpdateSchema':
        def change(state: _State) -> _State:
            f = _find(state.schema, path)
            return _State(_update_field(state.schema, f.field_id, lambda c: c.with_doc(doc)), state.last_column_id)

        return self._stage(f"update doc of {path}", change)

    def update_column_nullability(self, path: ColumnPath, required: bool, default: Any = None) -> 'UpdateSchema':
        """
        Make a column required or optional. Making it required needs a non-null default,
        either passed here or already set as the column's initial default, unless the table
        has no data. Setting the current nullability again is a no-op.
        """
        def change(state: _State) -> _State:
            schema = state.schema
            f = _find(schema, path)
            column = schema.find_column_name(f.field_id)
            if f.required == required:
                return state
            if _in_map_key(schema, f.field_id):
                raise MapKeyImmutableError("make optional", column)

            if required:
                fill = default if default is not None else f.initial_default
                if self.has_data:
                    check_nullability(column, f.required, required, fill)
                _check_default(column, f.field_type, fill)

                def require(c: NestedField) -> NestedField:
                    return replace(c, required=True,
                                   initial_default=c.initial_default if c.initial_default is not None else fill,
                                   write_default=c.write_default if c.write_default is not None else fill)

                return _State(_update_field(schema, f.field_id, require), state.last_column_id)

            if f.field_id in schema.identifier_field_ids:
                raise IncompatibleTypeError(f"Cannot make identifier field optional: {column}")
            return _State(_update_field(schema, f.field_id, lambda c: c.with_required(False)), state.last_column_id)

        return self._stage(f"set {path} {'required' if required else 'optional'}", change)

    def require_column(self, path: ColumnPath, default: Any = None) -> 'UpdateSchema':
        return self.update_column_nullability(path, True, default)

    def make_column_optional(self, path: ColumnPath) -> 'UpdateSchema':
        return self.update_column_nullability(path, False)

    def move_column(self, path: ColumnPath, position: Position) -> 'UpdateSchema':
        def change(state: _State) -> _State:
            schema = state.schema
            f = _find(schema, path)
            column = schema.find_column_name(f.field_id)
            if _in_map_key(schema, f.field_id):
                raise MapKeyImmutableError("move", column)
            parent_id = schema.parent_id(f.field_id)
            if not _parent_is_struct(schema, f.field_id):
                raise ParentNotStructError(schema.find_column_name(parent_id), schema.find_type(parent_id), "move fields of")

            ref_id = None
            if isinstance(position, (After, Before)):
                ref_id = _resolve_reference(schema, parent_id, position.column)
            new_schema = _update_struct(schema, parent_id, lambda fields: _place(fields, f, position, ref_id))
            return _State(new_schema, state.last_column_id)

        return self._stage(f"move column {path} to {position}", change)

    def move_first(self, path: ColumnPath) -> 'UpdateSchema':
        return self.move_column(path, First())

    def move_before(self, path: ColumnPath, before: ColumnRef) -> 'UpdateSchema':
        return self.move_column(path, Before(before))

    def move_after(self, path: ColumnPath, after: ColumnRef) -> 'UpdateSchema':
        return self.move_column(path, After(after))

    def set_identifier_fields(self, *paths: ColumnPath) -> 'UpdateSchema':
        """Replace the identifier fields; each must be a required primitive column"""
        def change(state: _State) -> _State:
            schema = state.schema
            ids = [_find(schema, path).field_id for path in paths]
            return _State(_with_fields(schema, schema.fields, ids), state.last_column_id)

        return self._stage(f"set identifier fields {list(paths)}", change)

    def set_properties(self, updates: Optional[Mapping[str, str]] = None, **kwargs: str) -> 'UpdateSchema':
        changes = dict(updates or {})
        changes.update(kwargs)
        validate_updates(changes)
        self._property_changes.append(lambda props: props.set(changes))
        return self

    def remove_properties(self, *keys: str) -> 'UpdateSchema':
        validate_updates(keys)
        self._property_changes.append(lambda props: props.remove(*keys))
        return self

    def apply(self, schema_id: Optional[int] = None) -> Schema:
        """
        Apply every staged change in order and return the new schema. The new schema gets
        `schema_id`, or the base schema's id plus one. On success `last_column_id` and
        `properties` are updated to match.
        """
        state = _State(self.base, self._base_last_column_id)
        for description, change in self._changes:
            try:
                state = change(state)
            except Exception:
                logger.debug("Schema change failed: %s", description)
                raise

        properties = self._base_properties
        for update in self._property_changes:
            properties = update(properties)

        new_id = self.base.schema_id + 1 if schema_id is None else schema_id
        self.last_column_id = state.last_column_id
        self.properties = properties
        logger.debug("Applied %d schema changes to schema %d", len(self._changes), self.base.schema_id)
        return Schema(*state.schema.fields, schema_id=new_id,
                      identifier_field_ids=state.schema.identifier_field_ids)


def add_column(schema: Schema, parent: Optional[ColumnPath], name: str, field_type: IcebergType,
               required: bool = False, default: Any = None, doc: Optional[str] = None,
               position: Optional[Position] = None, last_column_id: Optional[int] = None,
               has_data: bool = True) -> Schema:
    return UpdateSchema(schema, last_column_id, has_data).add_column(
        parent, name, field_type, required, default, doc, position).apply()


def delete_column(schema: Schema, path: ColumnPath) -> Schema:
    return UpdateSchema(schema).delete_column(path).apply()


def rename_column(schema: Schema, path: ColumnPath, new_name: str) -> Schema:
    return UpdateSchema(schema).rename_column(path, new_name).apply()


def update_column(schema: Schema, path: ColumnPath, new_type: IcebergType) -> Schema:
    return UpdateSchema(schema).update_column(path, new_type).apply()


def update_column_doc(schema: Schema, path: ColumnPath, doc: Optional[str]) -> Schema:
    return UpdateSchema(schema).update_column_doc(path, doc).apply()


def update_column_nullability(schema: Schema, path: ColumnPath, required: bool, default: Any = None,
                              has_data: bool = True) -> Schema:
    return UpdateSchema(schema, has_data=has_data).update_column_nullability(path, required, default).apply()


def move_column(schema: Schema, path: ColumnPath, position: Position) -> Schema:
    return UpdateSchema(schema).move_column(path, position).apply()
