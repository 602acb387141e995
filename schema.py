"""
An immutable, versioned tree of fields with id and name indexes built once at construction.
"""
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from errors import DuplicateIdError, DuplicateNameError, IncompatibleTypeError, NotFoundError
from schema_types import (
    IcebergType, ListType, MapType, NestedField, StructType, TypeID,
)

Path = Tuple[str, ...]


def parse_path(path: Union[str, Sequence[str]]) -> Path:
    """
    Split a column path into its segments.

    Accepts dotted paths (`point.x`), bracketed segments for names that contain dots
    (`a['b.c'].d`, `a[element]`) or an already split sequence of names.
    """
    if not isinstance(path, str):
        return tuple(path)

    segments: List[str] = []
    i = 0
    current = ""
    while i < len(path):
        ch = path[i]
        if ch == ".":
            if current:
                segments.append(current)
                current = ""
            i += 1
        elif ch == "[":
            if current:
                segments.append(current)
                current = ""
            quote = path[i + 1:i + 2]
            if quote in ("'", '"'):
                # Quoted names may themselves contain '.' or ']'
                end = path.find(quote + "]", i + 2)
                name_start, next_pos = i + 2, end + 2
            else:
                end = path.find("]", i)
                name_start, next_pos = i + 1, end + 1
            if end < 0:
                raise ValueError(f"Unterminated bracket in path: {path}")
            segments.append(path[name_start:end])
            i = next_pos
        else:
            current += ch
            i += 1
    if current:
        segments.append(current)
    if not segments:
        raise ValueError(f"Invalid empty path: {path!r}")
    return tuple(segments)


def format_path(path: Path) -> str:
    return ".".join(path)


class _Indexer:
    """Walks a struct once, building the id, parent and name indexes and validating uniqueness."""

    def __init__(self):
        self.id_to_field: Dict[int, NestedField] = {}
        self.id_to_parent: Dict[int, int] = {}
        self.id_to_path: Dict[int, Path] = {}
        self.path_to_id: Dict[Path, int] = {}

    def visit_struct(self, struct: StructType, parent_id: Optional[int], prefix: Path) -> None:
        seen: Set[str] = set()
        for f in struct.fields:
            if f.name in seen:
                raise DuplicateNameError(format_path(prefix + (f.name,)))
            seen.add(f.name)
        for f in struct.fields:
            self.visit_field(f, parent_id, prefix)

    def visit_field(self, f: NestedField, parent_id: Optional[int], prefix: Path) -> None:
        path = prefix + (f.name,)
        if f.field_id in self.id_to_field:
            raise DuplicateIdError(f.field_id, format_path(self.id_to_path[f.field_id]), format_path(path))

        self.id_to_field[f.field_id] = f
        self.id_to_path[f.field_id] = path
        self.path_to_id[path] = f.field_id
        if parent_id is not None:
            self.id_to_parent[f.field_id] = parent_id

        field_type = f.field_type
        if isinstance(field_type, StructType):
            self.visit_struct(field_type, f.field_id, path)
        elif isinstance(field_type, (ListType, MapType)):
            for child in field_type.fields:
                self.visit_field(child, f.field_id, path)


class Schema:
    """
    The ordered top-level fields of a table plus lookup indexes.

    A Schema is never modified after construction; evolution derives a new Schema.
    Construction fails with DuplicateIdError or DuplicateNameError.
    """

    def __init__(self, *fields: NestedField, schema_id: int = 0,
                 identifier_field_ids: Iterable[int] = ()):
        self._struct = StructType(*fields)
        self.schema_id = schema_id

        indexer = _Indexer()
        indexer.visit_struct(self._struct, None, ())
        self._id_to_field = indexer.id_to_field
        self._id_to_parent = indexer.id_to_parent
        self._id_to_path = indexer.id_to_path
        self._path_to_id = indexer.path_to_id

        self.identifier_field_ids: FrozenSet[int] = frozenset(identifier_field_ids)
        for field_id in sorted(self.identifier_field_ids):
            self.validate_identifier_field(field_id)

    @property
    def fields(self) -> Tuple[NestedField, ...]:
        return self._struct.fields

    columns = fields

    def as_struct(self) -> StructType:
        return self._struct

    def find_field(self, field_id: int) -> Optional[NestedField]:
        """Find any field, nested or not, by id"""
        return self._id_to_field.get(field_id)

    field_by_id = find_field

    def field_by_path(self, path: Union[str, Sequence[str]]) -> Optional[NestedField]:
        """Find a field by name path, using `element`, `key` and `value` for list and map members"""
        field_id = self._path_to_id.get(parse_path(path))
        return None if field_id is None else self._id_to_field[field_id]

    def find_field_id(self, path: Union[str, Sequence[str]]) -> Optional[int]:
        return self._path_to_id.get(parse_path(path))

    def find_type(self, field_id: int) -> Optional[IcebergType]:
        f = self.find_field(field_id)
        return None if f is None else f.field_type

    def find_column_name(self, field_id: int) -> Optional[str]:
        path = self._id_to_path.get(field_id)
        return None if path is None else format_path(path)

    def find_column_path(self, field_id: int) -> Optional[Path]:
        return self._id_to_path.get(field_id)

    def parent_id(self, field_id: int) -> Optional[int]:
        """Id of the enclosing field, None for top-level fields"""
        return self._id_to_parent.get(field_id)

    def column_names(self) -> List[str]:
        return [format_path(path) for path in self._path_to_id]

    def field_ids(self) -> Set[int]:
        return set(self._id_to_field)

    def highest_field_id(self) -> int:
        return max(self._id_to_field, default=0)

    def identifier_field_names(self) -> Set[str]:
        return {self.find_column_name(field_id) for field_id in self.identifier_field_ids}  # type: ignore[misc]

    def validate_identifier_field(self, field_id: int) -> None:
        """
        Identifier fields must be required primitive fields, not floating point, and reachable
        through required structs only.
        """
        f = self.find_field(field_id)
        if f is None:
            raise NotFoundError(str(field_id), "Cannot find identifier field id")
        name = self.find_column_name(field_id)
        if not f.field_type.is_primitive or f.field_type.type_id == TypeID.VARIANT:
            raise IncompatibleTypeError(f"Cannot add field {name} as an identifier field: not a primitive type field")
        if f.field_type.type_id in (TypeID.FLOAT, TypeID.DOUBLE):
            raise IncompatibleTypeError(f"Cannot add field {name} as an identifier field: must not be float or double field")
        if not f.required:
            raise IncompatibleTypeError(f"Cannot add field {name} as an identifier field: not a required field")

        parent = self.parent_id(field_id)
        while parent is not None:
            parent_field = self._id_to_field[parent]
            if not isinstance(parent_field.field_type, StructType):
                raise IncompatibleTypeError(
                    f"Cannot add field {name} as an identifier field: must not be nested in {parent_field.field_type}")
            if not parent_field.required:
                raise IncompatibleTypeError(
                    f"Cannot add field {name} as an identifier field: must not be nested in an optional field {parent_field.name}")
            parent = self.parent_id(parent)

    def select(self, *names: str) -> 'Schema':
        """
        Project the schema onto the named columns, keeping ids. Selecting a column inside a list
        or map keeps the whole container.
        """
        selected: Set[int] = set()
        for name in names:
            field_id = self.find_field_id(name)
            if field_id is None:
                raise NotFoundError(name)
            selected.add(field_id)
        fields = [f for f in (_prune(f, selected) for f in self.fields) if f is not None]
        kept_identifiers = [fid for fid in self.identifier_field_ids if fid in selected]
        return Schema(*fields, schema_id=self.schema_id, identifier_field_ids=kept_identifiers)

    def same_schema(self, other: 'Schema') -> bool:
        """Equal apart from the schema id"""
        return self._struct == other._struct and self.identifier_field_ids == other.identifier_field_ids

    def __eq__(self, other) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        return self.schema_id == other.schema_id and self.same_schema(other)

    __hash__ = None  # type: ignore

    def __len__(self) -> int:
        return len(self.fields)

    def __str__(self) -> str:
        return "table {\n" + "\n".join(f"  {f}" for f in self.fields) + "\n}"

    def __repr__(self) -> str:
        fields = ", ".join(repr(f) for f in self.fields)
        return f"Schema({fields}, schema_id={self.schema_id}, identifier_field_ids={sorted(self.identifier_field_ids)})"


def _prune(f: NestedField, selected: Set[int]) -> Optional[NestedField]:
    if f.field_id in selected:
        return f
    field_type = f.field_type
    if isinstance(field_type, StructType):
        children = [c for c in (_prune(c, selected) for c in field_type.fields) if c is not None]
        return f.with_type(StructType(*children)) if children else None
    if isinstance(field_type, (ListType, MapType)):
        if any(_prune(c, selected) is not None for c in field_type.fields):
            return f
    return None
