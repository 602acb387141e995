"""
Types and fields of a table schema.

Each type is a small frozen dataclass tagged with a `TypeID`, so dispatch is a lookup on
`type_id` rather than a chain of isinstance checks. Nested types hold `NestedField`s, and every
field carries a permanent integer id that survives renames, reorders and promotions.
"""
import enum
import re
from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from errors import IncompatibleTypeError, RequiresDefaultError

MAX_DECIMAL_PRECISION = 38


class TypeID(enum.Enum):
    BOOLEAN = "boolean"
    INTEGER = "int"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMESTAMP_NANO = "timestamp_ns"
    STRING = "string"
    UUID = "uuid"
    FIXED = "fixed"
    BINARY = "binary"
    STRUCT = "struct"
    LIST = "list"
    MAP = "map"
    VARIANT = "variant"


class IcebergType:
    """Base class of all schema types"""
    type_id: TypeID

    @property
    def is_primitive(self) -> bool:
        return self.type_id not in (TypeID.STRUCT, TypeID.LIST, TypeID.MAP)

    @property
    def is_nested(self) -> bool:
        return not self.is_primitive

    def __str__(self) -> str:
        return self.type_id.value


@dataclass(frozen=True)
class BooleanType(IcebergType):
    type_id = TypeID.BOOLEAN


@dataclass(frozen=True)
class IntegerType(IcebergType):
    """32-bit signed integer"""
    type_id = TypeID.INTEGER


@dataclass(frozen=True)
class LongType(IcebergType):
    """64-bit signed integer"""
    type_id = TypeID.LONG


@dataclass(frozen=True)
class FloatType(IcebergType):
    """32-bit IEEE 754 float"""
    type_id = TypeID.FLOAT


@dataclass(frozen=True)
class DoubleType(IcebergType):
    """64-bit IEEE 754 float"""
    type_id = TypeID.DOUBLE


@dataclass(frozen=True)
class DecimalType(IcebergType):
    precision: int
    scale: int
    type_id = TypeID.DECIMAL

    def __post_init__(self):
        if not 0 < self.precision <= MAX_DECIMAL_PRECISION:
            raise ValueError(f"Decimals with precision larger than {MAX_DECIMAL_PRECISION} are not supported: {self.precision}")
        if self.scale < 0 or self.scale > self.precision:
            raise ValueError(f"Invalid decimal scale {self.scale} for precision {self.precision}")

    def __str__(self) -> str:
        return f"decimal({self.precision}, {self.scale})"


@dataclass(frozen=True)
class DateType(IcebergType):
    type_id = TypeID.DATE


@dataclass(frozen=True)
class TimeType(IcebergType):
    """Time of day in microseconds, without zone"""
    type_id = TypeID.TIME


@dataclass(frozen=True)
class TimestampType(IcebergType):
    """Microsecond timestamp; `adjust_to_utc` distinguishes timestamptz from a naive timestamp"""
    adjust_to_utc: bool = False
    type_id = TypeID.TIMESTAMP

    def __str__(self) -> str:
        return "timestamptz" if self.adjust_to_utc else "timestamp"


@dataclass(frozen=True)
class TimestampNanoType(IcebergType):
    adjust_to_utc: bool = False
    type_id = TypeID.TIMESTAMP_NANO

    def __str__(self) -> str:
        return "timestamptz_ns" if self.adjust_to_utc else "timestamp_ns"


@dataclass(frozen=True)
class StringType(IcebergType):
    type_id = TypeID.STRING


@dataclass(frozen=True)
class UUIDType(IcebergType):
    type_id = TypeID.UUID


@dataclass(frozen=True)
class FixedType(IcebergType):
    length: int
    type_id = TypeID.FIXED

    def __str__(self) -> str:
        return f"fixed[{self.length}]"


@dataclass(frozen=True)
class BinaryType(IcebergType):
    type_id = TypeID.BINARY


@dataclass(frozen=True)
class VariantType(IcebergType):
    type_id = TypeID.VARIANT


@dataclass(frozen=True)
class NestedField:
    """
    A field of a struct, or the element of a list, or the key or value of a map.

    `initial_default` fills the field in records written before it existed; `write_default`
    is used by writers when no value is supplied.
    """
    field_id: int
    name: str
    field_type: IcebergType
    required: bool = False
    doc: Optional[str] = None
    initial_default: Any = None
    write_default: Any = None

    @staticmethod
    def required_field(field_id: int, name: str, field_type: IcebergType, doc: Optional[str] = None,
                       initial_default: Any = None, write_default: Any = None) -> 'NestedField':
        return NestedField(field_id, name, field_type, True, doc, initial_default, write_default)

    @staticmethod
    def optional_field(field_id: int, name: str, field_type: IcebergType, doc: Optional[str] = None,
                       initial_default: Any = None, write_default: Any = None) -> 'NestedField':
        return NestedField(field_id, name, field_type, False, doc, initial_default, write_default)

    @property
    def optional(self) -> bool:
        return not self.required

    def with_name(self, name: str) -> 'NestedField':
        return replace(self, name=name)

    def with_type(self, field_type: IcebergType) -> 'NestedField':
        return replace(self, field_type=field_type)

    def with_doc(self, doc: Optional[str]) -> 'NestedField':
        return replace(self, doc=doc)

    def with_required(self, required: bool) -> 'NestedField':
        return replace(self, required=required)

    def __str__(self) -> str:
        text = f"{self.field_id}: {self.name}: {'required' if self.required else 'optional'} {self.field_type}"
        if self.doc:
            text += f" ({self.doc})"
        return text


@dataclass(frozen=True)
class StructType(IcebergType):
    fields: Tuple[NestedField, ...] = ()
    type_id = TypeID.STRUCT

    def __init__(self, *fields: NestedField):
        object.__setattr__(self, "fields", tuple(fields))

    def field(self, field_id: int) -> Optional[NestedField]:
        for f in self.fields:
            if f.field_id == field_id:
                return f
        return None

    def field_by_name(self, name: str) -> Optional[NestedField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def __str__(self) -> str:
        return f"struct<{', '.join(str(f) for f in self.fields)}>"


@dataclass(frozen=True)
class ListType(IcebergType):
    element_field: NestedField
    type_id = TypeID.LIST

    @staticmethod
    def of(element_id: int, element_type: IcebergType, element_required: bool = False) -> 'ListType':
        return ListType(NestedField(element_id, "element", element_type, element_required))

    @property
    def element_id(self) -> int:
        return self.element_field.field_id

    @property
    def element_type(self) -> IcebergType:
        return self.element_field.field_type

    @property
    def fields(self) -> Tuple[NestedField, ...]:
        return (self.element_field,)

    def __str__(self) -> str:
        return f"list<{self.element_type}>"


@dataclass(frozen=True)
class MapType(IcebergType):
    key_field: NestedField
    value_field: NestedField
    type_id = TypeID.MAP

    @staticmethod
    def of(key_id: int, key_type: IcebergType, value_id: int, value_type: IcebergType,
           value_required: bool = False) -> 'MapType':
        # Map keys are always required
        return MapType(NestedField(key_id, "key", key_type, True),
                       NestedField(value_id, "value", value_type, value_required))

    @property
    def key_type(self) -> IcebergType:
        return self.key_field.field_type

    @property
    def value_type(self) -> IcebergType:
        return self.value_field.field_type

    @property
    def fields(self) -> Tuple[NestedField, ...]:
        return (self.key_field, self.value_field)

    def __str__(self) -> str:
        return f"map<{self.key_type}, {self.value_type}>"


_SIMPLE_TYPES = {
    "boolean": BooleanType(),
    "int": IntegerType(),
    "long": LongType(),
    "float": FloatType(),
    "double": DoubleType(),
    "date": DateType(),
    "time": TimeType(),
    "timestamp": TimestampType(False),
    "timestamptz": TimestampType(True),
    "timestamp_ns": TimestampNanoType(False),
    "timestamptz_ns": TimestampNanoType(True),
    "string": StringType(),
    "uuid": UUIDType(),
    "binary": BinaryType(),
    "variant": VariantType(),
}

_DECIMAL_REGEX = re.compile(r"decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)")
_FIXED_REGEX = re.compile(r"fixed\[\s*(\d+)\s*\]")


def primitive_from_string(type_string: str) -> IcebergType:
    """Parse a primitive type name such as `long`, `decimal(9, 2)` or `fixed[16]`"""
    text = type_string.strip().lower()
    if text in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[text]
    match = _DECIMAL_REGEX.fullmatch(text)
    if match:
        return DecimalType(int(match.group(1)), int(match.group(2)))
    match = _FIXED_REGEX.fullmatch(text)
    if match:
        return FixedType(int(match.group(1)))
    raise ValueError(f"Cannot parse type string: {type_string}")


def promote(from_type: IcebergType, to_type: IcebergType) -> IcebergType:
    """
    Return `to_type` if values of `from_type` can be read as `to_type` without loss.

    Allowed widenings are int to long, float to double and decimal(P, S) to decimal(P2, S)
    with P2 >= P. Identical primitives are trivially allowed. Anything else, including any
    change of a fixed length or decimal scale, raises IncompatibleTypeError.
    """
    if from_type.is_nested or to_type.is_nested:
        raise IncompatibleTypeError(f"Cannot change column type: {from_type} -> {to_type}")

    if from_type == to_type:
        return to_type

    if from_type.type_id == TypeID.INTEGER and to_type.type_id == TypeID.LONG:
        return to_type
    if from_type.type_id == TypeID.FLOAT and to_type.type_id == TypeID.DOUBLE:
        return to_type
    if isinstance(from_type, DecimalType) and isinstance(to_type, DecimalType):
        if from_type.scale == to_type.scale and to_type.precision >= from_type.precision:
            return to_type
        raise IncompatibleTypeError(
            f"Cannot change column type: {from_type} -> {to_type}: decimal scale must match and precision can only widen")

    raise IncompatibleTypeError(f"Cannot change column type: {from_type} -> {to_type}")


def is_promotable(from_type: IcebergType, to_type: IcebergType) -> bool:
    try:
        promote(from_type, to_type)
        return True
    except IncompatibleTypeError:
        return False


def check_nullability(name: str, from_required: bool, to_required: bool, default: Any = None) -> None:
    """Optional to required needs a non-null default; required to optional is always allowed."""
    if to_required and not from_required and default is None:
        raise RequiresDefaultError(name)


def equivalent(a: IcebergType, b: IcebergType) -> bool:
    """
    Compare types the way compatibility checks need to: nested fields are matched by id,
    so field names and positions do not matter, while types and required flags do.
    """
    if a.type_id != b.type_id:
        return False
    if a.is_primitive:
        return a == b

    a_fields = {f.field_id: f for f in a.fields}  # type: ignore[attr-defined]
    b_fields = {f.field_id: f for f in b.fields}  # type: ignore[attr-defined]
    if a_fields.keys() != b_fields.keys():
        return False
    return all(
        a_fields[fid].required == b_fields[fid].required
        and equivalent(a_fields[fid].field_type, b_fields[fid].field_type)
        for fid in a_fields
    )
