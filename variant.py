import json
import base64
import struct
import uuid
import decimal
import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from dataclasses import dataclass

from variant_util import (
    VariantUtil, Type, malformed_variant, variant_constructor_size_limit,
    SIZE_LIMIT, VERSION, VERSION_MASK
)

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_DAY = datetime.date(1970, 1, 1)

# Use linear search for a short list. Switch to binary search when the length reaches this.
BINARY_SEARCH_THRESHOLD = 32


class Variant:
    """
    A semi-structured value: a metadata dictionary and a self-describing value buffer.
    `pos` points at the value inside `value`, so nested values share their parent's buffers.
    """
    def __init__(self, value: bytes, metadata: bytes, pos: int = 0):
        self.value = bytes(value)
        self.metadata = bytes(metadata)
        self.pos = pos

        # There is currently only one allowed version.
        if len(metadata) < 1 or (metadata[0] & VERSION_MASK) != VERSION:
            raise malformed_variant()

        # Don't attempt to use a Variant larger than 16 MiB.
        if len(metadata) > SIZE_LIMIT or len(value) > SIZE_LIMIT:
            raise variant_constructor_size_limit()

    def get_value(self) -> bytes:
        if self.pos == 0:
            return self.value
        size = VariantUtil.value_size(self.value, self.pos)
        VariantUtil.check_index(self.pos + size - 1, len(self.value))
        return self.value[self.pos:self.pos + size]

    def get_metadata(self) -> bytes:
        return self.metadata

    def get_boolean(self) -> bool:
        return VariantUtil.get_boolean(self.value, self.pos)

    # Also used for DATE, TIME and the TIMESTAMP family, which are stored as integers.
    def get_long(self) -> int:
        return VariantUtil.get_long(self.value, self.pos)

    def get_double(self) -> float:
        return VariantUtil.get_double(self.value, self.pos)

    def get_decimal(self) -> decimal.Decimal:
        return VariantUtil.get_decimal(self.value, self.pos)

    def get_float(self) -> float:
        return VariantUtil.get_float(self.value, self.pos)

    def get_binary(self) -> bytes:
        return VariantUtil.get_binary(self.value, self.pos)

    def get_string(self) -> str:
        return VariantUtil.get_string(self.value, self.pos)

    def get_type_info(self) -> int:
        return VariantUtil.get_type_info(self.value, self.pos)

    def get_type(self) -> Type:
        return VariantUtil.get_type(self.value, self.pos)

    def get_uuid(self) -> uuid.UUID:
        return VariantUtil.get_uuid(self.value, self.pos)

    # Get the number of object fields in the variant.
    # It is only legal to call it when `get_type()` is `Type.OBJECT`.
    def object_size(self) -> int:
        return VariantUtil.handle_object(
            self.value, self.pos,
            lambda size, id_size, offset_size, id_start, offset_start, data_start: size
        )

    # Find the field value whose key is equal to `key`. Return None if the key is not found.
    # It is only legal to call it when `get_type()` is `Type.OBJECT`.
    def get_field_by_key(self, key: str) -> Optional['Variant']:
        return VariantUtil.handle_object(
            self.value, self.pos,
            lambda size, id_size, offset_size, id_start, offset_start, data_start: self._find_field(
                key, size, id_size, offset_size, id_start, offset_start, data_start
            )
        )

    def _field_at(self, index, id_size, offset_size, id_start, offset_start, data_start) -> Tuple[str, 'Variant']:
        id_val = VariantUtil.read_unsigned(self.value, id_start + id_size * index, id_size)
        offset = VariantUtil.read_unsigned(self.value, offset_start + offset_size * index, offset_size)
        key = VariantUtil.get_metadata_key(self.metadata, id_val)
        return key, Variant(self.value, self.metadata, data_start + offset)

    def _find_field(self, key, size, id_size, offset_size, id_start, offset_start, data_start):
        # Object fields are laid out in key order, which allows a binary search.
        if size < BINARY_SEARCH_THRESHOLD:
            for i in range(size):
                field_key, field_value = self._field_at(i, id_size, offset_size, id_start, offset_start, data_start)
                if field_key == key:
                    return field_value
            return None

        low = 0
        high = size - 1
        while low <= high:
            mid = (low + high) >> 1
            field_key, field_value = self._field_at(mid, id_size, offset_size, id_start, offset_start, data_start)
            if field_key < key:
                low = mid + 1
            elif field_key > key:
                high = mid - 1
            else:
                return field_value
        return None

    @dataclass
    class ObjectField:
        key: str
        value: 'Variant'

    # Get the object field at the `index` slot. Return None if `index` is out of the bound of
    # `[0, object_size())`.
    def get_field_at_index(self, index: int) -> Optional['Variant.ObjectField']:
        def handler(size, id_size, offset_size, id_start, offset_start, data_start):
            if index < 0 or index >= size:
                return None
            key, value = self._field_at(index, id_size, offset_size, id_start, offset_start, data_start)
            return Variant.ObjectField(key, value)

        return VariantUtil.handle_object(self.value, self.pos, handler)

    # Get the dictionary ID for the object field at the `index` slot.
    def get_dictionary_id_at_index(self, index: int) -> int:
        def handler(size, id_size, offset_size, id_start, offset_start, data_start):
            if index < 0 or index >= size:
                raise malformed_variant()
            return VariantUtil.read_unsigned(self.value, id_start + id_size * index, id_size)

        return VariantUtil.handle_object(self.value, self.pos, handler)

    # Get the number of array elements in the variant.
    # It is only legal to call it when `get_type()` is `Type.ARRAY`.
    def array_size(self) -> int:
        return VariantUtil.handle_array(
            self.value, self.pos,
            lambda size, offset_size, offset_start, data_start: size
        )

    # Get the array element at the `index` slot. Return None if `index` is out of bound.
    def get_element_at_index(self, index: int) -> Optional['Variant']:
        def handler(size, offset_size, offset_start, data_start):
            if index < 0 or index >= size:
                return None
            offset = VariantUtil.read_unsigned(self.value, offset_start + offset_size * index, offset_size)
            return Variant(self.value, self.metadata, data_start + offset)

        return VariantUtil.handle_array(self.value, self.pos, handler)

    def decode(self) -> 'VariantValue':
        """Decode the value into a tree that no longer depends on dictionary ids"""
        return decode_variant(self.metadata, self.value, self.pos)

    # Stringify the variant in JSON format.
    # Throw `MALFORMED_VARIANT` if the variant is malformed.
    def to_json(self, zone_id: Optional[datetime.tzinfo] = None) -> str:
        return self.decode().to_json(zone_id)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Variant):
            return NotImplemented
        return variant_equal(self, other)

    __hash__ = None  # type: ignore

    def __repr__(self) -> str:
        return f"Variant({self.to_json()})"


class VariantMetadata:
    """Logical view of a metadata block: the set of dictionary strings, whatever their order"""

    def __init__(self, metadata: bytes):
        self.metadata = bytes(metadata)
        self.keys: List[str] = VariantUtil.get_metadata_keys(self.metadata)
        self.is_sorted = VariantUtil.is_sorted_metadata(self.metadata)

    def key_set(self) -> FrozenSet[str]:
        return frozenset(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, VariantMetadata):
            return NotImplemented
        return self.key_set() == other.key_set()

    __hash__ = None  # type: ignore

    def __repr__(self) -> str:
        return f"VariantMetadata({sorted(self.key_set())})"


_EXACT_NUMERIC = (Type.LONG, Type.DECIMAL)
_FLOATING = (Type.FLOAT, Type.DOUBLE)


def _double_bits(value: float) -> int:
    return struct.unpack('<q', struct.pack('<d', value))[0]


@dataclass(frozen=True, eq=False)
class VariantValue:
    """
    A decoded variant value. `value` holds a python scalar for primitives, a dict of
    key to VariantValue for objects and a tuple of VariantValue for arrays.
    Integral types keep their integer encoding (days, micros or nanos).
    """
    type: Type
    value: Any

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, VariantValue):
            return NotImplemented

        if self.type in _EXACT_NUMERIC and other.type in _EXACT_NUMERIC:
            return decimal.Decimal(self.value) == decimal.Decimal(other.value)
        if self.type in _FLOATING and other.type in _FLOATING:
            # Floats are exactly representable as doubles, so compare the widened bit patterns
            return _double_bits(self.value) == _double_bits(other.value)
        if self.type != other.type:
            return False

        if self.type == Type.OBJECT:
            if self.value.keys() != other.value.keys():
                return False
            return all(self.value[key] == other.value[key] for key in self.value)
        if self.type == Type.ARRAY:
            return len(self.value) == len(other.value) and all(
                a == b for a, b in zip(self.value, other.value))
        return self.value == other.value

    __hash__ = None  # type: ignore

    def to_python(self) -> Any:
        """Convert to plain python objects, with dates and times as datetime values"""
        if self.type == Type.OBJECT:
            return {key: field.to_python() for key, field in self.value.items()}
        if self.type == Type.ARRAY:
            return [element.to_python() for element in self.value]
        if self.type == Type.DATE:
            return EPOCH_DAY + datetime.timedelta(days=self.value)
        if self.type == Type.TIME:
            return (datetime.datetime.min + datetime.timedelta(microseconds=self.value)).time()
        if self.type == Type.TIMESTAMP:
            return EPOCH + datetime.timedelta(microseconds=self.value)
        if self.type == Type.TIMESTAMP_NTZ:
            return (EPOCH + datetime.timedelta(microseconds=self.value)).replace(tzinfo=None)
        if self.type == Type.TIMESTAMP_NANOS:
            return EPOCH + datetime.timedelta(microseconds=self.value // 1000)
        if self.type == Type.TIMESTAMP_NTZ_NANOS:
            return (EPOCH + datetime.timedelta(microseconds=self.value // 1000)).replace(tzinfo=None)
        return self.value

    def to_json(self, zone_id: Optional[datetime.tzinfo] = None) -> str:
        result: List[str] = []
        self._to_json_impl(result, zone_id)
        return ''.join(result)

    def _to_json_impl(self, result: List[str], zone_id) -> None:
        if self.type == Type.OBJECT:
            result.append('{')
            for i, (key, field) in enumerate(self.value.items()):
                if i != 0:
                    result.append(',')
                result.append(json.dumps(key))
                result.append(':')
                field._to_json_impl(result, zone_id)
            result.append('}')
        elif self.type == Type.ARRAY:
            result.append('[')
            for i, element in enumerate(self.value):
                if i != 0:
                    result.append(',')
                element._to_json_impl(result, zone_id)
            result.append(']')
        elif self.type == Type.NULL:
            result.append("null")
        elif self.type == Type.BOOLEAN:
            result.append("true" if self.value else "false")
        elif self.type in (Type.LONG, Type.DOUBLE, Type.FLOAT):
            result.append(str(self.value))
        elif self.type == Type.DECIMAL:
            result.append(format(self.value.normalize(), "f"))
        elif self.type == Type.STRING:
            result.append(json.dumps(self.value))
        elif self.type == Type.BINARY:
            result.append(f'"{base64.b64encode(self.value).decode("ascii")}"')
        elif self.type in (Type.TIMESTAMP, Type.TIMESTAMP_NANOS):
            ts = self.to_python().astimezone(zone_id or datetime.timezone.utc)
            result.append(f'"{ts.isoformat()}"')
        elif self.type == Type.UUID:
            result.append(f'"{self.value}"')
        else:
            # DATE, TIME, TIMESTAMP_NTZ, TIMESTAMP_NTZ_NANOS
            result.append(f'"{self.to_python().isoformat()}"')


def decode_variant(metadata: bytes, value: bytes, pos: int = 0) -> VariantValue:
    """Decode the variant value at `pos` into a VariantValue tree"""
    variant_type = VariantUtil.get_type(value, pos)

    if variant_type == Type.OBJECT:
        def read_object(size, id_size, offset_size, id_start, offset_start, data_start):
            fields: Dict[str, VariantValue] = {}
            for i in range(size):
                id_val = VariantUtil.read_unsigned(value, id_start + id_size * i, id_size)
                offset = VariantUtil.read_unsigned(value, offset_start + offset_size * i, offset_size)
                key = VariantUtil.get_metadata_key(metadata, id_val)
                if key in fields:
                    raise malformed_variant()
                fields[key] = decode_variant(metadata, value, data_start + offset)
            return fields

        return VariantValue(Type.OBJECT, VariantUtil.handle_object(value, pos, read_object))

    if variant_type == Type.ARRAY:
        def read_array(size, offset_size, offset_start, data_start):
            return tuple(
                decode_variant(metadata, value, data_start + VariantUtil.read_unsigned(
                    value, offset_start + offset_size * i, offset_size))
                for i in range(size)
            )

        return VariantValue(Type.ARRAY, VariantUtil.handle_array(value, pos, read_array))

    if variant_type == Type.NULL:
        return VariantValue(Type.NULL, None)
    if variant_type == Type.BOOLEAN:
        return VariantValue(Type.BOOLEAN, VariantUtil.get_boolean(value, pos))
    if variant_type == Type.DOUBLE:
        return VariantValue(Type.DOUBLE, VariantUtil.get_double(value, pos))
    if variant_type == Type.FLOAT:
        return VariantValue(Type.FLOAT, VariantUtil.get_float(value, pos))
    if variant_type == Type.DECIMAL:
        return VariantValue(Type.DECIMAL, VariantUtil.get_decimal_with_original_scale(value, pos))
    if variant_type == Type.STRING:
        return VariantValue(Type.STRING, VariantUtil.get_string(value, pos))
    if variant_type == Type.BINARY:
        return VariantValue(Type.BINARY, VariantUtil.get_binary(value, pos))
    if variant_type == Type.UUID:
        return VariantValue(Type.UUID, VariantUtil.get_uuid(value, pos))

    # LONG, DATE, TIME and the timestamp family
    return VariantValue(variant_type, VariantUtil.get_long(value, pos))


def variant_equal(a: Variant, b: Variant) -> bool:
    """
    Two variants are equal when their dictionaries hold the same strings and their decoded
    values are equal. Physical layout, dictionary order and integer widths do not matter.
    """
    if VariantMetadata(a.metadata) != VariantMetadata(b.metadata):
        return False
    return a.decode() == b.decode()
